from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import domain_error_response, get_current_actor
from app.core.auth import ActorUser
from app.core.database import get_db
from app.core.errors import DomainError
from app.users.schemas import UserCreate, UserRead
from app.users.service import user_service

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=list[UserRead])
def list_users(
    actor: ActorUser = Depends(get_current_actor),
    session: Session = Depends(get_db),
) -> list[UserRead]:
    return [UserRead.model_validate(user) for user in user_service.list_users(session, actor)]


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    payload: UserCreate,
    actor: ActorUser = Depends(get_current_actor),
    session: Session = Depends(get_db),
) -> UserRead | JSONResponse:
    try:
        return UserRead.model_validate(user_service.create_user(session, actor, payload))
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{user_id}/toggle-active", response_model=UserRead)
def toggle_user_active(
    request: Request,
    user_id: uuid.UUID,
    actor: ActorUser = Depends(get_current_actor),
    session: Session = Depends(get_db),
) -> UserRead | JSONResponse:
    try:
        return UserRead.model_validate(user_service.toggle_active(session, actor, user_id))
    except DomainError as exc:
        return domain_error_response(request, exc)
