from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import domain_error_response, get_current_actor
from app.core.auth import ActorUser
from app.core.database import get_db
from app.core.errors import DomainError
from app.meetings.schemas import MeetingCreate, MeetingInvite, MeetingRead, MeetingResponse, MeetingUpdate
from app.meetings.service import meeting_service

router = APIRouter(prefix="/api/meetings", tags=["meetings"])


@router.get("", response_model=list[MeetingRead])
def list_meetings(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[MeetingRead]:
    return meeting_service.list_meetings(db, user)


@router.get("/invites", response_model=list[MeetingRead])
def list_invites(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[MeetingRead]:
    return meeting_service.list_invites(db, user)


@router.post("", response_model=MeetingRead, status_code=status.HTTP_201_CREATED)
def create_meeting(
    request: Request,
    dto: MeetingCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> MeetingRead | JSONResponse:
    try:
        return meeting_service.create_meeting(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{meeting_id}", response_model=MeetingRead)
def update_meeting(
    request: Request,
    meeting_id: uuid.UUID,
    dto: MeetingUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> MeetingRead | JSONResponse:
    try:
        return meeting_service.update_meeting(db, user, meeting_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/{meeting_id}/invite", response_model=MeetingRead)
def invite_to_meeting(
    request: Request,
    meeting_id: uuid.UUID,
    dto: MeetingInvite,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> MeetingRead | JSONResponse:
    try:
        return meeting_service.invite(db, user, meeting_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{meeting_id}/respond", response_model=MeetingRead)
def respond_to_meeting(
    request: Request,
    meeting_id: uuid.UUID,
    dto: MeetingResponse,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> MeetingRead | JSONResponse:
    try:
        return meeting_service.respond(db, user, meeting_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete("/{meeting_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_meeting(
    request: Request,
    meeting_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        meeting_service.delete_meeting(db, user, meeting_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
