from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app import audit
from app.core.auth import ActorUser
from app.core.errors import AccessDeniedError, ConflictError, NotFoundError, ValidationError
from app.users.models import User
from app.users.schemas import UserCreate


class UserService:
    def list_users(self, session: Session, actor_user: ActorUser) -> list[User]:
        stmt = select(User).order_by(User.full_name.asc(), User.username.asc())
        if not actor_user.is_staff_manager:
            stmt = stmt.where(User.is_active.is_(True))
        return list(session.scalars(stmt))

    def create_user(self, session: Session, actor_user: ActorUser, dto: UserCreate) -> User:
        if not actor_user.is_admin:
            raise AccessDeniedError("Only administrators can create users")

        existing = session.scalar(select(User).where(func.lower(User.username) == dto.username.lower()))
        if existing is not None:
            raise ConflictError("Username already exists", details={"username": dto.username})

        user = User(
            username=dto.username,
            full_name=dto.full_name,
            email=dto.email,
            role=dto.role,
            is_active=dto.is_active,
        )
        session.add(user)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="user",
            entity_id=user.id,
            action="create",
            before=None,
            after={"username": user.username, "role": user.role},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        session.refresh(user)
        return user

    def toggle_active(self, session: Session, actor_user: ActorUser, user_id: uuid.UUID) -> User:
        if not actor_user.is_admin:
            raise AccessDeniedError("Only administrators can change user status")
        if user_id == actor_user.user_id:
            raise ValidationError("Cannot deactivate your own account", details={"user_id": str(user_id)})

        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": str(user_id)})

        before = {"is_active": user.is_active}
        user.is_active = not user.is_active
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="user",
            entity_id=user.id,
            action="activate" if user.is_active else "deactivate",
            before=before,
            after={"is_active": user.is_active},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        session.refresh(user)
        return user

    def missing_user_ids(self, session: Session, user_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        wanted = set(user_ids)
        if not wanted:
            return set()
        found = set(session.scalars(select(User.id).where(User.id.in_(wanted))))
        return wanted - found


user_service = UserService()
