from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Literal

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings

Role = Literal["ADMIN", "MANAGER", "EMPLOYEE"]
VALID_ROLES: set[str] = {"ADMIN", "MANAGER", "EMPLOYEE"}


@dataclass
class AuthUser:
    sub: str
    role: str


@dataclass
class ActorUser:
    """The authenticated caller, passed explicitly into every service call."""

    user_id: uuid.UUID
    role: str
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    @property
    def is_staff_manager(self) -> bool:
        return self.role in {"ADMIN", "MANAGER"}


def read_token(request: Request) -> str:
    settings = get_settings()
    cookie_token = request.cookies.get(settings.auth_cookie_name)
    if cookie_token:
        return cookie_token
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


def decode_token(token: str) -> AuthUser | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    role = str(payload.get("role", "")).upper()
    if not subject or role not in VALID_ROLES:
        return None
    return AuthUser(sub=str(subject), role=role)


async def get_current_user(request: Request) -> AuthUser:
    token = read_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    user = decode_token(token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = user.sub
    return user
