from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import Depends
from fastapi.responses import JSONResponse
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.auth import ActorUser, AuthUser, get_current_user
from app.core.errors import DomainError

_ACTOR_NAMESPACE = uuid.UUID("6f1c2b8e-3f3a-4d0e-9a53-2f8f3c1d7e10")


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def _request_correlation_id(request: Request) -> str | None:
    return get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=_request_correlation_id(request),
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def domain_error_response(request: Request, exc: DomainError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def get_current_actor(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> ActorUser:
    try:
        user_id = uuid.UUID(auth_user.sub)
    except ValueError:
        # Non-UUID subjects still map to a stable identity.
        user_id = uuid.uuid5(_ACTOR_NAMESPACE, auth_user.sub)
    return ActorUser(user_id=user_id, role=auth_user.role, correlation_id=_request_correlation_id(request))
