from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base error raised by services; routes turn it into the JSON error envelope."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: Any = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code


class ValidationError(DomainError):
    status_code = 400
    code = "validation_error"


class InvalidStageError(ValidationError):
    code = "invalid_stage"


class AuthenticationError(DomainError):
    status_code = 401
    code = "unauthenticated"


class AccessDeniedError(DomainError):
    status_code = 403
    code = "access_denied"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    status_code = 400
    code = "conflict"
