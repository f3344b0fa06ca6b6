from __future__ import annotations
from typing import Any


class LeapsError(Exception):
    """Base for domain failures. Services raise these; the HTTP edge maps them."""
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class NotFound(LeapsError):
    code = "NOT_FOUND"
    status_code = 404


class Conflict(LeapsError):
    code = "CONFLICT"
    status_code = 409


class ValidationFailed(LeapsError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AuthorizationError(LeapsError):
    code = "FORBIDDEN"
    status_code = 403


class Unauthenticated(AuthorizationError):
    code = "UNAUTHORIZED"
    status_code = 401


class ExternalServiceTransient(LeapsError):
    """Upstream hiccup; callers may retry."""
    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 503
