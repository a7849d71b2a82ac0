"""
core/errors.py -- Error taxonomy shared by every layer.

Services raise these; api/main.py maps them onto the HTTP error envelope.
Raw exceptions from collaborators (database, SES, Supabase) are caught at the
operation boundary and re-raised as one of these kinds, so callers never see
an internal exception type.

Layer rule: stdlib only.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base class for every error the service reports to a caller."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        fields: Optional[dict[str, str]] = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.fields = fields
        super().__init__(self.message)


class ValidationFailed(AppError):
    status_code = 422
    code = "validation_error"
    message = "Request validation failed."


class BadRequest(AppError):
    status_code = 400
    code = "bad_request"
    message = "Bad request."


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    message = "Access denied."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class InternalError(AppError):
    pass
