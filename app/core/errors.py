"""
Application error taxonomy.

Every error the service raises on purpose derives from AppError and carries the
HTTP status the API layer renders it with. CacheUnavailable never leaves the
cache layer; QueueUnavailable is absorbed by project creation.
"""

from typing import Any


class AppError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(AppError):
    status_code = 400

    def __init__(self, message: str = "Validation error", errors: list[Any] | None = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationFailed":
        errors = [
            {
                "field": ".".join(str(loc) for loc in err["loc"]),
                "message": err["msg"],
                "code": f"validation.{err['type']}",
            }
            for err in exc.errors()
        ]
        return cls("Validation error", errors=errors)


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404


class Conflict(AppError):
    status_code = 409


class PreconditionFailed(AppError):
    status_code = 412


class RateLimited(AppError):
    status_code = 429


class StoreUnavailable(AppError):
    status_code = 503


class QueueUnavailable(AppError):
    status_code = 503


class CacheUnavailable(AppError):
    status_code = 503
