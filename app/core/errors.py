"""Domain errors raised by services and rendered by the API layer.

Services never raise ``HTTPException`` directly; each error carries the HTTP
status it maps to so routes and Celery tasks can share the same service code.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.schemas.common import ErrorResponse


class DomainError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(DomainError):
    """Malformed or semantically invalid input."""

    status_code = status.HTTP_400_BAD_REQUEST


class PreconditionFailed(DomainError):
    """The target exists but is not in a state that allows the operation."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DomainError):
    """Missing resource, or one that belongs to another tenant."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DomainError):
    """The resource is busy (mid-sync) or the request would duplicate state."""

    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(DomainError):
    """A synchronous call to Google failed for a reason other than a missing object."""

    status_code = status.HTTP_502_BAD_GATEWAY


async def domain_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Render a DomainError as the standard error envelope."""
    if not isinstance(exc, DomainError):
        raise exc
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=exc.message).model_dump())
