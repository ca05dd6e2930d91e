from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.context import get_correlation_id
from app.platform.security.errors import (
    AccessDeniedError,
    AuthorizationError,
    ConflictError,
    DomainError,
    IntegrityViolationError,
    InvalidArgumentError,
    NotFoundError,
)


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


_STATUS_BY_ERROR: tuple[tuple[type[DomainError], int], ...] = (
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AccessDeniedError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidArgumentError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (IntegrityViolationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def domain_error_response(request: Request, exc: DomainError) -> JSONResponse:
    # Out-of-scope entities must be indistinguishable from missing ones.
    if isinstance(exc, (NotFoundError, AccessDeniedError)):
        return error_response(
            request,
            status_code=status.HTTP_404_NOT_FOUND,
            code=NotFoundError.code,
            message=f"{exc.resource} not found",
            details=None,
        )

    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped_status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break
    return error_response(
        request,
        status_code=status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )
