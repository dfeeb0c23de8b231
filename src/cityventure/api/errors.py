"""Map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException

from cityventure.domain.errors import (
    AuthorizationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    RefundsError,
    ValidationError,
)

_STATUS_CODES: list[tuple[type[RefundsError], int]] = [
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (GatewayError, 502),
]


def http_error(exc: RefundsError) -> HTTPException:
    """HTTPException for a domain error; unknown subclasses map to 500."""
    for error_cls, status_code in _STATUS_CODES:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error")
