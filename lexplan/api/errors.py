"""Map service errors onto HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from lexplan.logging import logger
from lexplan.services.exceptions import (
    ConcurrencyConflict,
    InvalidRequest,
    PolicyError,
    QuotaExceeded,
    ReconciliationRequired,
    ServiceError,
    StorageUnavailable,
    SubscriptionNotFound,
)

STATUS_BY_ERROR: tuple[tuple[type[ServiceError], int], ...] = (
    (InvalidRequest, status.HTTP_400_BAD_REQUEST),
    (PolicyError, status.HTTP_409_CONFLICT),
    (SubscriptionNotFound, status.HTTP_404_NOT_FOUND),
    (QuotaExceeded, status.HTTP_429_TOO_MANY_REQUESTS),
    (ReconciliationRequired, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ConcurrencyConflict, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: ServiceError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("api_service_error", path=request.url.path, error=exc.code, detail=str(exc))
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": str(exc)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)


__all__ = ["register_error_handlers", "service_error_handler", "status_for"]
