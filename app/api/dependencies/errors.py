"""Map domain errors onto HTTP responses.

Every handler returns ``{"message": ..., "error": ...}`` plus the context
attributes the exception carries, so callers can degrade without parsing
messages.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from infrastructure.logging import get_module_logger
from infrastructure.persistence import StoreConflict, StoreError
from modules.credentials import (
    ApiKeyNotFound,
    DuplicateApiKeyName,
    KeyQuotaExceeded,
    PoolExhausted,
)
from modules.notifications import (
    DeviceTokenNotFound,
    DuplicateSendError,
    InvalidNotificationState,
    NoDevicesError,
    NotificationNotFound,
    TemplateNotFound,
)

logger = get_module_logger()


def _error(status_code: int, error: str, exc: Exception, **context) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": str(exc), "error": error, **context},
    )


async def pool_exhausted_handler(_request: Request, exc: Exception):
    if isinstance(exc, PoolExhausted):
        return _error(
            503,
            "pool_exhausted",
            exc,
            active=exc.active,
            cooling=exc.cooling,
            leased=exc.leased,
        )


async def key_quota_handler(_request: Request, exc: Exception):
    if isinstance(exc, KeyQuotaExceeded):
        return _error(429, "quota_exceeded", exc, key_id=exc.key_id)


async def store_conflict_handler(request: Request, exc: Exception):
    if isinstance(exc, StoreConflict):
        logger.warning(
            "store_conflict_exhausted",
            path=request.url.path,
            table=exc.table,
            attempts=exc.attempts,
        )
        return _error(503, "store_conflict", exc)


async def store_error_handler(request: Request, exc: Exception):
    if isinstance(exc, StoreError):
        logger.error(
            "store_error",
            path=request.url.path,
            table=exc.table,
            error_code=exc.error_code,
        )
        return _error(503, "store_unavailable", exc)


async def no_devices_handler(_request: Request, exc: Exception):
    if isinstance(exc, NoDevicesError):
        return _error(
            422,
            "no_devices",
            exc,
            notification_id=exc.notification_id,
            reason=exc.reason,
        )


async def duplicate_send_handler(_request: Request, exc: Exception):
    if isinstance(exc, DuplicateSendError):
        return _error(
            409,
            "duplicate_send",
            exc,
            notification_id=exc.notification_id,
            reason=exc.reason,
            sent_at=exc.sent_at.isoformat() if exc.sent_at else None,
        )


async def conflict_handler(_request: Request, exc: Exception):
    if isinstance(exc, DuplicateApiKeyName):
        return _error(409, "duplicate_name", exc)
    if isinstance(exc, InvalidNotificationState):
        return _error(409, "invalid_state", exc, status=exc.status)


async def not_found_handler(_request: Request, exc: Exception):
    return _error(404, "not_found", exc)


async def value_error_handler(_request: Request, exc: Exception):
    return _error(400, "invalid_request", exc)


def setup_error_handlers(app: FastAPI):
    """
    Register the domain error handlers on the FastAPI application.
    """
    app.add_exception_handler(PoolExhausted, pool_exhausted_handler)
    app.add_exception_handler(KeyQuotaExceeded, key_quota_handler)
    app.add_exception_handler(StoreConflict, store_conflict_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(NoDevicesError, no_devices_handler)
    app.add_exception_handler(DuplicateSendError, duplicate_send_handler)
    app.add_exception_handler(DuplicateApiKeyName, conflict_handler)
    app.add_exception_handler(InvalidNotificationState, conflict_handler)
    for not_found in (
        ApiKeyNotFound,
        NotificationNotFound,
        DeviceTokenNotFound,
        TemplateNotFound,
    ):
        app.add_exception_handler(not_found, not_found_handler)
    app.add_exception_handler(ValueError, value_error_handler)
