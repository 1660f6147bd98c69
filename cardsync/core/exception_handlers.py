"""
Exception handlers for FastAPI.

Centralized exception handling with structured error responses and logging.
"""
import logging
import uuid
from typing import Any, Dict

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cardsync.core.config import get_settings
from cardsync.core.exceptions import CardSyncError, CardTraderAPIError

logger = logging.getLogger(__name__)


def get_trace_id(request: Request) -> str:
    """Trace id from X-Trace-Id / X-Request-Id / X-Correlation-Id, or a fresh uuid4."""
    trace_id = (
        request.headers.get("X-Trace-Id")
        or request.headers.get("X-Request-Id")
        or request.headers.get("X-Correlation-Id")
    )
    return trace_id or str(uuid.uuid4())


async def cardsync_error_handler(
    request: Request,
    exc: CardSyncError,
) -> JSONResponse:
    """
    Handle CardSyncError and its subclasses.

    Errors coming from the CardTrader gateway (including the local rate
    limiter and the circuit breaker) are tagged with the upstream status.
    """
    trace_id = get_trace_id(request)

    extra = {
        "trace_id": trace_id,
        "error_code": exc.error_code,
        "status_code": exc.status_code,
        "context": exc.context,
        "path": request.url.path,
        "method": request.method,
    }
    if isinstance(exc, CardTraderAPIError):
        extra.update(service="cardtrader", upstream_status=exc.upstream_status)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{type(exc).__name__}: {exc.error_code} - {exc.detail}",
        extra=extra,
        exc_info=get_settings().DEBUG,
    )

    response_data = exc.to_dict()
    response_data["error"]["trace_id"] = trace_id

    headers = {"X-Trace-Id": trace_id}
    retry_after = exc.context.get("retry_after")
    if retry_after:
        headers["Retry-After"] = str(max(1, int(retry_after)))

    return JSONResponse(
        status_code=exc.status_code,
        content=response_data,
        headers=headers,
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions."""
    trace_id = get_trace_id(request)

    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        extra={
            "trace_id": trace_id,
            "exception_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=True,
    )

    error_detail = str(exc) if get_settings().DEBUG else "An internal error occurred"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_SERVER_ERROR",
                "message": error_detail,
                "trace_id": trace_id,
            }
        },
        headers={"X-Trace-Id": trace_id},
    )


# Exception handler mapping
EXCEPTION_HANDLERS: Dict[Any, Any] = {
    CardSyncError: cardsync_error_handler,
    RequestValidationError: validation_error_handler,
    # Generic exception (must be last)
    Exception: generic_exception_handler,
}
