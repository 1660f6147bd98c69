"""
Structured logging configuration for CardSync.

JSON output in production, human-readable output in DEBUG. Context variables
carry the request trace id, the current sync run and the webhook being
processed into every record emitted while they are set.
"""
import json
import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

from cardsync.core.config import get_settings

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
sync_run_id_var: ContextVar[Optional[str]] = ContextVar("sync_run_id", default=None)
webhook_id_var: ContextVar[Optional[str]] = ContextVar("webhook_id", default=None)

_CONTEXT_VARS = {
    "trace_id": trace_id_var,
    "sync_run_id": sync_run_id_var,
    "webhook_id": webhook_id_var,
}

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info", "taskName",
))


class StructuredFormatter(logging.Formatter):
    """JSON formatter: one object per line, context variables and extras merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, var in _CONTEXT_VARS.items():
            value = var.get()
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


def setup_logging() -> None:
    """
    Configure the root logger.

    Called once by the FastAPI app and the Celery worker on startup.
    """
    settings = get_settings()
    level = logging.DEBUG if settings.DEBUG else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if settings.DEBUG:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = StructuredFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Third-party noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DEBUG else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for adding context to logs.

    Usage:
        with LogContext(sync_run_id="abc"):
            logger.info("This log will include sync_run_id")
    """

    def __init__(
        self,
        trace_id: Optional[str] = None,
        sync_run_id: Optional[str] = None,
        webhook_id: Optional[str] = None,
    ):
        self._values = {
            "trace_id": trace_id,
            "sync_run_id": sync_run_id,
            "webhook_id": webhook_id,
        }
        self._tokens: list = []

    def __enter__(self) -> "LogContext":
        for key, value in self._values.items():
            if value:
                self._tokens.append((key, _CONTEXT_VARS[key].set(value)))
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for key, token in reversed(self._tokens):
            _CONTEXT_VARS[key].reset(token)
        self._tokens.clear()


def log_operation(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """Log an operation with context."""
    logger.log(
        level,
        f"Operation: {operation}",
        extra={"operation": operation, **context},
    )


def log_performance(
    logger: logging.Logger,
    operation: str,
    duration_seconds: float,
    **context: Any,
) -> None:
    """
    Log operation performance.

    Args:
        logger: Logger instance
        operation: Operation name
        duration_seconds: Duration in seconds
        **context: Additional context fields
    """
    logger.info(
        f"Operation {operation} completed in {duration_seconds:.3f}s",
        extra={
            "operation": operation,
            "duration_seconds": duration_seconds,
            "performance": True,
            **context,
        },
    )
