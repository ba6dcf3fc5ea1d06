"""
Structured Logging Configuration with structlog

Outputs JSON logs that are searchable in ELK, Loki, or CloudWatch.
Every log includes: request_id, version, operation, timestamp, and other context.
"""

import sys
import asyncio
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime, timezone
from contextvars import ContextVar
from functools import wraps

# Context variables for request-scoped logging
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)

# Application version
APP_VERSION = "1.0.0"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add application context to every log entry."""
    event_dict["version"] = APP_VERSION

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    operation = operation_var.get()
    if operation:
        event_dict.setdefault("operation", operation)

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager for setting logging context.

    Usage:
        with LogContext(request_id="abc123", operation="compress"):
            logger.info("compress_started")
    """

    def __init__(self, request_id: Optional[str] = None, operation: Optional[str] = None):
        self.request_id = request_id
        self.operation = operation
        self._request_id_token = None
        self._operation_token = None

    def __enter__(self):
        if self.request_id:
            self._request_id_token = request_id_var.set(self.request_id)
        if self.operation:
            self._operation_token = operation_var.set(self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._request_id_token:
            request_id_var.reset(self._request_id_token)
        if self._operation_token:
            operation_var.reset(self._operation_token)
        return False


def with_logging(operation: str):
    """
    Decorator to wrap a function with start/complete/fail log events.

    Usage:
        @with_logging("convert")
        def convert_to_png(image: RawImageInput) -> ProcessedImage:
            ...
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            with LogContext(operation=operation):
                logger.debug("operation_started")
                start_time = datetime.now(timezone.utc)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.warning(
                        "operation_failed",
                        duration_ms=_elapsed_ms(start_time),
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    raise
                logger.info("operation_completed", duration_ms=_elapsed_ms(start_time))
                return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            with LogContext(operation=operation):
                logger.debug("operation_started")
                start_time = datetime.now(timezone.utc)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    logger.warning(
                        "operation_failed",
                        duration_ms=_elapsed_ms(start_time),
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    raise
                logger.info("operation_completed", duration_ms=_elapsed_ms(start_time))
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def _elapsed_ms(start_time: datetime) -> int:
    return int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)


# Example log output structure:
# {
#   "timestamp": "2024-05-20T10:00:00Z",
#   "level": "info",
#   "event": "background_removal_completed",
#   "operation": "remove_background",
#   "request_id": "550e8400-e29b-41d4-a716-446655440000",
#   "version": "1.0.0",
#   "duration_ms": 4200,
#   "output_size": 183422
# }
