"""
Global Exception Handling

Defines the service error taxonomy and maps it onto structured JSON
responses. Validation and busy errors are caller-facing (4xx); segmentation
and codec failures are server-side (5xx). Responses never carry tracebacks.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ImageServiceError(Exception):
    """Base exception for the image service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        self.headers = headers
        super().__init__(self.message)


class ValidationError(ImageServiceError):
    """Raised when input validation fails (bad or missing input)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class UnsupportedFormatError(ValidationError):
    """Raised when the declared media type is not supported."""

    def __init__(self, message: str, mime: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.details["mime"] = mime


class EmptyInputError(ValidationError):
    """Raised when an uploaded buffer has zero length."""

    def __init__(self, message: str = "Uploaded file is empty or unreadable.", **kwargs):
        super().__init__(message, **kwargs)


class PayloadTooLargeError(ImageServiceError):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, message: str, limit_bytes: int, **kwargs):
        super().__init__(message, code=413, **kwargs)
        self.details["limit_bytes"] = limit_bytes


class BusyError(ImageServiceError):
    """Raised when the admission gate rejects a background removal."""

    def __init__(
        self,
        message: str = "Server is busy processing other background removals. Please try again shortly.",
        retry_after: Optional[int] = None,
        **kwargs
    ):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(message, code=429, headers=headers, **kwargs)


class SegmentationError(ImageServiceError):
    """Raised when the external segmentation model fails."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class ProcessingError(ImageServiceError):
    """Raised when decoding or encoding an image fails."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        if operation:
            self.details["operation"] = operation


# =============================================================================
# Exception Handlers
# =============================================================================

def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _internal_error_response(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
        traceback=traceback.format_exc()
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "request_id": request_id_var.get(),
            "code": 500,
            "timestamp": _utc_timestamp()
        }
    )


class GlobalExceptionMiddleware(BaseHTTPMiddleware):
    """
    Global exception handler middleware.

    Turns unexpected exceptions into the structured 500 body while the
    request context (request id, timing middleware) is still in scope.
    Must be installed inside the request context middleware.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            return _internal_error_response(request, exc)


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ImageServiceError)
    async def image_service_exception_handler(request: Request, exc: ImageServiceError):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "image_service_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            path=str(request.url.path),
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content={
                "error": exc.message,
                "request_id": request_id_var.get(),
                "code": exc.code,
                "details": exc.details,
                "timestamp": _utc_timestamp()
            },
            headers=exc.headers
        )

    # Last resort for errors raised outside GlobalExceptionMiddleware
    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        return _internal_error_response(request, exc)
