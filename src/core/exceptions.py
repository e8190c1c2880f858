"""
Global Exception Handling

Provides the try-on error taxonomy and structured error responses.
Client errors (4xx) are rejected before any file processing; compositing
failures surface as 5xx; vision failures never leave the anchor locator.
"""

import uuid
import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class TryOnBaseException(Exception):
    """Base exception for the try-on service."""

    kind = "InternalError"

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.code < 500


class MissingInputError(TryOnBaseException):
    """Raised when one or both required uploads are absent or empty."""

    kind = "MissingInput"

    def __init__(self, missing: list, **kwargs):
        super().__init__(
            f"Missing required upload(s): {', '.join(missing)}",
            code=400,
            stage="validating",
            **kwargs
        )
        self.details["missing"] = missing


class UploadTooLargeError(TryOnBaseException):
    """Raised when an upload exceeds MAX_IMAGE_SIZE_BYTES."""

    kind = "UploadTooLarge"

    def __init__(self, field: str, size_bytes: int, limit_bytes: int, **kwargs):
        super().__init__(
            f"Upload '{field}' ({size_bytes} bytes) exceeds the {limit_bytes} byte limit",
            code=413,
            stage="validating",
            **kwargs
        )
        self.details["field"] = field
        self.details["size_bytes"] = size_bytes
        self.details["limit_bytes"] = limit_bytes


class MalformedOverlayError(TryOnBaseException):
    """Raised when the overlay cannot be decoded or has zero/invalid dimensions."""

    kind = "MalformedOverlay"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("stage", "validating")
        super().__init__(message, code=400, **kwargs)


class InvalidParameterError(TryOnBaseException):
    """Raised when a form field other than the uploads is unusable."""

    kind = "InvalidParameter"

    def __init__(self, field: str, message: str, **kwargs):
        kwargs.setdefault("stage", "validating")
        super().__init__(message, code=400, **kwargs)
        self.details["field"] = field


class CompositingFailureError(TryOnBaseException):
    """Raised when decode, resize, render or encode fails on valid-looking input."""

    kind = "CompositingFailure"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("stage", "compositing")
        super().__init__(message, code=500, **kwargs)


class VisionUnavailableError(TryOnBaseException):
    """
    Raised when the vision inference call fails, times out or returns junk.

    Never reaches the caller: the fallback anchor locator absorbs it.
    """

    kind = "VisionUnavailable"

    def __init__(self, message: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, code=502, stage="locating_anchor", **kwargs)
        self.details["service"] = "vision"
        self.details["http_status"] = http_status


# =============================================================================
# Exception Handlers
# =============================================================================

def error_body(exc: TryOnBaseException) -> Dict[str, Any]:
    """Structured JSON body for a classified error."""
    return {
        "error": exc.message,
        "kind": exc.kind,
        "request_id": exc.request_id or request_id_var.get(),
        "code": exc.code,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(TryOnBaseException)
    async def tryon_exception_handler(request: Request, exc: TryOnBaseException):
        log = logger.warning if exc.is_client_error else logger.error
        log(
            "tryon_exception",
            error=exc.message,
            kind=exc.kind,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        headers = {}
        if exc.request_id:
            headers["X-Request-ID"] = exc.request_id

        return JSONResponse(
            status_code=exc.code,
            content=error_body(exc),
            headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        fields = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in errors]
        error = InvalidParameterError(
            fields[0] if fields else "request",
            "; ".join(f"{field}: {err.get('msg')}" for field, err in zip(fields, errors)) or "Invalid request",
            request_id=request_id_var.get() or str(uuid.uuid4())
        )
        error.details["fields"] = fields

        logger.warning("request_validation_failed", fields=fields, path=str(request.url.path))

        return JSONResponse(
            status_code=error.code,
            content=error_body(error),
            headers={"X-Request-ID": error.request_id}
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = request_id_var.get()

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
                "kind": TryOnBaseException.kind,
                "request_id": request_id,
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
