"""Response envelope shared by every REST endpoint.

All endpoints answer with ``{"status": ..., "message": ..., "data": ...}``:
``status`` is ``"success"`` or ``"error"``, ``message`` is a human readable
summary and ``data`` carries the payload (or error detail).
"""
import logging
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class ApiResponse(BaseModel):
    """Envelope wrapping every REST payload."""
    status: str
    message: str
    data: Optional[Any] = None


class ApiException(Exception):
    """Raised anywhere in request handling to produce an error envelope."""

    def __init__(self, status_code: int, message: str, data: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.data = data


def handle_success(message: str, data: Any = None) -> JSONResponse:
    """Build a 200 success envelope."""
    return JSONResponse(
        ApiResponse(status=STATUS_SUCCESS, message=message, data=data).model_dump(mode="json")
    )


async def api_exception_handler(request: Request, exc: ApiException) -> JSONResponse:
    """Render an ApiException as an error envelope."""
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"[API] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        ApiResponse(status=STATUS_ERROR, message=exc.message, data=exc.data).model_dump(mode="json"),
        status_code=exc.status_code,
    )
