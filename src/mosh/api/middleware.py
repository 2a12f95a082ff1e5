"""Error handling: maps domain and request errors onto the ``{error, message}`` body."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mosh.validation.session import SessionNotFoundError

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

    from mosh.config import Settings

logger = logging.getLogger(__name__)

_VALUE_ERROR_PREFIX = "Value error, "


class ApiError(Exception):
    """An error with a fixed HTTP status and error label."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "Bad Request"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


def _validation_message(exc: RequestValidationError) -> str:
    messages: list[str] = []
    for err in exc.errors():
        message = str(err.get("msg", "Invalid value"))
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX) :]
        messages.append(message)
    return ", ".join(messages)


async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return _error_response(exc.status_code, exc.error, exc.message)


async def handle_session_not_found(request: Request, exc: SessionNotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, NotFoundError.error, "Capture session not found")


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, "Validation Error", _validation_message(exc))


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return _error_response(exc.status_code, "Not Found", f"Route {request.method} {request.url.path} not found")
    return _error_response(exc.status_code, "Error", str(exc.detail))


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    settings: Settings = request.app.state.settings
    message = str(exc) if settings.debug else "An unexpected error occurred"
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", message)


def install_error_handlers(app: FastAPI) -> None:
    """Register the exception handlers on ``app``."""
    app.add_exception_handler(ApiError, handle_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(SessionNotFoundError, handle_session_not_found)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected_error)
