"""Error types and the central exception handlers.

Every failure leaves the API as ``{"success": false, "error": ...}``. Field
validation failures add an ``errors`` list and, outside production, 500s
carry the formatted ``stack``.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException

from .config import get_settings
from .tenant_context import get_current_tenant_id

__all__ = ["AppError", "install_error_handlers"]

logger = logging.getLogger(__name__)


class AppError(Exception):
    """An expected failure carrying the HTTP status and client-facing message."""

    def __init__(self, status_code: int, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _log_error(request: Request, status_code: int, message: str, exc: BaseException | None = None) -> None:
    context = {
        "method": request.method,
        "url": str(request.url),
        "status": status_code,
        "user_id": getattr(request.state, "user_id", None),
        "tenant_id": get_current_tenant_id() or getattr(request.state, "tenant_id", None),
        "ip": _client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }
    if status_code >= 500:
        logger.error("Request failed: %s %s", message, context, exc_info=exc)
    else:
        logger.info("Request rejected: %s %s", message, context)


def _error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": message}
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=content)


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    _log_error(request, exc.status_code, exc.message)
    return _error_response(exc.status_code, exc.message, details=exc.details)


async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        message = f"Route {request.url.path} not found"
    else:
        message = str(exc.detail)
    _log_error(request, exc.status_code, message)
    response = _error_response(exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def _field_name(location: tuple[Any, ...]) -> str:
    parts = [str(part) for part in location if part not in ("body", "query", "path")]
    return ".".join(parts) or "body"


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": _field_name(tuple(error.get("loc", ()))), "message": error.get("msg", "")}
        for error in exc.errors()
    ]
    _log_error(request, status.HTTP_400_BAD_REQUEST, "Validation failed")
    return _error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", errors=errors)


async def _handle_database_unavailable(request: Request, exc: OperationalError) -> JSONResponse:
    _log_error(request, status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable", exc)
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable")


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    _log_error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), exc)
    settings = getattr(request.app.state, "settings", None) or get_settings()
    if settings.is_production:
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal Server Error", stack=stack
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register the handlers producing the uniform error envelope."""

    app.add_exception_handler(AppError, _handle_app_error)
    app.add_exception_handler(HTTPException, _handle_http_exception)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(OperationalError, _handle_database_unavailable)
    app.add_exception_handler(Exception, _handle_unexpected)
