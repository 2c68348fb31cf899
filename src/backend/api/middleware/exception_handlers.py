"""
Exception types and FastAPI exception handlers for MCP Chat Relay.

Handlers here only see errors raised before a chat stream starts (bad request
body, unknown mode, missing API key, tool catalog failures). Every one of
them is rendered as an ``ErrorResponse`` carrying the request ID, logged once
at a level matching its status, and given debug details only when DEBUG is on.
"""

from __future__ import annotations

import traceback

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import (
    APIError as OpenAIAPIError,
    AuthenticationError as OpenAIAuthError,
    RateLimitError as OpenAIRateLimitError,
)
from pydantic import ValidationError

from api.middleware.request_context import get_request_context, get_request_id
from core.constants import get_settings
from models.error_models import ErrorCode, ErrorDetail, ErrorResponse, code_for_status
from utils.logger import logger


class AppException(Exception):
    """Error with a relay error code, rendered as a JSON error response.

    Example:
        raise AppException(
            code=ErrorCode.UNKNOWN_CHAT_MODE,
            message="Unknown chat mode: turbo",
            details={"mode": "turbo"},
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return self.code.http_status

    def error_details(self) -> list[ErrorDetail] | None:
        if not self.details:
            return None
        return ErrorDetail.from_mapping(self.details)


class ValidationException(AppException):
    """Request rejected with field-level details."""

    def __init__(
        self,
        message: str = "Validation error",
        errors: list[ErrorDetail] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(code=code, message=message)
        self.errors = errors or []

    def error_details(self) -> list[ErrorDetail] | None:
        return self.errors or None


class ConfigurationError(AppException):
    """Deployment configuration problems (missing API key, private MCP URL)."""

    def __init__(
        self,
        message: str = "Service configuration error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=ErrorCode.INTERNAL_CONFIGURATION_ERROR, message=message, details=details)


class ExternalServiceError(AppException):
    """OpenAI or MCP server failure; the message is prefixed with the service name."""

    def __init__(
        self,
        service: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(
            code=code,
            message=f"{service}: {message}",
            details={"service": service},
            cause=cause,
        )
        self.service = service


# First match wins; subclasses before APIError itself
_OPENAI_ERRORS: tuple[tuple[type[OpenAIAPIError], ErrorCode, str], ...] = (
    (OpenAIAuthError, ErrorCode.OPENAI_AUTH_FAILED, "OpenAI authentication failed"),
    (OpenAIRateLimitError, ErrorCode.EXTERNAL_RATE_LIMITED, "OpenAI rate limit exceeded"),
)


def _debug_enabled() -> bool:
    return bool(get_settings().debug)


def _error_json(
    request: Request,
    exc: Exception,
    code: ErrorCode,
    message: str,
    status_code: int | None = None,
    details: list[ErrorDetail] | None = None,
    debug_info: dict[str, Any] | None = None,
) -> JSONResponse:
    """Log the error and build its JSON response."""
    status = status_code if status_code is not None else code.http_status
    ctx = get_request_context()
    log_context: dict[str, Any] = ctx.to_log_context() if ctx else {"path": request.url.path}
    log_context.update(error_code=code.value, status_code=status)

    if status >= 500:
        logger.error(f"Server error: {code.value} - {exc}", exc_info=True, **log_context)
    else:
        logger.warning(f"Client error: {code.value} - {exc}", **log_context)

    debug = _debug_enabled()
    body = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path,
        details=details,
        debug=debug_info if debug else None,
    )
    return JSONResponse(status_code=status, content=body.to_dict(include_debug=debug))


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return _error_json(
        request,
        exc,
        exc.code,
        exc.message,
        details=exc.error_details(),
        debug_info={
            "exception_type": type(exc).__name__,
            "cause": str(exc.cause) if exc.cause else None,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Re-shape a raised HTTPException into the relay's error body."""
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_json(
        request,
        exc,
        code_for_status(exc.status_code),
        message,
        status_code=exc.status_code,
        debug_info={"original_status": exc.status_code},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Invalid request body, e.g. empty ``messages`` or consecutive assistant turns."""
    return _error_json(
        request,
        exc,
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        details=ErrorDetail.from_validation_errors(exc.errors()),
    )


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_json(
        request,
        exc,
        ErrorCode.VALIDATION_ERROR,
        "Data validation failed",
        details=ErrorDetail.from_validation_errors(exc.errors()),
    )


async def openai_exception_handler(request: Request, exc: OpenAIAPIError) -> JSONResponse:
    """OpenAI failures outside a stream. Inside a stream they become notices."""
    code, message = ErrorCode.OPENAI_ERROR, f"OpenAI API error: {exc}"
    for error_type, mapped_code, mapped_message in _OPENAI_ERRORS:
        if isinstance(exc, error_type):
            code, message = mapped_code, mapped_message
            break

    return _error_json(
        request,
        exc,
        code,
        message,
        debug_info={
            "openai_error_type": type(exc).__name__,
            "openai_error_code": getattr(exc, "code", None),
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error_json(
        request,
        exc,
        ErrorCode.INTERNAL_UNEXPECTED,
        "An unexpected error occurred",
        debug_info={
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": traceback.format_exc(),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler on ``app``; call right after creating it."""
    # Starlette types handlers as taking Exception; the narrower signatures are safe
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, pydantic_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OpenAIAPIError, openai_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "AppException",
    "ConfigurationError",
    "ExternalServiceError",
    "ValidationException",
    "app_exception_handler",
    "generic_exception_handler",
    "http_exception_handler",
    "openai_exception_handler",
    "pydantic_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
