"""Request body size limit.

Oversized chat requests are refused from their Content-Length header alone,
before the body is received or parsed.
"""

from __future__ import annotations

from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from api.middleware.request_context import get_request_id
from core.constants import MAX_REQUEST_BODY_SIZE, get_settings
from models.error_models import ErrorCode, ErrorResponse
from utils.logger import logger

_BODYLESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "DELETE"})


def _declared_length(headers: Headers) -> int | None:
    try:
        return int(headers["content-length"])
    except (KeyError, ValueError):
        # Chunked or malformed; ChatRequest's content limits still apply
        return None


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Answer 413 (``VAL_2005``) when Content-Length exceeds ``max_body_size``.

    The limit defaults to ``MAX_REQUEST_BODY_SIZE`` from settings.
    """

    def __init__(self, app: ASGIApp, max_body_size: int | None = None) -> None:
        super().__init__(app)
        if max_body_size is None:
            configured = getattr(get_settings(), "max_request_body_size", None)
            max_body_size = configured if isinstance(configured, int) else MAX_REQUEST_BODY_SIZE
        self.max_body_size = max_body_size

    def _too_large(self, request: Request) -> JSONResponse | None:
        if request.method in _BODYLESS_METHODS:
            return None
        size = _declared_length(request.headers)
        if size is None or size <= self.max_body_size:
            return None

        path = request.url.path
        logger.warning(f"Request body too large: {size} > {self.max_body_size} bytes", path=path, body_size=size)
        error = ErrorResponse(
            code=ErrorCode.REQUEST_TOO_LARGE,
            message=f"Request body exceeds maximum size of {self.max_body_size} bytes",
            request_id=get_request_id(),
            path=path,
        )
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rejection = self._too_large(request)
        if rejection is not None:
            return rejection
        return await call_next(request)
