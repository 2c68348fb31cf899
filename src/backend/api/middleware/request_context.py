"""
Request-scoped context for MCP Chat Relay.

Every HTTP request gets a ``RequestContext`` (request ID, path, client, chat
mode) held in a context variable. The logger reads it to enrich each line, and
error responses echo its request ID. Chat handlers run on tasks created inside
the request, so a streamed turn logs under the ID of the request that started
it.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_PREFIX = "req_"
REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"

_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


@dataclass
class RequestContext:
    """What the relay knows about the request currently being served."""

    request_id: str
    start_time: float = field(default_factory=time.monotonic)
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    chat_mode: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Fields merged into every log record emitted during the request."""
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "path": self.path,
            "method": self.method,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        if self.client_ip:
            ctx["client_ip"] = self.client_ip
        if self.chat_mode:
            ctx["chat_mode"] = self.chat_mode
        return ctx


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """New request ID: ``prefix`` followed by 16 hex characters, e.g. ``req_3f9c0a7d51e2b864``."""
    return f"{prefix}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    return _request_context.get()


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext) -> None:
    _request_context.set(context)


def clear_request_context() -> None:
    _request_context.set(None)


def update_request_context(**kwargs: Any) -> None:
    """Record facts learned while handling the request.

    Known fields are set directly; anything else lands in ``extra``. Does
    nothing outside a request.
    """
    ctx = _request_context.get()
    if ctx is None:
        return
    for key, value in kwargs.items():
        if key in RequestContext.__dataclass_fields__:
            setattr(ctx, key, value)
        else:
            ctx.extra[key] = value


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First hop is the original client
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Open a ``RequestContext`` around each HTTP request.

    An incoming ``X-Request-ID`` is reused. ``X-Request-ID`` and
    ``X-Response-Time`` (time to first byte) are added to the response. A
    streamed chat body is sent from a task that copied the context, so it
    keeps logging under this request ID after ``dispatch`` returns.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or generate_request_id(),
            path=request.url.path,
            method=request.method,
            client_ip=_client_ip(request),
        )
        token = _request_context.set(context)
        try:
            response = await call_next(request)
        finally:
            _request_context.reset(token)

        response.headers[REQUEST_ID_HEADER] = context.request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{context.elapsed_ms:.2f}ms"
        return response


__all__ = [
    "REQUEST_ID_HEADER",
    "REQUEST_ID_PREFIX",
    "RESPONSE_TIME_HEADER",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_request_context",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "set_request_context",
    "update_request_context",
]
