"""
OpenAI client construction for the relay.

All three chat modes share one ``AsyncOpenAI`` client (also registered as the
Agents SDK default), backed by one pooled ``httpx.AsyncClient``.
"""

from __future__ import annotations

import time

from typing import Any

import httpx

from openai import AsyncOpenAI

from utils.logger import logger

# The read timeout bounds the silence between two streamed chunks; a model
# planning several MCP tool calls can pause for a long time before its next token.
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0

OPENAI_MAX_RETRIES = 2

_STARTED_AT = "relay_started_at"


def build_timeout(read_timeout: float | None = None) -> httpx.Timeout:
    return httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )


async def _log_request(request: httpx.Request) -> None:
    request.extensions[_STARTED_AT] = time.monotonic()
    logger.debug(f"HTTP -> {request.method} {request.url}")


async def _log_response(response: httpx.Response) -> None:
    # Runs when headers arrive, so for streams this is time to first byte
    request = response.request
    started = request.extensions.get(_STARTED_AT)
    elapsed = f" [{(time.monotonic() - started) * 1000:.0f}ms]" if started is not None else ""
    logger.debug(
        f"HTTP <- {response.status_code} {request.method} {request.url}{elapsed}",
        status_code=response.status_code,
    )


def create_http_client(
    enable_logging: bool = False,
    read_timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create the pooled HTTP client used for OpenAI calls.

    Args:
        enable_logging: Log each request and response line at debug level
        read_timeout: Seconds allowed between streamed chunks (default 600)
    """
    event_hooks = {"request": [_log_request], "response": [_log_response]} if enable_logging else None
    return httpx.AsyncClient(timeout=build_timeout(read_timeout), event_hooks=event_hooks)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    max_retries: int = OPENAI_MAX_RETRIES,
) -> AsyncOpenAI:
    """Create the shared AsyncOpenAI client.

    Args:
        api_key: OpenAI API key
        base_url: OpenAI-compatible endpoint, when not api.openai.com
        http_client: Pooled client from ``create_http_client``
        max_retries: SDK-level retries for connection errors and 5xx/429
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client, "max_retries": max_retries}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)
