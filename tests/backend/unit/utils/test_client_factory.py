"""Tests for OpenAI client construction."""

from __future__ import annotations

from unittest.mock import Mock, patch

import httpx
import pytest

from utils.client_factory import (
    OPENAI_MAX_RETRIES,
    _log_request,
    _log_response,
    build_timeout,
    create_http_client,
    create_openai_client,
)


def test_build_timeout_defaults() -> None:
    timeout = build_timeout()

    assert (timeout.connect, timeout.read, timeout.write, timeout.pool) == (30.0, 600.0, 30.0, 30.0)
    assert build_timeout(45.0).read == 45.0


def test_http_client_uses_read_timeout() -> None:
    client = create_http_client(read_timeout=120.0)

    assert isinstance(client, httpx.AsyncClient)
    assert client.timeout.read == 120.0
    assert client.timeout.connect == 30.0


def test_logging_hooks_only_when_enabled() -> None:
    assert create_http_client().event_hooks["request"] == []

    client = create_http_client(enable_logging=True)
    assert client.event_hooks["request"] == [_log_request]
    assert client.event_hooks["response"] == [_log_response]


@pytest.mark.asyncio
async def test_hooks_log_status_and_elapsed() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(200, request=request)

    with patch("utils.client_factory.logger") as mock_logger:
        await _log_request(request)
        await _log_response(response)

    message = mock_logger.debug.call_args[0][0]
    assert message.startswith("HTTP <- 200 POST https://api.openai.com/v1/chat/completions [")
    assert message.endswith("ms]")
    assert mock_logger.debug.call_args[1] == {"status_code": 200}


@pytest.mark.asyncio
async def test_response_hook_without_request_stamp() -> None:
    response = httpx.Response(404, request=httpx.Request("GET", "https://mcp.example.com/mcp"))

    with patch("utils.client_factory.logger") as mock_logger:
        await _log_response(response)

    assert mock_logger.debug.call_args[0][0] == "HTTP <- 404 GET https://mcp.example.com/mcp"


def test_openai_client_minimal() -> None:
    with patch("utils.client_factory.AsyncOpenAI") as mock_async_openai:
        result = create_openai_client(api_key="sk-test-key")

    assert result is mock_async_openai.return_value
    assert mock_async_openai.call_args[1] == {
        "api_key": "sk-test-key",
        "http_client": None,
        "max_retries": OPENAI_MAX_RETRIES,
    }


def test_openai_client_custom_endpoint() -> None:
    http_client = Mock()
    with patch("utils.client_factory.AsyncOpenAI") as mock_async_openai:
        create_openai_client(
            api_key="sk-test-key",
            base_url="https://llm.example.com/v1",
            http_client=http_client,
            max_retries=0,
        )

    call_kwargs = mock_async_openai.call_args[1]
    assert call_kwargs["base_url"] == "https://llm.example.com/v1"
    assert call_kwargs["http_client"] is http_client
    assert call_kwargs["max_retries"] == 0
