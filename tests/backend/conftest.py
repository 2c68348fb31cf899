"""Shared test fixtures for MCP Chat Relay test suite.

This module provides common fixtures used across all test modules,
including mocks for external dependencies (OpenAI, MCP, Agents SDK).
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Generator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def _build_mock_settings() -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.openai_api_key = "sk-test-openai-key"
    mock_settings.openai_base_url = None
    mock_settings.debug = False
    mock_settings.app_env = "test"
    mock_settings.app_version = "1.0.0"
    mock_settings.enable_content_logging = False
    mock_settings.max_request_body_size = 100 * 1024
    mock_settings.llm_model = "gpt-4o-mini"
    mock_settings.llm_temperature = 0.2
    mock_settings.llm_max_tool_loops = 6
    mock_settings.llm_force_non_streaming = False
    mock_settings.mcp_server_url = "https://portfolio.example.com/api/mcp"
    mock_settings.mcp_connect_timeout = 5.0
    mock_settings.http_read_timeout = 600.0
    mock_settings.agents_tracing_enabled = False
    mock_settings.cors_origins_list = ["*"]
    mock_settings.cors_allow_credentials = False
    return mock_settings


def pytest_configure(config: pytest.Config) -> None:
    """Configure settings mock before any test modules are imported.

    This hook runs before test collection, which is when module-level
    imports happen. We patch get_settings here so modules that bind it at
    import time never read a developer's .env file.
    """
    cfg: Any = config
    cfg._mock_settings = _build_mock_settings()

    patcher = patch("core.constants.get_settings", return_value=cfg._mock_settings)
    patcher.start()
    cfg._settings_patcher = patcher


def pytest_unconfigure(config: pytest.Config) -> None:
    """Clean up settings mock after all tests complete."""
    patcher = getattr(config, "_settings_patcher", None)
    if patcher:
        patcher.stop()


# ============================================================================
# Test Isolation: Settings Management (MUST BE FIRST)
# ============================================================================


@pytest.fixture(autouse=True, scope="function")
def reset_settings_singleton() -> Generator[None, None, None]:
    """Reset settings singleton before and after each test."""
    from core import constants

    constants._settings_manager._instance = None
    yield
    constants._settings_manager._instance = None


@pytest.fixture(autouse=True)
def mock_settings_for_ci(monkeypatch: pytest.MonkeyPatch) -> Generator[MagicMock, None, None]:
    """Provide mock settings that work without .env file (for CI)."""
    mock_settings = _build_mock_settings()
    monkeypatch.setattr("core.constants.get_settings", lambda: mock_settings)
    yield mock_settings


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def handler_config() -> Any:
    """Per-request handler configuration with a small tool-loop bound."""
    from models.chat_models import ChatHandlerConfig

    return ChatHandlerConfig(
        model="gpt-4o-mini",
        temperature=0.2,
        max_tool_loops=3,
        system_message="You are a test assistant.",
    )


@pytest.fixture
def user_messages() -> list[Any]:
    from models.chat_models import ChatMessage

    return [ChatMessage(role="user", content="What projects have you built?")]


@pytest.fixture
def hosted_server() -> Any:
    from integrations.mcp_registry import HostedMcpServer

    return HostedMcpServer(
        label="portfolio-mcp",
        description="Portfolio MCP server",
        base_url="https://portfolio.example.com",
        endpoint="/api/mcp",
    )


@pytest.fixture
def no_typing_delay(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Make simulated typing instantaneous."""
    sleep = AsyncMock()
    monkeypatch.setattr("api.services.chat_handlers.base.asyncio.sleep", sleep)
    return sleep


# ============================================================================
# Mock External Dependencies
# ============================================================================


@pytest.fixture
def mock_openai_client() -> Generator[Mock, None, None]:
    """Mock AsyncOpenAI client for testing."""
    client = Mock()
    client.chat.completions.create = AsyncMock()
    client.responses.create = AsyncMock()
    yield client


@pytest.fixture
def mock_tool_client() -> Generator[Mock, None, None]:
    """Mock McpToolClient for testing."""
    from models.mcp_models import MCPResult, MCPTool, TextBlock

    client = Mock()
    client.list_tools = AsyncMock(
        return_value=[
            MCPTool(name="get_bio", description="Short biography"),
            MCPTool(
                name="get_projects",
                description="List projects",
                inputSchema={"type": "object", "properties": {"limit": {"type": "integer"}}},
            ),
        ]
    )
    client.call_tool = AsyncMock(return_value=MCPResult(content=[TextBlock(text="tool output")]))
    client.is_connected = False
    client.close = AsyncMock()
    yield client


def make_tool_call_fragment(index: int, call_id: str | None = None, name: str | None = None, arguments: str = "") -> Any:
    """Build one streamed tool-call fragment as the OpenAI SDK delivers it."""
    return SimpleNamespace(
        index=index,
        id=call_id,
        type="function" if call_id else None,
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def make_chunk(content: str | None = None, tool_calls: list[Any] | None = None) -> Any:
    """Build one ChatCompletionChunk-like object."""
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(index=0, delta=delta, finish_reason=None)], usage=None)


def make_usage_chunk() -> Any:
    return SimpleNamespace(choices=[], usage=SimpleNamespace(total_tokens=42))


class FakeStream:
    """Async iterator over prepared chunks, standing in for an OpenAI stream."""

    def __init__(self, chunks: list[Any]) -> None:
        self._chunks = list(chunks)

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        for chunk in self._chunks:
            yield chunk


async def _collect_frames(sink: Any) -> list[str]:
    return [frame async for frame in sink.frames()]


@pytest.fixture
def completion_fakes() -> SimpleNamespace:
    """Builders for streamed Chat Completions chunks."""
    return SimpleNamespace(
        chunk=make_chunk,
        usage_chunk=make_usage_chunk,
        fragment=make_tool_call_fragment,
        stream=FakeStream,
    )


@pytest.fixture
def collect_frames() -> Callable[[Any], Awaitable[list[str]]]:
    """Drain every frame from an EventSink."""
    return _collect_frames
