"""
Chat handler registry.

Maps chat mode names to handler builders and caches one handler instance per
mode. The registry is built once at application startup and kept on
``app.state``; routes reach it through dependency injection.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

from openai import AsyncOpenAI

from api.middleware.exception_handlers import ConfigurationError
from api.services.chat_handlers.agents_handler import AgentsChatHandler
from api.services.chat_handlers.base import MODE_DESCRIPTIONS, MODE_LABELS, ChatHandler
from api.services.chat_handlers.native_handler import NativeChatHandler
from api.services.chat_handlers.proxy_handler import ProxyChatHandler
from core.constants import (
    AVAILABLE_CHAT_MODES,
    CHAT_MODE_AGENTS,
    CHAT_MODE_NATIVE,
    CHAT_MODE_PROXY,
    DEFAULT_CHAT_MODE,
    Settings,
)
from integrations.mcp_client import McpToolClient
from integrations.mcp_registry import build_hosted_server
from utils.logger import logger

HandlerBuilder = Callable[[], ChatHandler]


class UnknownChatModeError(ValueError):
    """Requested chat mode is missing, empty, or not registered."""


class ChatHandlerRegistry:
    """Lazily builds and caches one handler per chat mode."""

    def __init__(self, builders: Mapping[str, HandlerBuilder], default_mode: str = DEFAULT_CHAT_MODE) -> None:
        self._builders = dict(builders)
        self._default_mode = default_mode
        self._handlers: dict[str, ChatHandler] = {}

    def get_handler(self, mode: str | None) -> ChatHandler:
        """Return the handler for ``mode``, building it on first use.

        Raises:
            UnknownChatModeError: If ``mode`` is None, empty, or unknown.
        """
        if mode is None:
            raise UnknownChatModeError("Chat mode is required")
        if not isinstance(mode, str) or not mode:
            raise UnknownChatModeError("Chat mode must be a non-empty string")

        handler = self._handlers.get(mode)
        if handler is not None:
            return handler

        builder = self._builders.get(mode)
        if builder is None:
            raise UnknownChatModeError(f"Unknown chat mode: {mode}")

        handler = builder()
        self._handlers[mode] = handler
        logger.info(f"Built {mode} chat handler", chat_mode=mode)
        return handler

    def clear_cache(self) -> None:
        """Drop cached handlers; the next lookup builds fresh instances."""
        self._handlers.clear()

    def cached_modes(self) -> list[str]:
        return list(self._handlers)

    def available_modes(self) -> list[str]:
        """Registered modes in display order."""
        ordered = [mode for mode in AVAILABLE_CHAT_MODES if mode in self._builders]
        return ordered + [mode for mode in self._builders if mode not in ordered]

    def default_mode(self) -> str:
        return self._default_mode

    def is_valid_mode(self, mode: str | None) -> bool:
        return isinstance(mode, str) and mode in self._builders

    @staticmethod
    def mode_label(mode: str) -> str:
        return MODE_LABELS.get(mode, "Unknown")

    @staticmethod
    def mode_description(mode: str) -> str:
        return MODE_DESCRIPTIONS.get(mode, "Unknown mode")


def build_default_registry(
    openai_client: AsyncOpenAI | None,
    tool_client: McpToolClient,
    settings: Settings,
) -> ChatHandlerRegistry:
    """Wire the production handlers.

    The OpenAI client is None when no API key is configured; handlers are
    built lazily, so the failure only surfaces when a chat is attempted.
    """
    server = build_hosted_server(settings)

    def require_client() -> AsyncOpenAI:
        if openai_client is None:
            raise ConfigurationError("Service configuration error")
        return openai_client

    builders: dict[str, HandlerBuilder] = {
        CHAT_MODE_PROXY: lambda: ProxyChatHandler(
            require_client(),
            tool_client,
            force_non_streaming=settings.llm_force_non_streaming,
        ),
        CHAT_MODE_NATIVE: lambda: NativeChatHandler(require_client(), server),
        CHAT_MODE_AGENTS: lambda: AgentsChatHandler(require_client(), server, settings.assistant_name),
    }
    return ChatHandlerRegistry(builders)


__all__ = [
    "ChatHandlerRegistry",
    "HandlerBuilder",
    "UnknownChatModeError",
    "build_default_registry",
]
