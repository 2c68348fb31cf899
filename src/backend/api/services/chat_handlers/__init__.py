"""
Chat Handlers - interchangeable strategies for running a chat turn.

Modules:
    base: ChatHandler protocol, HandlerTraits and shared helpers
    proxy_handler: Chat Completions with tool calls executed by the relay
    native_handler: Responses API with OpenAI calling the MCP server
    agents_handler: Agents SDK run with a hosted MCP tool
    factory: ChatHandlerRegistry resolving mode names to cached handlers
"""

from api.services.chat_handlers.base import ChatHandler, HandlerTraits
from api.services.chat_handlers.factory import (
    ChatHandlerRegistry,
    UnknownChatModeError,
    build_default_registry,
)

__all__ = [
    "ChatHandler",
    "ChatHandlerRegistry",
    "HandlerTraits",
    "UnknownChatModeError",
    "build_default_registry",
]
