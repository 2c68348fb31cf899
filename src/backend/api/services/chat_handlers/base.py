"""
Shared contract and helpers for chat handlers.

A chat handler runs one conversation turn and reports everything it does
through an ``EventSink``. Handlers are composed from the module-level helpers
below rather than inheriting from a base class.

Contract for ``ChatHandler.handle``:
- always ends the stream with exactly one ``Done``, on success or failure
- never raises, except ``asyncio.CancelledError`` when the client disconnects
- keeps no per-request state on the handler instance (instances are cached)
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from api.middleware.exception_handlers import ConfigurationError
from api.services.event_sink import EventSink
from core.constants import CHAT_MODE_AGENTS, CHAT_MODE_NATIVE, CHAT_MODE_PROXY
from integrations.mcp_registry import PUBLIC_URL_REQUIRED_MESSAGE
from models.chat_models import ChatHandlerConfig, ChatMessage
from utils.logger import logger

#: Order in which alternative modes are suggested after a failure.
MODE_SUGGESTION_ORDER: tuple[str, ...] = (CHAT_MODE_PROXY, CHAT_MODE_NATIVE, CHAT_MODE_AGENTS)

#: Prefix of turn-ending error notices.
ERROR_NOTICE_PREFIX = "❌ "

MODE_LABELS: dict[str, str] = {
    CHAT_MODE_PROXY: "Proxy Mode",
    CHAT_MODE_NATIVE: "Native Mode",
    CHAT_MODE_AGENTS: "Agents Mode",
}

MODE_DESCRIPTIONS: dict[str, str] = {
    CHAT_MODE_PROXY: "Direct MCP integration with real-time tool call updates",
    CHAT_MODE_NATIVE: "OpenAI handles MCP tools directly (tool calls shown after completion)",
    CHAT_MODE_AGENTS: "OpenAI Agents SDK with enhanced tool interaction and real-time updates",
}


@dataclass(frozen=True, slots=True)
class HandlerTraits:
    """Static description of a chat mode.

    Attributes:
        mode: Registry name ("proxy", "native", "agents")
        display_name: Prefix used in fatal error notices
        intro: Notice emitted at the start of every turn, if any
        reports_tool_discovery: Emits a notice with the number of tools found
        live_tool_status: Reports tool calls as they happen (vs. after the turn)
    """

    mode: str
    display_name: str
    intro: str | None
    reports_tool_discovery: bool
    live_tool_status: bool


@runtime_checkable
class ChatHandler(Protocol):
    """Strategy that runs one chat turn."""

    @property
    def traits(self) -> HandlerTraits: ...

    async def handle(
        self,
        messages: Sequence[ChatMessage],
        config: ChatHandlerConfig,
        sink: EventSink,
    ) -> None: ...


async def simulate_typing(sink: EventSink, text: str, delay: float) -> None:
    """Replay complete text word by word so it reads like a live stream."""
    if not text:
        return

    words = text.split(" ")
    for index, word in enumerate(words):
        sink.content(word if index == 0 else f" {word}")
        if index < len(words) - 1:
            await asyncio.sleep(delay)


def intro_notice(traits: HandlerTraits, sink: EventSink) -> None:
    if traits.intro:
        sink.notice(traits.intro)


def _mode_name(mode: str) -> str:
    return mode.capitalize()


def fatal_error_notice(traits: HandlerTraits, exc: BaseException) -> str:
    """Error text suggesting the two other modes."""
    alternatives = [_mode_name(mode) for mode in MODE_SUGGESTION_ORDER if mode != traits.mode]
    message = str(exc) or type(exc).__name__
    suggestion = " or ".join(alternatives)
    return f"{ERROR_NOTICE_PREFIX}{traits.display_name} Error: {message}. Please try switching to {suggestion} mode."


def configuration_error_notice() -> str:
    return f"{ERROR_NOTICE_PREFIX}{PUBLIC_URL_REQUIRED_MESSAGE}"


def flatten_conversation(messages: Sequence[ChatMessage]) -> str:
    """Render the conversation as one text blob for single-input APIs.

    System messages from the client are skipped; the configured system
    message is prepended by the caller.
    """
    lines = []
    for message in messages:
        if message.role == "user":
            lines.append(f"User: {message.content}")
        elif message.role == "assistant":
            lines.append(f"Assistant: {message.content}")
    return "\n\n".join(lines)


async def guarded_turn(traits: HandlerTraits, sink: EventSink, message_count: int, turn: Awaitable[None]) -> None:
    """Run a handler's turn, converting every failure into notices.

    The turn coroutine only produces content; this wrapper owns the terminal
    ``Done`` and the chat-turn log line.
    """
    started = time.monotonic()
    outcome = "completed"
    try:
        await turn
    except asyncio.CancelledError:
        outcome = "cancelled"
        logger.info(f"{traits.display_name} turn cancelled by client")
        raise
    except ConfigurationError as e:
        outcome = "configuration_error"
        logger.error(f"{traits.display_name} configuration error: {e.message}")
        sink.notice(configuration_error_notice(), severity="error")
    except Exception as e:
        outcome = "failed"
        logger.error(f"Error in {traits.mode} chat handler: {e}", exc_info=True)
        sink.notice(fatal_error_notice(traits, e), severity="error")
    finally:
        logger.log_chat_turn(
            traits.mode,
            message_count,
            duration_ms=(time.monotonic() - started) * 1000,
            outcome=outcome,
        )
    sink.done()


__all__ = [
    "ERROR_NOTICE_PREFIX",
    "MODE_DESCRIPTIONS",
    "MODE_LABELS",
    "MODE_SUGGESTION_ORDER",
    "ChatHandler",
    "HandlerTraits",
    "configuration_error_notice",
    "fatal_error_notice",
    "flatten_conversation",
    "guarded_turn",
    "intro_notice",
    "simulate_typing",
]
