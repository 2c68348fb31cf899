"""
Type definitions for Agents SDK streaming events.

``Runner.run_streamed`` yields loosely typed events whose useful fields live
on nested, partly unexported objects. ``classify_stream_event`` turns each one
into a small frozen record from the ``AgentSignal`` union so the agents chat
handler can branch on concrete types and have the type checker confirm every
case is covered.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

from core.constants import (
    AGENT_UPDATED_STREAM_EVENT,
    OUTPUT_TEXT_DELTA_EVENT,
    RAW_RESPONSE_EVENT,
    RESPONSE_CREATED_EVENT,
    RUN_ITEM_MESSAGE_OUTPUT,
    RUN_ITEM_STREAM_EVENT,
    RUN_ITEM_TOOL_CALLED,
    RUN_ITEM_TOOL_OUTPUT,
)

# ============================================================================
# Structural Protocols for SDK Internal Objects
# ============================================================================


@runtime_checkable
class ContentLike(Protocol):
    """Protocol for content items that expose optional text."""

    text: str | None


@runtime_checkable
class RawMessageLike(Protocol):
    """Protocol for raw message objects with content list."""

    content: list[ContentLike] | None


@runtime_checkable
class RawToolCallLike(Protocol):
    """Protocol for raw tool call items (function calls and hosted MCP calls)."""

    name: str
    arguments: str


# ============================================================================
# Classified Signals
# ============================================================================


@dataclass(frozen=True, slots=True)
class TextDelta:
    """One streamed token of assistant text."""

    delta: str
    sequence_number: int | None
    item_id: str | None


@dataclass(frozen=True, slots=True)
class FinalText:
    """A completed assistant message item."""

    text: str


@dataclass(frozen=True, slots=True)
class TurnStarted:
    """A new model call began inside the agent run."""


@dataclass(frozen=True, slots=True)
class ToolActivity:
    """A tool was called or returned output."""

    phase: Literal["called", "output"]
    tool_name: str | None


@dataclass(frozen=True, slots=True)
class AgentSwitch:
    """The active agent changed."""

    agent_name: str


@dataclass(frozen=True, slots=True)
class Ignored:
    """An event with no effect on the stream."""

    event_type: str


AgentSignal = TextDelta | FinalText | TurnStarted | ToolActivity | AgentSwitch | Ignored


def _message_text(raw_item: Any) -> str:
    """Concatenate the text parts of a raw message item."""
    if not isinstance(raw_item, RawMessageLike) or not raw_item.content:
        return ""
    return "".join(part.text for part in raw_item.content if isinstance(part, ContentLike) and part.text)


def _tool_name(raw_item: Any) -> str | None:
    if isinstance(raw_item, RawToolCallLike):
        return raw_item.name
    return getattr(raw_item, "name", None) or getattr(raw_item, "type", None)


def _classify_raw_response(data: Any) -> AgentSignal:
    data_type = getattr(data, "type", None) or "unknown"
    if data_type == OUTPUT_TEXT_DELTA_EVENT:
        return TextDelta(
            delta=getattr(data, "delta", "") or "",
            sequence_number=getattr(data, "sequence_number", None),
            item_id=getattr(data, "item_id", None),
        )
    if data_type == RESPONSE_CREATED_EVENT:
        return TurnStarted()
    return Ignored(event_type=data_type)


def _classify_run_item(event: Any) -> AgentSignal:
    name = getattr(event, "name", None) or "unknown"
    raw_item = getattr(getattr(event, "item", None), "raw_item", None)

    if name == RUN_ITEM_TOOL_CALLED:
        return ToolActivity(phase="called", tool_name=_tool_name(raw_item))
    if name == RUN_ITEM_TOOL_OUTPUT:
        return ToolActivity(phase="output", tool_name=_tool_name(raw_item))
    if name == RUN_ITEM_MESSAGE_OUTPUT:
        text = _message_text(raw_item)
        if text:
            return FinalText(text=text)
    return Ignored(event_type=f"{RUN_ITEM_STREAM_EVENT}:{name}")


def classify_stream_event(event: Any) -> AgentSignal:
    """Map one ``Runner.run_streamed`` event to an ``AgentSignal``."""
    event_type = getattr(event, "type", None)

    if event_type == RAW_RESPONSE_EVENT:
        return _classify_raw_response(getattr(event, "data", None))
    if event_type == RUN_ITEM_STREAM_EVENT:
        return _classify_run_item(event)
    if event_type == AGENT_UPDATED_STREAM_EVENT:
        agent = getattr(event, "new_agent", None)
        return AgentSwitch(agent_name=getattr(agent, "name", None) or "unknown")
    return Ignored(event_type=str(event_type))


__all__ = [
    "AgentSignal",
    "AgentSwitch",
    "ContentLike",
    "FinalText",
    "Ignored",
    "RawMessageLike",
    "RawToolCallLike",
    "TextDelta",
    "ToolActivity",
    "TurnStarted",
    "classify_stream_event",
]
