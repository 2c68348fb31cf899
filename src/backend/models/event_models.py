"""
Stream event models for MCP Chat Relay.

Every chat mode reports progress through these four events. Each event knows
its own wire payload, and ``to_sse()`` produces the complete frame written to
the response body:

    data: {"content":"Hello"}\\n\\n
    data: {"toolCall":{"name":"get_bio","status":"executing"}}\\n\\n
    data: {"system":{"message":"...","type":"info"}}\\n\\n
    data: [DONE]\\n\\n
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from core.constants import SSE_DATA_PREFIX, SSE_DONE_FRAME, SSE_FRAME_TERMINATOR
from utils.json_utils import json_compact

ToolPhase = Literal["executing", "completed", "error"]
NoticeSeverity = Literal["info", "warning", "error"]


class _StreamEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_json(self) -> str:
        """Convert to compact JSON for the SSE data line."""
        return json_compact(self.payload())

    def to_sse(self) -> str:
        """Render as one complete SSE frame."""
        return f"{SSE_DATA_PREFIX}{self.to_json()}{SSE_FRAME_TERMINATOR}"


class ContentDelta(_StreamEventBase):
    """A piece of assistant text."""

    kind: Literal["content"] = "content"
    text: str

    def payload(self) -> dict[str, Any]:
        return {"content": self.text}


class ToolStatus(_StreamEventBase):
    """Progress of one tool call: executing, then completed or error."""

    kind: Literal["tool_status"] = "tool_status"
    name: str
    phase: ToolPhase
    error: str | None = None

    def payload(self) -> dict[str, Any]:
        tool_call: dict[str, Any] = {"name": self.name, "status": self.phase}
        if self.error is not None:
            tool_call["error"] = self.error
        return {"toolCall": tool_call}


class SystemNotice(_StreamEventBase):
    """Out-of-band message about the turn (mode intro, discovery, degradation, errors)."""

    kind: Literal["system"] = "system"
    message: str
    severity: NoticeSeverity = "info"

    def payload(self) -> dict[str, Any]:
        return {"system": {"message": self.message, "type": self.severity}}


class Done(_StreamEventBase):
    """Terminal marker. Exactly one per stream, always last."""

    kind: Literal["done"] = "done"

    def payload(self) -> dict[str, Any]:
        return {}

    def to_sse(self) -> str:
        return SSE_DONE_FRAME


StreamEvent = Annotated[ContentDelta | ToolStatus | SystemNotice | Done, Field(discriminator="kind")]


__all__ = [
    "ContentDelta",
    "Done",
    "NoticeSeverity",
    "StreamEvent",
    "SystemNotice",
    "ToolPhase",
    "ToolStatus",
]
