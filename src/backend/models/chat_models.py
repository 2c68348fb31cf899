"""
Chat request models for MCP Chat Relay.

Inbound messages are validated and sanitized here, before any chat handler
sees them. Handlers may assume every message has a supported role and
non-empty, length-bounded content.
"""

from __future__ import annotations

import re

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.constants import (
    MAX_MESSAGE_LENGTH,
    MAX_MESSAGES_PER_REQUEST,
    MAX_TOTAL_CONTENT_LENGTH,
)

# Role of a message supplied by the client
MessageRole = Literal["user", "assistant", "system"]

# Patterns stripped from user-supplied content before it reaches the model
_SCRIPT_TAG_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JAVASCRIPT_URL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_content(content: str) -> str:
    """Strip script tags, javascript: URLs and inline event handlers; collapse whitespace."""
    sanitized = content.strip()
    sanitized = _SCRIPT_TAG_RE.sub("", sanitized)
    sanitized = _JAVASCRIPT_URL_RE.sub("", sanitized)
    sanitized = _EVENT_HANDLER_RE.sub("", sanitized)
    return _WHITESPACE_RE.sub(" ", sanitized)


class ChatMessage(BaseModel):
    """One message of the conversation history sent by the client."""

    model_config = ConfigDict(extra="ignore")

    role: MessageRole = Field(..., description="Author of the message")
    content: str = Field(
        ...,
        min_length=1,
        max_length=MAX_MESSAGE_LENGTH,
        description="Message text",
    )

    @field_validator("content")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only content."""
        if not v.strip():
            raise ValueError("Message content cannot be empty")
        return v

    def to_openai(self) -> dict[str, Any]:
        """Convert to a Chat Completions / Responses input message."""
        return {"role": self.role, "content": self.content}


class ChatRequest(BaseModel):
    """Body of POST /api/chat."""

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "messages": [{"role": "user", "content": "What projects have you worked on?"}],
                    "mode": "agents",
                }
            ]
        },
    )

    messages: list[ChatMessage] = Field(
        ...,
        min_length=1,
        max_length=MAX_MESSAGES_PER_REQUEST,
        description="Conversation history, oldest first",
    )
    mode: str | None = Field(default=None, description="Chat mode (proxy, native, agents); defaults to agents")

    @model_validator(mode="after")
    def validate_conversation(self) -> ChatRequest:
        """Enforce whole-conversation limits, then sanitize each message."""
        total = sum(len(message.content) for message in self.messages)
        if total > MAX_TOTAL_CONTENT_LENGTH:
            raise ValueError(f"Total message content exceeds {MAX_TOTAL_CONTENT_LENGTH} characters")

        for previous, current in zip(self.messages, self.messages[1:], strict=False):
            if previous.role == "assistant" and current.role == "assistant":
                raise ValueError("Conversation cannot contain consecutive assistant messages")

        for message in self.messages:
            message.content = sanitize_content(message.content)
        return self


@dataclass(frozen=True, slots=True)
class ChatHandlerConfig:
    """Model settings shared by every chat handler for one request."""

    model: str
    temperature: float
    max_tool_loops: int
    system_message: str


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A complete tool call requested by the model.

    Attributes:
        id: Call identifier echoed back on the tool result message
        name: Tool name as advertised by the MCP server
        arguments_json: Raw JSON argument text exactly as the model produced it
    """

    id: str
    name: str
    arguments_json: str

    def to_openai(self) -> dict[str, Any]:
        """Render as an entry of an assistant message's ``tool_calls`` list."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json},
        }


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    """Outcome of one tool call, reported after the fact by the native mode."""

    name: str
    success: bool
    error: str | None = None


def assistant_message(text: str, tool_calls: list[ToolCallRequest]) -> dict[str, Any]:
    """Assistant message for one completion, recording any tool calls it made."""
    message: dict[str, Any] = {"role": "assistant", "content": (text or None) if tool_calls else text}
    if tool_calls:
        message["tool_calls"] = [call.to_openai() for call in tool_calls]
    return message


def tool_result_message(tool_call_id: str, content: str) -> dict[str, Any]:
    """Tool message carrying the output (or error text) of one tool call."""
    return {"role": "tool", "tool_call_id": tool_call_id, "content": content}


__all__ = [
    "ChatHandlerConfig",
    "ChatMessage",
    "ChatRequest",
    "MessageRole",
    "ToolCallRequest",
    "ToolCallResult",
    "assistant_message",
    "sanitize_content",
    "tool_result_message",
]
