"""
Pydantic models for MCP (Model Context Protocol).

These models provide type safety at the MCP boundary for:
- Tool definitions (MCPTool)
- Tool execution results (MCPResult)

Results are always normalized to a list of text blocks before they leave
the tool client, so callers never deal with raw MCP payload shapes.
"""

from __future__ import annotations

import copy

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

#: Parameters advertised for tools that do not publish an input schema.
EMPTY_OBJECT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


class MCPTool(BaseModel):
    """Model for an MCP tool definition.

    Represents a tool available on an MCP server, as returned by ``tools/list``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: str | None = None
    inputSchema: dict[str, Any] | None = None

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to the Chat Completions function-tool shape."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or f"Execute the {self.name} tool",
                "parameters": self.inputSchema or copy.deepcopy(EMPTY_OBJECT_SCHEMA),
            },
        }


class TextBlock(BaseModel):
    """One attributable piece of tool output."""

    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = "text"
    text: str


class MCPResult(BaseModel):
    """Model for an MCP tool execution result.

    ``content`` holds ordered text blocks; ``isError`` mirrors the MCP flag the
    server sets when the tool itself reported a failure.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: list[TextBlock] = Field(default_factory=list)
    isError: bool = False

    @property
    def text(self) -> str:
        """All text blocks joined with newlines."""
        return "\n".join(block.text for block in self.content)


__all__ = ["EMPTY_OBJECT_SCHEMA", "MCPResult", "MCPTool", "TextBlock"]
