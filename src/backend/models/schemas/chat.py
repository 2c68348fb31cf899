"""
Chat and tool catalog API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from models.mcp_models import MCPTool


class ChatModeInfo(BaseModel):
    """One selectable chat mode."""

    mode: str = Field(..., description="Value to send as ChatRequest.mode")
    label: str = Field(..., description="Short display name")
    description: str = Field(..., description="What the mode does")


class ChatModesResponse(BaseModel):
    """Available chat modes and the default."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "default": "agents",
                "modes": [
                    {
                        "mode": "agents",
                        "label": "Agents Mode",
                        "description": "OpenAI Agents SDK with enhanced tool interaction and real-time updates",
                    }
                ],
            }
        }
    )

    default: str = Field(..., description="Mode used when the request omits one")
    modes: list[ChatModeInfo] = Field(..., description="Modes in display order")


class ToolCatalogResponse(BaseModel):
    """Tools advertised by the MCP server."""

    tools: list[MCPTool] = Field(default_factory=list, description="Tool descriptors")
    count: int = Field(..., ge=0, description="Number of tools")
