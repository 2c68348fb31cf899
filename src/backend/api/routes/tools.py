"""
Tool catalog endpoint.

Lists the tools the MCP server advertises, through the same client the proxy
chat mode uses.
"""

from __future__ import annotations

from fastapi import APIRouter

from api.dependencies import ToolClient
from models.schemas.chat import ToolCatalogResponse

router = APIRouter()


@router.get(
    "/tools",
    response_model=ToolCatalogResponse,
    summary="List MCP tools",
    description="Tools advertised by the MCP server. Returns 502 when the server is unreachable.",
    tags=["Tools"],
)
async def list_tools(tool_client: ToolClient) -> ToolCatalogResponse:
    """MCP tool catalog."""
    tools = await tool_client.list_tools()
    return ToolCatalogResponse(tools=tools, count=len(tools))
