"""
Health check endpoint.

Reports configuration and connection state without touching external
services, so it is safe for frequent polling.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from api.dependencies import AppSettings, HandlerRegistry, ToolClient
from models.schemas.health import HealthResponse

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Service status, MCP connection state and the chat handlers built so far.",
    tags=["Health"],
)
async def health_check(
    request: Request,
    settings: AppSettings,
    registry: HandlerRegistry,
    tool_client: ToolClient,
) -> HealthResponse:
    """Health check endpoint."""
    started_at = getattr(request.app.state, "started_at", None)
    uptime = time.monotonic() - started_at if started_at is not None else 0.0
    openai_configured = bool(settings.openai_api_key)

    return HealthResponse(
        status="healthy" if openai_configured else "degraded",
        version=settings.app_version,
        uptime_seconds=round(uptime, 2),
        openai_configured=openai_configured,
        mcp_connected=tool_client.is_connected,
        cached_modes=registry.cached_modes(),
    )
