"""
Health check API schemas.

Provides the response model for the health check with OpenAPI documentation.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Service health response."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "uptime_seconds": 3600.5,
                "openai_configured": True,
                "mcp_connected": True,
                "cached_modes": ["agents"],
            }
        }
    )

    status: Literal["healthy", "degraded"] = Field(
        ...,
        description="healthy when the OpenAI key is configured, degraded otherwise",
        json_schema_extra={"example": "healthy"},
    )
    version: str = Field(..., description="Application version")
    uptime_seconds: float = Field(..., ge=0, description="Seconds since startup")
    openai_configured: bool = Field(..., description="OpenAI API key is present")
    mcp_connected: bool = Field(..., description="Proxy-mode MCP session is open")
    cached_modes: list[str] = Field(default_factory=list, description="Chat handlers built so far")
