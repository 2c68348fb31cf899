"""
FastAPI dependencies for the relay's shared objects.

The handler registry and MCP tool client are created once in the app lifespan
and parked on ``app.state``; routes receive them through the annotated aliases
at the bottom of this module.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, Request

from api.middleware.exception_handlers import ConfigurationError
from api.services.chat_handlers.factory import ChatHandlerRegistry
from core.constants import Settings, get_settings
from integrations.mcp_client import McpToolClient


def _from_state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        # Lifespan did not run (or failed before creating it)
        raise ConfigurationError(f"Service not initialized: {name}")
    return value


def get_app_settings() -> Settings:
    """Cached settings; routes override this in tests via ``dependency_overrides``."""
    return get_settings()


def get_handler_registry(request: Request) -> ChatHandlerRegistry:
    return _from_state(request, "handler_registry")


def get_tool_client(request: Request) -> McpToolClient:
    return _from_state(request, "tool_client")


AppSettings = Annotated[Settings, Depends(get_app_settings)]
HandlerRegistry = Annotated[ChatHandlerRegistry, Depends(get_handler_registry)]
ToolClient = Annotated[McpToolClient, Depends(get_tool_client)]
