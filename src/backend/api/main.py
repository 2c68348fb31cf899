from __future__ import annotations

import time

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from agents import set_default_openai_client, set_tracing_disabled
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.middleware.request_limits import RequestSizeLimitMiddleware
from api.routes import router as api_router
from api.services.chat_handlers.factory import build_default_registry
from core.constants import Settings, get_settings
from integrations.mcp_client import McpToolClient
from utils.client_factory import create_http_client, create_openai_client
from utils.logger import configure_uvicorn_logging, logger

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local) - no manual dotenv loading needed
settings = get_settings()

# Log loaded settings in debug mode
if settings.debug:
    from core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(f"Settings: app_env={settings.app_env}, model={settings.llm_model}, mcp_url={settings.mcp_server_url}")

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


def _setup_openai_client(app_settings: Settings) -> AsyncOpenAI | None:
    """Create the shared OpenAI client and register it with the agents SDK.

    Returns None when no API key is configured; chat requests are then
    rejected with a configuration error while the rest of the API works.
    """
    if not app_settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not configured - chat endpoint disabled")
        return None

    http_client = create_http_client(
        enable_logging=app_settings.debug,
        read_timeout=app_settings.http_read_timeout,
    )
    client = create_openai_client(
        app_settings.openai_api_key,
        base_url=app_settings.openai_base_url,
        http_client=http_client,
    )

    # Register as default client for agents SDK
    set_default_openai_client(client)
    set_tracing_disabled(not app_settings.agents_tracing_enabled)

    logger.info("OpenAI client registered with agents SDK")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown with graceful handling."""
    app.state.started_at = time.monotonic()

    openai_client = _setup_openai_client(settings)
    app.state.openai_client = openai_client

    # Shared MCP session for proxy mode, connected on first use
    tool_client = McpToolClient(
        settings.mcp_server_url,
        connect_timeout=settings.mcp_connect_timeout,
    )
    app.state.tool_client = tool_client

    app.state.handler_registry = build_default_registry(openai_client, tool_client, settings)
    logger.info(f"Chat relay ready (MCP server: {settings.mcp_server_url})")

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        # Phase 1: Close the MCP session
        await tool_client.close()

        # Phase 2: Close the OpenAI client and its HTTP pool
        if openai_client is not None:
            await openai_client.close()
            logger.info("OpenAI client closed")


app = FastAPI(
    title="MCP Chat Relay API",
    description="""
## MCP Chat Relay API

Streaming chat backend for a portfolio assistant whose knowledge comes from
an MCP (Model Context Protocol) server.

### Chat modes
- **Proxy**: Chat Completions with tool calls executed by this service (live tool status)
- **Native**: Responses API with OpenAI calling the MCP server directly (tool summary after completion)
- **Agents**: OpenAI Agents SDK run with the MCP server as a hosted tool

### Streaming
`POST /api/chat` returns Server-Sent Events. Every stream ends with `data: [DONE]`.
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Health check endpoint for monitoring",
        },
        {
            "name": "Chat",
            "description": "Streaming chat turns and chat mode discovery",
        },
        {
            "name": "Tools",
            "description": "MCP tool catalog",
        },
    ],
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Middleware is executed in reverse order of registration (last added = first executed):
# 1. Request context (request ID available to everything below)
# 2. CORS
# 3. Request size limit
app.add_middleware(RequestSizeLimitMiddleware, max_body_size=settings.max_request_body_size)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)
app.add_middleware(RequestContextMiddleware)

app.include_router(api_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["src/backend"],
        log_config=None,
    )
