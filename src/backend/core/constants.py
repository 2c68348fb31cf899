"""
Constants and settings for MCP Chat Relay.

Protocol strings (SSE framing, Agents SDK and Responses API event names),
request limits and defaults live here next to the pydantic-settings
``Settings`` model read from the environment and dotenv files.
"""

from __future__ import annotations

import os
import threading

from pathlib import Path
from typing import TYPE_CHECKING, Literal
from urllib.parse import urljoin

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

if TYPE_CHECKING:
    from models.chat_models import ChatHandlerConfig

from core.prompts import SYSTEM_MESSAGE

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

# ============================================================================
# Chat Modes
# ============================================================================

#: Strategy names accepted by the chat endpoint.
ChatMode = Literal["proxy", "native", "agents"]

CHAT_MODE_PROXY = "proxy"
CHAT_MODE_NATIVE = "native"
CHAT_MODE_AGENTS = "agents"

#: Display order for mode selectors. Agents first because it is the default.
AVAILABLE_CHAT_MODES: tuple[str, ...] = (CHAT_MODE_AGENTS, CHAT_MODE_PROXY, CHAT_MODE_NATIVE)

#: Mode used when the client does not send one.
DEFAULT_CHAT_MODE = CHAT_MODE_AGENTS

# ============================================================================
# LLM Defaults
# ============================================================================

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.2

#: Hard bound on completion -> tool-call rounds in a single proxy turn.
DEFAULT_MAX_TOOL_LOOPS = 6

# ============================================================================
# Server-Sent Events
# ============================================================================

SSE_MEDIA_TYPE = "text/event-stream"
SSE_DATA_PREFIX = "data: "
SSE_FRAME_TERMINATOR = "\n\n"

#: Terminal frame. Clients treat a close without it as an error.
SSE_DONE_FRAME = f"{SSE_DATA_PREFIX}[DONE]{SSE_FRAME_TERMINATOR}"

#: Response headers for streaming chat responses.
#: X-Accel-Buffering disables proxy buffering (nginx) so tokens arrive immediately.
SSE_RESPONSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

#: Per-word delay (seconds) when replaying a complete Responses API answer.
NATIVE_TYPING_DELAY = 0.02

#: Per-word delay (seconds) when replaying a non-streamed chat completion.
FALLBACK_TYPING_DELAY = 0.05

# ============================================================================
# Request Validation Limits
# ============================================================================

#: Maximum characters in a single message.
MAX_MESSAGE_LENGTH = 4000

#: Maximum messages per chat request.
MAX_MESSAGES_PER_REQUEST = 50

#: Maximum combined message content (characters) per request.
MAX_TOTAL_CONTENT_LENGTH = 100_000

#: Maximum raw request body (bytes), checked from Content-Length before parsing.
MAX_REQUEST_BODY_SIZE = 100 * 1024

#: Maximum length of serialized tool arguments produced by the model.
MAX_TOOL_ARGUMENTS_LENGTH = 1000

# ============================================================================
# MCP Configuration
# ============================================================================

DEFAULT_MCP_ENDPOINT = "/api/mcp"
DEFAULT_SITE_URL = "http://localhost:8000"
DEFAULT_MCP_SERVER_LABEL = "portfolio-mcp"

#: Client identity sent during the MCP initialize handshake.
MCP_CLIENT_NAME = "chat-api-client"
MCP_CLIENT_VERSION = "1.0.0"

#: Seconds allowed for the MCP connect + initialize handshake.
MCP_CONNECT_TIMEOUT = 5.0

# ============================================================================
# Agent/Runner Event Types
# ============================================================================

#: Top-level streaming event type for raw LLM response deltas (token-by-token streaming).
RAW_RESPONSE_EVENT = "raw_response_event"

#: Top-level streaming event type for run items (messages, tools, reasoning).
RUN_ITEM_STREAM_EVENT = "run_item_stream_event"

#: Top-level streaming event type for agent state changes.
AGENT_UPDATED_STREAM_EVENT = "agent_updated_stream_event"

#: Raw response event carrying one text token.
OUTPUT_TEXT_DELTA_EVENT = "response.output_text.delta"

#: Raw response event opening a new model call inside an agent run.
RESPONSE_CREATED_EVENT = "response.created"

#: Run item event names.
RUN_ITEM_TOOL_CALLED = "tool_called"
RUN_ITEM_TOOL_OUTPUT = "tool_output"
RUN_ITEM_MESSAGE_OUTPUT = "message_output_created"

#: Item type for AI-generated text responses.
MESSAGE_OUTPUT_ITEM = "message_output_item"

# ============================================================================
# Responses API Output Item Types
# ============================================================================

#: Output item listing the tools a hosted MCP server exposed.
MCP_LIST_TOOLS_ITEM = "mcp_list_tools"

#: Output item recording one hosted MCP tool call.
MCP_CALL_ITEM = "mcp_call"

# ============================================================================
# Logging Configuration
# ============================================================================

#: Maximum size in bytes for log files before rotation (10MB).
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of conversation log backups to retain during rotation.
LOG_BACKUP_COUNT_CONVERSATIONS = 5

#: Number of error log backups to retain during rotation.
LOG_BACKUP_COUNT_ERRORS = 3

#: Maximum characters to show in log previews for tool arguments/results.
LOG_PREVIEW_LENGTH = 50

#: Length of the per-process logger instance ID (hex characters).
SESSION_ID_LENGTH = 8

# ============================================================================
# Environment Configuration with Pydantic Validation
# ============================================================================

#: Valid environment names for configuration loading
Environment = Literal["development", "production", "test"]

#: Backend source directory for .env file resolution
_BACKEND_DIR = Path(__file__).parent.parent


def _get_env_files() -> list[Path]:
    """Existing dotenv files for APP_ENV, lowest priority first: .env, .env.{env}, .env.local."""
    env_name = os.getenv("APP_ENV", "development").lower()
    if env_name not in ("development", "production", "test"):
        env_name = "development"

    candidates = [
        _BACKEND_DIR / ".env",
        _BACKEND_DIR / f".env.{env_name}",
        _BACKEND_DIR / ".env.local",
    ]
    return [p for p in candidates if p.exists()]


class Settings(BaseSettings):
    """Relay configuration from constructor values, then environment variables, then dotenv files.

    The OpenAI key is optional at startup so health and discovery endpoints
    stay reachable; the chat endpoint rejects requests while it is missing.
    """

    # Environment identification
    app_env: Environment = Field(default="development", description="Application environment")
    app_version: str = Field(default="1.0.0", description="Application version")

    # OpenAI
    openai_api_key: str | None = Field(default=None, description="OpenAI API key for authentication")
    openai_base_url: str | None = Field(default=None, description="Optional OpenAI-compatible base URL")

    # Chat completion behaviour (LLM_* environment variables)
    llm_model: str = Field(default=DEFAULT_MODEL, description="Model used by every chat mode")
    llm_temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0, description="Sampling temperature")
    llm_max_tool_loops: int = Field(
        default=DEFAULT_MAX_TOOL_LOOPS, ge=1, description="Maximum completion/tool rounds per proxy turn"
    )
    llm_force_non_streaming: bool = Field(
        default=False, description="Skip streaming completions entirely (proxy mode)"
    )
    system_message: str = Field(default=SYSTEM_MESSAGE, description="System instruction for every chat mode")
    assistant_name: str = Field(default="Portfolio", description="Name used for the agent descriptor")

    # MCP server location (CHAT_MCP_* environment variables)
    site_url: str = Field(default=DEFAULT_SITE_URL, description="Public base URL of this deployment")
    chat_mcp_server_url: str | None = Field(
        default=None, description="Base URL of the MCP server (defaults to site_url)"
    )
    chat_mcp_server_endpoint: str = Field(default=DEFAULT_MCP_ENDPOINT, description="MCP endpoint path")
    mcp_server_label: str = Field(default=DEFAULT_MCP_SERVER_LABEL, description="Label for hosted MCP tools")
    mcp_server_description: str = Field(
        default="Portfolio MCP server providing contact info, bio, resume, projects, and community contributions.",
        description="Description passed to the Responses API hosted MCP tool",
    )
    mcp_connect_timeout: float = Field(default=MCP_CONNECT_TIMEOUT, gt=0, description="MCP handshake timeout")

    # Debug and logging
    debug: bool = Field(default=False, description="Enable debug logging")
    enable_content_logging: bool = Field(
        default=False, description="Log redacted tool arguments/results instead of hiding them"
    )
    agents_tracing_enabled: bool = Field(default=False, description="Send Agents SDK traces to OpenAI")

    # HTTP client timeouts
    http_read_timeout: float = Field(default=600.0, description="HTTP read timeout for streaming (seconds)")

    # Request limits
    max_request_body_size: int = Field(default=MAX_REQUEST_BODY_SIZE, description="Maximum request body (bytes)")

    # CORS
    cors_allow_origins: str = Field(default="*", description="Comma-separated list of allowed origins")
    cors_allow_credentials: bool = Field(default=False, description="Allow credentialed CORS requests")

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Dotenv files are resolved per APP_ENV at load time; later files in the list win
        dotenv_source = DotEnvSettingsSource(
            settings_cls,
            env_file=_get_env_files(),
            env_file_encoding="utf-8",
        )
        return (init_settings, env_settings, dotenv_source)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        if v is None:
            return "development"
        normalized = str(v).lower()
        if normalized not in ("development", "production", "test"):
            raise ValueError(f"app_env must be 'development', 'production', or 'test', got '{v}'")
        return normalized

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str | None) -> str | None:
        # Catches placeholders like "sk-" left in a .env file
        if v is not None and (not v or len(v) < 10):
            raise ValueError("Invalid OpenAI API key format")
        return v

    @field_validator("site_url", "chat_mcp_server_url")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        """Require an absolute http(s) URL for MCP base addresses."""
        if v is None or v == "":
            return None if v is None else v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got '{v}'")
        return v

    @property
    def mcp_server_base_url(self) -> str:
        """Base address of the MCP server (CHAT_MCP_SERVER_URL, else SITE_URL)."""
        return self.chat_mcp_server_url or self.site_url

    @property
    def mcp_server_url(self) -> str:
        """Full MCP endpoint URL, resolved like a browser resolves a relative link."""
        return urljoin(self.mcp_server_base_url, self.chat_mcp_server_endpoint)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    def chat_handler_config(self) -> ChatHandlerConfig:
        """Build the immutable per-request configuration handed to chat handlers."""
        from models.chat_models import ChatHandlerConfig

        return ChatHandlerConfig(
            model=self.llm_model,
            temperature=self.llm_temperature,
            max_tool_loops=self.llm_max_tool_loops,
            system_message=self.system_message,
        )


# ============================================================================
# Settings Management (Thread-safe)
# ============================================================================


class _SettingsManager:
    """Lazily loaded, lock-guarded ``Settings`` singleton."""

    __slots__ = ("_instance", "_lock")

    def __init__(self) -> None:
        self._instance: Settings | None = None
        self._lock = threading.Lock()

    def get(self) -> Settings:
        if self._instance is not None:
            return self._instance

        with self._lock:
            if self._instance is None:
                self._instance = Settings()
            return self._instance

    def reload(self) -> Settings:
        with self._lock:
            self._instance = Settings()
            return self._instance

    def clear(self) -> None:
        with self._lock:
            self._instance = None


_settings_manager = _SettingsManager()


def get_settings() -> Settings:
    """Cached settings, validated on first access.

    Raises:
        ValueError: If an environment value fails validation.
    """
    return _settings_manager.get()


def reload_settings() -> Settings:
    """Force reload settings from environment files."""
    return _settings_manager.reload()


def clear_settings_cache() -> None:
    """Drop the cached instance so the next access reloads (tests)."""
    _settings_manager.clear()
