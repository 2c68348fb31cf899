"""
MCP Tool Client - discovers and invokes tools on the portfolio MCP server.

Used by the proxy chat mode, which executes tool calls itself. One
``ClientSession`` over streamable HTTP is opened lazily and shared by all
requests. The session's transport contexts are entered and exited by a
dedicated background task, so opening and closing always happen in the same
task no matter which request triggered the connection.

Transport failures never leave a half-open session behind: the connection is
torn down, an ``ExternalServiceError`` is raised and the next call connects
again. A JSON-RPC error reply (``McpError``, e.g. unknown tool or invalid
params) comes over a healthy connection, so the shared session is kept.
"""

from __future__ import annotations

import asyncio
import contextlib

from typing import Any

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError
from mcp.types import Implementation

from api.middleware.exception_handlers import ExternalServiceError
from core.constants import MCP_CLIENT_NAME, MCP_CLIENT_VERSION, MCP_CONNECT_TIMEOUT
from models.error_models import ErrorCode
from models.mcp_models import MCPResult, MCPTool, TextBlock
from utils.json_utils import json_pretty
from utils.logger import logger

MCP_SERVICE_NAME = "MCP"


def _rpc_error(action: str, error: McpError) -> ExternalServiceError:
    logger.warning(f"{action}: {error}", mcp_error_code=error.error.code)
    return ExternalServiceError(MCP_SERVICE_NAME, f"{action}: {error}", code=ErrorCode.MCP_SERVER_ERROR, cause=error)


def _block_field(block: Any, key: str) -> Any:
    if isinstance(block, dict):
        return block.get(key)
    return getattr(block, key, None)


def _to_jsonable(payload: Any) -> Any:
    if hasattr(payload, "model_dump"):
        return payload.model_dump(mode="json", exclude_none=True)
    return payload


def normalize_tool_result(result: Any) -> MCPResult:
    """Convert a raw ``tools/call`` result into ordered text blocks.

    A standard result carries a list of content blocks; only non-empty text
    blocks are kept. Anything else is serialized whole as one pretty-printed
    JSON text block.
    """
    content = _block_field(result, "content")
    is_error = bool(_block_field(result, "isError"))

    if isinstance(content, list):
        blocks = [
            TextBlock(text=text)
            for block in content
            if _block_field(block, "type") == "text" and (text := _block_field(block, "text"))
        ]
        return MCPResult(content=blocks, isError=is_error)

    return MCPResult(content=[TextBlock(text=json_pretty(_to_jsonable(result)))], isError=is_error)


def result_to_text(result: MCPResult) -> str:
    """Join all text blocks of a result with newlines."""
    return result.text


class McpToolClient:
    """Persistent MCP client with lazy, lock-guarded connection."""

    def __init__(
        self,
        server_url: str,
        client_name: str = MCP_CLIENT_NAME,
        client_version: str = MCP_CLIENT_VERSION,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
    ) -> None:
        self.server_url = server_url
        self.client_name = client_name
        self.client_version = client_version
        self.connect_timeout = connect_timeout

        self._session: ClientSession | None = None
        self._worker: asyncio.Task[None] | None = None
        self._closing: asyncio.Event | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def _run_session(self, ready: asyncio.Future[ClientSession], closing: asyncio.Event) -> None:
        """Own the transport and session until ``closing`` is set."""
        client_info = Implementation(name=self.client_name, version=self.client_version)
        try:
            async with streamablehttp_client(self.server_url) as (read_stream, write_stream, _):
                async with ClientSession(read_stream, write_stream, client_info=client_info) as session:
                    await session.initialize()
                    if not ready.done():
                        ready.set_result(session)
                    await closing.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.warning(f"MCP session ended unexpectedly: {e}", mcp_url=self.server_url)
        finally:
            if not ready.done():
                ready.set_exception(ConnectionError("MCP session closed before initialization"))

    async def _stop_worker(self) -> None:
        """Signal the session task to exit and wait for it. Caller holds the lock."""
        worker, closing = self._worker, self._closing
        self._session = None
        self._worker = None
        self._closing = None

        if closing is not None:
            closing.set()
        if worker is not None and not worker.done():
            try:
                await asyncio.wait_for(asyncio.shield(worker), timeout=self.connect_timeout)
            except Exception:
                worker.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await worker

    async def _ensure_session(self) -> ClientSession:
        if self._session is not None:
            return self._session

        async with self._lock:
            # Double-check after acquiring lock
            if self._session is not None:
                return self._session

            loop = asyncio.get_running_loop()
            ready: asyncio.Future[ClientSession] = loop.create_future()
            self._closing = asyncio.Event()
            self._worker = asyncio.create_task(self._run_session(ready, self._closing))

            try:
                session = await asyncio.wait_for(ready, timeout=self.connect_timeout)
            except asyncio.CancelledError:
                await self._stop_worker()
                raise
            except asyncio.TimeoutError as e:
                await self._stop_worker()
                logger.error(f"MCP connection timed out after {self.connect_timeout}s", mcp_url=self.server_url)
                raise ExternalServiceError(
                    MCP_SERVICE_NAME,
                    f"Failed to connect to MCP server: timed out after {self.connect_timeout}s",
                    code=ErrorCode.EXTERNAL_TIMEOUT,
                    cause=e,
                ) from e
            except Exception as e:
                await self._stop_worker()
                logger.error(f"MCP connection failed: {e}", mcp_url=self.server_url)
                raise ExternalServiceError(
                    MCP_SERVICE_NAME,
                    f"Failed to connect to MCP server: {e}",
                    code=ErrorCode.MCP_SERVER_ERROR,
                    cause=e,
                ) from e

            self._session = session
            logger.info("Connected to MCP server", mcp_url=self.server_url)
            return session

    async def _reset(self, failed: ClientSession) -> None:
        """Drop the failed session unless another caller already replaced it."""
        async with self._lock:
            if self._session is failed:
                await self._stop_worker()

    async def list_tools(self) -> list[MCPTool]:
        """Fetch the tool catalog from the server."""
        session = await self._ensure_session()
        try:
            result = await session.list_tools()
        except McpError as e:
            raise _rpc_error("Failed to list MCP tools", e) from e
        except Exception as e:
            await self._reset(session)
            raise ExternalServiceError(
                MCP_SERVICE_NAME,
                f"Failed to list MCP tools: {e}",
                code=ErrorCode.MCP_SERVER_ERROR,
                cause=e,
            ) from e

        tools = [
            MCPTool(name=tool.name, description=tool.description, inputSchema=tool.inputSchema)
            for tool in result.tools
        ]
        logger.debug(f"Listed {len(tools)} MCP tools", tool_names=[tool.name for tool in tools])
        return tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> MCPResult:
        """Invoke a tool by name and normalize its result to text blocks."""
        session = await self._ensure_session()
        try:
            raw_result = await session.call_tool(name, arguments)
        except McpError as e:
            raise _rpc_error(f"Failed to call MCP tool '{name}'", e) from e
        except Exception as e:
            await self._reset(session)
            raise ExternalServiceError(
                MCP_SERVICE_NAME,
                f"Failed to call MCP tool '{name}': {e}",
                code=ErrorCode.MCP_SERVER_ERROR,
                cause=e,
            ) from e

        result = normalize_tool_result(raw_result)
        logger.log_function_call(name, arguments, result.text, success=not result.isError)
        return result

    async def close(self) -> None:
        """Close the session (application shutdown)."""
        async with self._lock:
            was_connected = self._session is not None
            await self._stop_worker()
        if was_connected:
            logger.info("MCP client closed", mcp_url=self.server_url)


__all__ = [
    "MCP_SERVICE_NAME",
    "McpToolClient",
    "normalize_tool_result",
    "result_to_text",
]
