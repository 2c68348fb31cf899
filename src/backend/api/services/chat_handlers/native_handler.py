"""
Native chat mode: OpenAI calls the MCP server itself.

One non-streaming Responses API request carries the MCP server as a hosted
tool. OpenAI discovers and runs the tools, so the relay can only report what
happened after the fact: the discovered tool count and a summary of each call,
followed by the answer replayed word by word.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from openai import AsyncOpenAI

from api.services.chat_handlers.base import (
    HandlerTraits,
    flatten_conversation,
    guarded_turn,
    intro_notice,
    simulate_typing,
)
from api.services.event_sink import EventSink
from core.constants import (
    CHAT_MODE_NATIVE,
    MCP_CALL_ITEM,
    MCP_LIST_TOOLS_ITEM,
    NATIVE_TYPING_DELAY,
)
from integrations.mcp_registry import HostedMcpServer
from models.chat_models import ChatHandlerConfig, ChatMessage, ToolCallResult
from utils.logger import logger

NATIVE_TRAITS = HandlerTraits(
    mode=CHAT_MODE_NATIVE,
    display_name="Native MCP",
    intro=(
        "🔧 Native MCP Mode: OpenAI is handling tool calls directly. "
        "Tool execution details will be shown after completion."
    ),
    reports_tool_discovery=True,
    live_tool_status=False,
)


def summarize_tool_calls(output: Sequence[Any]) -> tuple[int | None, list[ToolCallResult]]:
    """Extract the discovered tool count and the executed calls from response output.

    The tool count comes from the first ``mcp_list_tools`` item and is None when
    the response has none.
    """
    tool_count: int | None = None
    calls: list[ToolCallResult] = []

    for item in output:
        item_type = getattr(item, "type", None)
        if item_type == MCP_LIST_TOOLS_ITEM and tool_count is None:
            tool_count = len(getattr(item, "tools", None) or [])
        elif item_type == MCP_CALL_ITEM:
            error = getattr(item, "error", None)
            calls.append(ToolCallResult(name=item.name, success=not error, error=error or None))
    return tool_count, calls


def _call_notice(call: ToolCallResult) -> str:
    if call.success:
        return f"  ✅ {call.name}() - Success"
    return f"  ❌ {call.name}() - Error: {call.error}"


class NativeChatHandler:
    """Responses API with a hosted MCP tool."""

    def __init__(self, openai_client: AsyncOpenAI, server: HostedMcpServer) -> None:
        self._openai = openai_client
        self._server = server

    @property
    def traits(self) -> HandlerTraits:
        return NATIVE_TRAITS

    async def handle(self, messages: Sequence[ChatMessage], config: ChatHandlerConfig, sink: EventSink) -> None:
        await guarded_turn(self.traits, sink, len(messages), self._run(messages, config, sink))

    async def _run(self, messages: Sequence[ChatMessage], config: ChatHandlerConfig, sink: EventSink) -> None:
        intro_notice(self.traits, sink)

        tool_config = self._server.tool_config()
        logger.debug("Calling Responses API with hosted MCP", mcp_url=tool_config["server_url"])

        response = await self._openai.responses.create(
            model=config.model,
            tools=[tool_config],
            input=f"{config.system_message}\n\n{flatten_conversation(messages)}",
            temperature=config.temperature,
        )

        tool_count, calls = summarize_tool_calls(response.output or [])
        if tool_count is not None:
            logger.info(f"MCP discovered {tool_count} tools")
            sink.notice(f"✅ Discovered {tool_count} available tools from MCP server")

        if calls:
            logger.info(f"MCP executed {len(calls)} tool calls", tool_names=[call.name for call in calls])
            sink.notice(f"🔧 Executed {len(calls)} tool call{'s' if len(calls) > 1 else ''}:")
            for call in calls:
                sink.notice(_call_notice(call), severity="info" if call.success else "error")

        await simulate_typing(sink, response.output_text or "", NATIVE_TYPING_DELAY)


__all__ = ["NATIVE_TRAITS", "NativeChatHandler", "summarize_tool_calls"]
