"""
Proxy chat mode: the relay executes tool calls itself.

Each turn runs a bounded loop of Chat Completions calls. Content tokens are
streamed to the client as they arrive; tool calls requested by the model are
executed one at a time against the MCP server with live status updates, and
their results are fed back to the model for the next iteration.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import openai

from openai import AsyncOpenAI

from api.services.chat_handlers.base import (
    HandlerTraits,
    guarded_turn,
    intro_notice,
    simulate_typing,
)
from api.services.event_sink import EventSink
from core.constants import (
    CHAT_MODE_PROXY,
    FALLBACK_TYPING_DELAY,
    MAX_TOOL_ARGUMENTS_LENGTH,
)
from integrations.mcp_client import McpToolClient
from models.chat_models import (
    ChatHandlerConfig,
    ChatMessage,
    ToolCallRequest,
    assistant_message,
    tool_result_message,
)
from models.mcp_models import MCPTool
from utils.json_utils import json_compact, loads_object
from utils.logger import logger

PROXY_TRAITS = HandlerTraits(
    mode=CHAT_MODE_PROXY,
    display_name="Proxy",
    intro=None,
    reports_tool_discovery=True,
    live_tool_status=True,
)

STREAMING_FALLBACK_NOTICE = "Note: Using non-streaming mode due to organization verification pending."

INVALID_ARGUMENTS_MESSAGE = "Error: Invalid tool arguments provided"
INVALID_ARGUMENTS_STATUS = "Invalid arguments"
ARGUMENTS_TOO_LARGE_MESSAGE = f"Error: Tool arguments exceed {MAX_TOOL_ARGUMENTS_LENGTH} characters"
ARGUMENTS_TOO_LARGE_STATUS = "Arguments too large"


class InvalidToolArgumentsError(ValueError):
    """Tool arguments the relay refuses to forward to the MCP server.

    Attributes:
        tool_message: Text sent back to the model as the tool result
        status: Short text for the client's tool status line
    """

    def __init__(self, tool_message: str, status: str, reason: str):
        super().__init__(reason)
        self.tool_message = tool_message
        self.status = status


def parse_tool_arguments(arguments_json: str) -> dict[str, Any]:
    """Decode a tool call's argument text.

    Empty text means no arguments. Anything that is not a JSON object, or
    whose serialized form exceeds the size limit, is rejected.
    """
    if not arguments_json.strip():
        return {}

    try:
        arguments = loads_object(arguments_json)
    except ValueError as e:
        raise InvalidToolArgumentsError(INVALID_ARGUMENTS_MESSAGE, INVALID_ARGUMENTS_STATUS, str(e)) from e

    if len(json_compact(arguments)) > MAX_TOOL_ARGUMENTS_LENGTH:
        raise InvalidToolArgumentsError(
            ARGUMENTS_TOO_LARGE_MESSAGE,
            ARGUMENTS_TOO_LARGE_STATUS,
            f"arguments exceed {MAX_TOOL_ARGUMENTS_LENGTH} characters",
        )
    return arguments


def is_streaming_unsupported(error: BaseException) -> bool:
    """True when the provider refused ``stream=True`` for this organization."""
    return (
        isinstance(error, openai.APIError)
        and getattr(error, "code", None) == "unsupported_value"
        and getattr(error, "param", None) == "stream"
    )


@dataclass
class _ToolCallBuilder:
    id: str | None = None
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Assembles streamed tool-call fragments keyed by their ``index``."""

    def __init__(self) -> None:
        self._builders: dict[int, _ToolCallBuilder] = {}

    def add(self, fragment: Any) -> None:
        builder = self._builders.setdefault(fragment.index, _ToolCallBuilder())
        if fragment.id:
            builder.id = fragment.id
        function = fragment.function
        if function is not None:
            if function.name:
                builder.name = function.name
            if function.arguments:
                builder.arguments.append(function.arguments)

    def finalize(self) -> list[ToolCallRequest]:
        """Complete calls in index order. Fragments that never named a tool are dropped."""
        calls = []
        for index in sorted(self._builders):
            builder = self._builders[index]
            if not builder.name:
                logger.warning("Dropping streamed tool call without a name", tool_index=index)
                continue
            calls.append(
                ToolCallRequest(
                    id=builder.id or f"call_{index}",
                    name=builder.name,
                    arguments_json="".join(builder.arguments),
                )
            )
        return calls


@dataclass
class CompletionTurn:
    """Outcome of one completion call."""

    text: str
    tool_calls: list[ToolCallRequest]


class ProxyChatHandler:
    """Chat Completions with tool calls executed by the relay."""

    def __init__(
        self,
        openai_client: AsyncOpenAI,
        tool_client: McpToolClient,
        force_non_streaming: bool = False,
    ) -> None:
        self._openai = openai_client
        self._tools = tool_client
        self._force_non_streaming = force_non_streaming

    @property
    def traits(self) -> HandlerTraits:
        return PROXY_TRAITS

    async def handle(self, messages: Sequence[ChatMessage], config: ChatHandlerConfig, sink: EventSink) -> None:
        await guarded_turn(self.traits, sink, len(messages), self._run(messages, config, sink))

    async def _run(self, messages: Sequence[ChatMessage], config: ChatHandlerConfig, sink: EventSink) -> None:
        intro_notice(self.traits, sink)

        mcp_tools = await self._tools.list_tools()
        tools = [tool.to_openai_tool() for tool in mcp_tools]
        self._report_discovery(mcp_tools, sink)

        history: list[dict[str, Any]] = [message.to_openai() for message in messages]
        use_streaming = not self._force_non_streaming
        truncated = False

        for iteration in range(1, config.max_tool_loops + 1):
            logger.debug(f"Proxy loop iteration {iteration}/{config.max_tool_loops}", iteration=iteration)
            request = self._completion_request(config, history, tools)

            turn: CompletionTurn | None = None
            if use_streaming:
                try:
                    turn = await self._stream_completion(request, sink)
                except openai.APIError as e:
                    if not is_streaming_unsupported(e):
                        raise
                    use_streaming = False
                    logger.warning("Streaming rejected by provider, falling back to non-streaming")
                    sink.notice(STREAMING_FALLBACK_NOTICE)

            if turn is None:
                turn = await self._complete(request, sink)

            history.append(assistant_message(turn.text, turn.tool_calls))
            if not turn.tool_calls:
                break

            for call in turn.tool_calls:
                history.append(await self._execute_tool_call(call, sink))

            truncated = iteration == config.max_tool_loops

        if truncated:
            logger.warning("Proxy turn stopped at the tool-call limit", max_tool_loops=config.max_tool_loops)
            sink.notice(
                f"Stopped after {config.max_tool_loops} rounds of tool calls. "
                "The answer may be incomplete; try asking a more specific question.",
                severity="warning",
            )

    def _report_discovery(self, mcp_tools: list[MCPTool], sink: EventSink) -> None:
        logger.info(f"Discovered {len(mcp_tools)} MCP tools", tool_names=[tool.name for tool in mcp_tools])
        if self.traits.reports_tool_discovery:
            sink.notice(f"Discovered {len(mcp_tools)} available tools from MCP server")

    @staticmethod
    def _completion_request(
        config: ChatHandlerConfig,
        history: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": config.model,
            "messages": [{"role": "system", "content": config.system_message}, *history],
            "temperature": config.temperature,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        return request

    async def _stream_completion(self, request: dict[str, Any], sink: EventSink) -> CompletionTurn:
        stream: AsyncIterator[Any] = await self._openai.chat.completions.create(
            **request,
            stream=True,
            stream_options={"include_usage": True},
        )

        text_parts: list[str] = []
        accumulator = ToolCallAccumulator()
        async for chunk in stream:
            if not chunk.choices:
                # Trailing usage chunk
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                text_parts.append(delta.content)
                sink.content(delta.content)
            for fragment in delta.tool_calls or []:
                accumulator.add(fragment)

        return CompletionTurn(text="".join(text_parts), tool_calls=accumulator.finalize())

    async def _complete(self, request: dict[str, Any], sink: EventSink) -> CompletionTurn:
        response = await self._openai.chat.completions.create(**request)
        message = response.choices[0].message

        text = message.content or ""
        tool_calls = [
            ToolCallRequest(id=call.id, name=call.function.name, arguments_json=call.function.arguments or "")
            for call in message.tool_calls or []
        ]
        await simulate_typing(sink, text, FALLBACK_TYPING_DELAY)
        return CompletionTurn(text=text, tool_calls=tool_calls)

    async def _execute_tool_call(self, call: ToolCallRequest, sink: EventSink) -> dict[str, Any]:
        """Run one tool call and return the tool message for the history."""
        sink.tool_status(call.name, "executing")

        try:
            arguments = parse_tool_arguments(call.arguments_json)
        except InvalidToolArgumentsError as e:
            logger.warning(f"Rejected arguments for tool {call.name}: {e}", tool=call.name)
            sink.tool_status(call.name, "error", error=e.status)
            return tool_result_message(call.id, e.tool_message)

        try:
            result = await self._tools.call_tool(call.name, arguments)
        except Exception as e:
            logger.error(f"Tool {call.name} failed: {e}", tool=call.name)
            sink.tool_status(call.name, "error", error=str(e))
            return tool_result_message(call.id, f"Error: Failed to execute tool - {e}")

        if result.isError:
            sink.tool_status(call.name, "error", error=result.text or "Tool reported an error")
        else:
            sink.tool_status(call.name, "completed")
        return tool_result_message(call.id, result.text)


__all__ = [
    "PROXY_TRAITS",
    "STREAMING_FALLBACK_NOTICE",
    "CompletionTurn",
    "InvalidToolArgumentsError",
    "ProxyChatHandler",
    "ToolCallAccumulator",
    "is_streaming_unsupported",
    "parse_tool_arguments",
]
