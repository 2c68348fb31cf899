"""Tests for the proxy chat handler.

The OpenAI client and the MCP tool client are mocks; streamed completions are
built from SimpleNamespace chunks shaped like the SDK's.
"""

from __future__ import annotations

import json

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from api.middleware.exception_handlers import ExternalServiceError
from api.services.chat_handlers.proxy_handler import (
    ARGUMENTS_TOO_LARGE_STATUS,
    INVALID_ARGUMENTS_MESSAGE,
    INVALID_ARGUMENTS_STATUS,
    STREAMING_FALLBACK_NOTICE,
    InvalidToolArgumentsError,
    ProxyChatHandler,
    ToolCallAccumulator,
    is_streaming_unsupported,
    parse_tool_arguments,
)
from api.services.event_sink import EventSink
from core.constants import SSE_DONE_FRAME
from models.mcp_models import MCPResult, TextBlock


def _payloads(frames: list[str]) -> list[Any]:
    return [None if frame == SSE_DONE_FRAME else json.loads(frame[len("data: ") :]) for frame in frames]


def _streaming_unsupported_error() -> openai.APIError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.APIError(
        "Your organization must be verified to stream this model.",
        request,
        body={"code": "unsupported_value", "param": "stream"},
    )


def _completion(content: str | None, tool_calls: list[Any] | None = None) -> SimpleNamespace:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _tool_call(call_id: str, name: str, arguments: str) -> SimpleNamespace:
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


async def _run(handler: ProxyChatHandler, messages: Any, config: Any, collect_frames: Any) -> list[Any]:
    sink = EventSink()
    await handler.handle(messages, config, sink)
    frames = await collect_frames(sink)
    assert frames.count(SSE_DONE_FRAME) == 1
    assert frames[-1] == SSE_DONE_FRAME
    return _payloads(frames)


def _tool_statuses(payloads: list[Any]) -> list[dict[str, Any]]:
    return [p["toolCall"] for p in payloads if p and "toolCall" in p]


def _notices(payloads: list[Any]) -> list[dict[str, Any]]:
    return [p["system"] for p in payloads if p and "system" in p]


def _content(payloads: list[Any]) -> str:
    return "".join(p["content"] for p in payloads if p and "content" in p)


class TestParseToolArguments:
    """Tests for parse_tool_arguments."""

    def test_empty_means_no_arguments(self) -> None:
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments("   ") == {}

    def test_object(self) -> None:
        assert parse_tool_arguments('{"limit": 3}') == {"limit": 3}

    def test_malformed_json(self) -> None:
        with pytest.raises(InvalidToolArgumentsError) as exc_info:
            parse_tool_arguments('{"limit": ')
        assert exc_info.value.tool_message == INVALID_ARGUMENTS_MESSAGE
        assert exc_info.value.status == INVALID_ARGUMENTS_STATUS

    def test_non_object_rejected(self) -> None:
        with pytest.raises(InvalidToolArgumentsError):
            parse_tool_arguments("[1, 2, 3]")

    def test_oversized_arguments(self) -> None:
        with pytest.raises(InvalidToolArgumentsError) as exc_info:
            parse_tool_arguments(json.dumps({"query": "x" * 1000}))
        assert exc_info.value.status == ARGUMENTS_TOO_LARGE_STATUS

    def test_size_judged_on_compact_form(self) -> None:
        """Whitespace the model adds does not count toward the limit."""
        padded = '{"query":' + " " * 1200 + '"short"}'
        assert parse_tool_arguments(padded) == {"query": "short"}


class TestIsStreamingUnsupported:
    """Tests for is_streaming_unsupported."""

    def test_matches_stream_refusal(self) -> None:
        assert is_streaming_unsupported(_streaming_unsupported_error()) is True

    def test_other_api_errors(self) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = openai.APIError("bad temperature", request, body={"code": "unsupported_value", "param": "temperature"})
        assert is_streaming_unsupported(error) is False

    def test_non_api_errors(self) -> None:
        assert is_streaming_unsupported(RuntimeError("stream")) is False


class TestToolCallAccumulator:
    """Tests for ToolCallAccumulator."""

    def test_fragments_concatenated_by_index(self, completion_fakes: Any) -> None:
        accumulator = ToolCallAccumulator()
        accumulator.add(completion_fakes.fragment(1, "call_b", "get_bio", ""))
        accumulator.add(completion_fakes.fragment(0, "call_a", "get_projects", '{"li'))
        accumulator.add(completion_fakes.fragment(0, None, None, 'mit": 2}'))

        calls = accumulator.finalize()

        assert [(c.id, c.name, c.arguments_json) for c in calls] == [
            ("call_a", "get_projects", '{"limit": 2}'),
            ("call_b", "get_bio", ""),
        ]

    def test_missing_id_gets_placeholder(self, completion_fakes: Any) -> None:
        accumulator = ToolCallAccumulator()
        accumulator.add(completion_fakes.fragment(3, None, "get_bio", "{}"))
        assert accumulator.finalize()[0].id == "call_3"

    def test_nameless_call_dropped(self, completion_fakes: Any) -> None:
        accumulator = ToolCallAccumulator()
        accumulator.add(completion_fakes.fragment(0, "call_a", None, "{}"))
        assert accumulator.finalize() == []


class TestProxyChatHandler:
    """Tests for ProxyChatHandler.handle."""

    @pytest.mark.asyncio
    async def test_plain_text_streamed(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        collect_frames: Any,
    ) -> None:
        mock_openai_client.chat.completions.create.return_value = completion_fakes.stream(
            [completion_fakes.chunk("Hello"), completion_fakes.chunk(" world"), completion_fakes.usage_chunk()]
        )
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert payloads[0] == {"system": {"message": "Discovered 2 available tools from MCP server", "type": "info"}}
        assert payloads[1:3] == [{"content": "Hello"}, {"content": " world"}]
        assert _tool_statuses(payloads) == []
        mock_tool_client.call_tool.assert_not_awaited()

        request = mock_openai_client.chat.completions.create.call_args.kwargs
        assert request["stream"] is True
        assert request["stream_options"] == {"include_usage": True}
        assert request["tool_choice"] == "auto"
        assert [tool["function"]["name"] for tool in request["tools"]] == ["get_bio", "get_projects"]
        assert request["messages"][0] == {"role": "system", "content": handler_config.system_message}
        assert request["messages"][1] == {"role": "user", "content": "What projects have you built?"}

    @pytest.mark.asyncio
    async def test_no_tools_omits_tool_choice(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        collect_frames: Any,
    ) -> None:
        mock_tool_client.list_tools.return_value = []
        mock_openai_client.chat.completions.create.return_value = completion_fakes.stream([completion_fakes.chunk("Hi")])
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        await _run(handler, user_messages, handler_config, collect_frames)

        request = mock_openai_client.chat.completions.create.call_args.kwargs
        assert "tools" not in request
        assert "tool_choice" not in request

    @pytest.mark.asyncio
    async def test_tool_round_then_answer(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        collect_frames: Any,
    ) -> None:
        mock_openai_client.chat.completions.create.side_effect = [
            completion_fakes.stream(
                [
                    completion_fakes.chunk(tool_calls=[completion_fakes.fragment(0, "call_1", "get_projects", '{"limit"')]),
                    completion_fakes.chunk(tool_calls=[completion_fakes.fragment(0, None, None, ": 2}")]),
                ]
            ),
            completion_fakes.stream([completion_fakes.chunk("Two projects.")]),
        ]
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert _tool_statuses(payloads) == [
            {"name": "get_projects", "status": "executing"},
            {"name": "get_projects", "status": "completed"},
        ]
        assert _content(payloads) == "Two projects."
        mock_tool_client.call_tool.assert_awaited_once_with("get_projects", {"limit": 2})

        second_messages = mock_openai_client.chat.completions.create.call_args_list[1].kwargs["messages"]
        assert second_messages[-2] == {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": "get_projects", "arguments": '{"limit": 2}'}}
            ],
        }
        assert second_messages[-1] == {"role": "tool", "tool_call_id": "call_1", "content": "tool output"}

    @pytest.mark.asyncio
    async def test_stops_after_max_tool_loops(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        collect_frames: Any,
    ) -> None:
        """A model that always asks for tools gets exactly max_tool_loops completions."""

        def always_tool_call(**kwargs: Any) -> Any:
            fragment = completion_fakes.fragment(0, "call_x", "get_bio", "{}")
            return completion_fakes.stream([completion_fakes.chunk(tool_calls=[fragment])])

        mock_openai_client.chat.completions.create.side_effect = always_tool_call
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert mock_openai_client.chat.completions.create.await_count == handler_config.max_tool_loops
        assert mock_tool_client.call_tool.await_count == handler_config.max_tool_loops
        warning = _notices(payloads)[-1]
        assert warning["type"] == "warning"
        assert warning["message"].startswith("Stopped after 3 rounds of tool calls.")

    @pytest.mark.asyncio
    async def test_answer_on_last_round_is_not_truncated(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        collect_frames: Any,
    ) -> None:
        tool_round = lambda: completion_fakes.stream(  # noqa: E731
            [completion_fakes.chunk(tool_calls=[completion_fakes.fragment(0, "call_x", "get_bio", "")])]
        )
        mock_openai_client.chat.completions.create.side_effect = [
            tool_round(),
            tool_round(),
            completion_fakes.stream([completion_fakes.chunk("Done.")]),
        ]
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert _content(payloads) == "Done."
        assert all(notice["type"] == "info" for notice in _notices(payloads))

    @pytest.mark.asyncio
    async def test_malformed_arguments_isolated(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        collect_frames: Any,
    ) -> None:
        """One bad call is reported to the model; its sibling still runs."""
        mock_openai_client.chat.completions.create.side_effect = [
            completion_fakes.stream(
                [
                    completion_fakes.chunk(
                        tool_calls=[
                            completion_fakes.fragment(0, "call_bad", "get_projects", '{"limit": '),
                            completion_fakes.fragment(1, "call_ok", "get_bio", "{}"),
                        ]
                    )
                ]
            ),
            completion_fakes.stream([completion_fakes.chunk("Here is my bio.")]),
        ]
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert _tool_statuses(payloads) == [
            {"name": "get_projects", "status": "executing"},
            {"name": "get_projects", "status": "error", "error": INVALID_ARGUMENTS_STATUS},
            {"name": "get_bio", "status": "executing"},
            {"name": "get_bio", "status": "completed"},
        ]
        mock_tool_client.call_tool.assert_awaited_once_with("get_bio", {})

        history = mock_openai_client.chat.completions.create.call_args_list[1].kwargs["messages"]
        assert history[-2] == {"role": "tool", "tool_call_id": "call_bad", "content": INVALID_ARGUMENTS_MESSAGE}
        assert history[-1] == {"role": "tool", "tool_call_id": "call_ok", "content": "tool output"}

    @pytest.mark.asyncio
    async def test_tool_failures_reported_and_turn_continues(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        collect_frames: Any,
    ) -> None:
        mock_tool_client.call_tool.side_effect = [
            ExternalServiceError("MCP", "Failed to call MCP tool 'get_bio': refused"),
            MCPResult(content=[TextBlock(text="no such project")], isError=True),
        ]
        mock_openai_client.chat.completions.create.side_effect = [
            completion_fakes.stream(
                [
                    completion_fakes.chunk(
                        tool_calls=[
                            completion_fakes.fragment(0, "call_1", "get_bio", ""),
                            completion_fakes.fragment(1, "call_2", "get_projects", '{"id": 9}'),
                        ]
                    )
                ]
            ),
            completion_fakes.stream([completion_fakes.chunk("Sorry, the tools failed.")]),
        ]
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        statuses = _tool_statuses(payloads)
        assert statuses[1] == {
            "name": "get_bio",
            "status": "error",
            "error": "MCP: Failed to call MCP tool 'get_bio': refused",
        }
        assert statuses[3] == {"name": "get_projects", "status": "error", "error": "no such project"}
        assert _content(payloads) == "Sorry, the tools failed."

        history = mock_openai_client.chat.completions.create.call_args_list[1].kwargs["messages"]
        assert history[-2]["content"] == "Error: Failed to execute tool - MCP: Failed to call MCP tool 'get_bio': refused"
        assert history[-1]["content"] == "no such project"

    @pytest.mark.asyncio
    async def test_streaming_fallback(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        no_typing_delay: AsyncMock,
        collect_frames: Any,
    ) -> None:
        """A stream refusal switches the rest of the turn to non-streaming calls."""
        mock_openai_client.chat.completions.create.side_effect = [
            _streaming_unsupported_error(),
            _completion(None, [_tool_call("call_1", "get_bio", "{}")]),
            _completion("Here you go"),
        ]
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert {"message": STREAMING_FALLBACK_NOTICE, "type": "info"} in _notices(payloads)
        assert [p["content"] for p in payloads if p and "content" in p] == ["Here", " you", " go"]
        assert _tool_statuses(payloads)[-1] == {"name": "get_bio", "status": "completed"}

        calls = mock_openai_client.chat.completions.create.call_args_list
        assert calls[0].kwargs["stream"] is True
        assert "stream" not in calls[1].kwargs
        assert "stream" not in calls[2].kwargs
        no_typing_delay.assert_awaited_with(0.05)

    @pytest.mark.asyncio
    async def test_fallback_not_remembered_across_requests(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        completion_fakes: Any,
        no_typing_delay: AsyncMock,
        collect_frames: Any,
    ) -> None:
        mock_openai_client.chat.completions.create.side_effect = [
            _streaming_unsupported_error(),
            _completion("first"),
            completion_fakes.stream([completion_fakes.chunk("second")]),
        ]
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        await _run(handler, user_messages, handler_config, collect_frames)
        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert _content(payloads) == "second"
        assert mock_openai_client.chat.completions.create.call_args_list[2].kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_force_non_streaming(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        no_typing_delay: AsyncMock,
        collect_frames: Any,
    ) -> None:
        mock_openai_client.chat.completions.create.return_value = _completion("Hi")
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client, force_non_streaming=True)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert _content(payloads) == "Hi"
        assert STREAMING_FALLBACK_NOTICE not in [n["message"] for n in _notices(payloads)]
        assert "stream" not in mock_openai_client.chat.completions.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_other_openai_errors_are_fatal(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        collect_frames: Any,
    ) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        mock_openai_client.chat.completions.create.side_effect = openai.APIError("model overloaded", request, body=None)
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        error = _notices(payloads)[-1]
        assert error["type"] == "error"
        assert error["message"] == "❌ Proxy Error: model overloaded. Please try switching to Native or Agents mode."
        assert mock_openai_client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_tool_discovery_failure_is_fatal(
        self,
        mock_openai_client: Mock,
        mock_tool_client: Mock,
        handler_config: Any,
        user_messages: Any,
        collect_frames: Any,
    ) -> None:
        mock_tool_client.list_tools = AsyncMock(
            side_effect=ExternalServiceError("MCP", "Failed to connect to MCP server: refused")
        )
        handler = ProxyChatHandler(mock_openai_client, mock_tool_client)

        payloads = await _run(handler, user_messages, handler_config, collect_frames)

        assert payloads == [
            {
                "system": {
                    "message": "❌ Proxy Error: MCP: Failed to connect to MCP server: refused. "
                    "Please try switching to Native or Agents mode.",
                    "type": "error",
                }
            },
            None,
        ]
        mock_openai_client.chat.completions.create.assert_not_awaited()
