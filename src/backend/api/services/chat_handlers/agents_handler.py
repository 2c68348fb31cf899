"""
Agents chat mode: the OpenAI Agents SDK runs the whole turn.

An ``Agent`` is given the MCP server as a hosted tool and driven with
``Runner.run_streamed``. SDK events are classified into ``AgentSignal``
records (see ``models.sdk_models``) and only text reaches the client; tool
activity is logged, because hosted tools run before the answer is produced
and cannot be reported live.
"""

from __future__ import annotations

import asyncio

from collections.abc import Sequence
from typing import Any, assert_never

from agents import Agent, HostedMCPTool, ItemHelpers, RunConfig, Runner
from agents.models.openai_provider import OpenAIProvider
from openai import AsyncOpenAI

from api.services.chat_handlers.base import (
    HandlerTraits,
    guarded_turn,
    intro_notice,
    simulate_typing,
)
from api.services.event_sink import EventSink
from core.constants import CHAT_MODE_AGENTS, MESSAGE_OUTPUT_ITEM, NATIVE_TYPING_DELAY
from core.prompts import build_agent_instructions
from integrations.mcp_registry import HostedMcpServer
from models.chat_models import ChatHandlerConfig, ChatMessage
from models.sdk_models import (
    AgentSwitch,
    FinalText,
    Ignored,
    TextDelta,
    ToolActivity,
    TurnStarted,
    classify_stream_event,
)
from utils.logger import logger

AGENTS_TRAITS = HandlerTraits(
    mode=CHAT_MODE_AGENTS,
    display_name="Agents",
    intro="🤖 OpenAI Agents Mode: Using OpenAI's Agents SDK for enhanced tool interaction and real-time updates.",
    reports_tool_discovery=False,
    live_tool_status=False,
)

AGENT_STARTING_NOTICE = "🚀 Initiating agent conversation..."
AGENT_COMPLETED_NOTICE = "🎉 Agent conversation completed successfully"


class SequenceDeduplicator:
    """Drops text deltas the SDK delivers more than once.

    Sequence numbers restart for every response, so they are only unique
    together with the output item they belong to. Created per request.
    """

    def __init__(self) -> None:
        self._seen: set[tuple[str | None, int]] = set()

    def is_duplicate(self, delta: TextDelta) -> bool:
        if delta.sequence_number is None:
            return False
        key = (delta.item_id, delta.sequence_number)
        if key in self._seen:
            return True
        self._seen.add(key)
        return False


def final_output_text(result: Any) -> str:
    """Last assistant message of a finished run, or its final output as text."""
    for item in reversed(getattr(result, "new_items", None) or []):
        if getattr(item, "type", None) == MESSAGE_OUTPUT_ITEM:
            text = ItemHelpers.text_message_output(item)
            if text:
                return text

    final_output = getattr(result, "final_output", None)
    return "" if final_output is None else str(final_output)


class AgentsChatHandler:
    """Agents SDK run with the MCP server as a hosted tool.

    A text delta is dropped as a repeat only when both its sequence number and
    its output item ID were seen before in this turn. Sequence numbers restart
    for each model response of a multi-step run, so the same number on a new
    item is fresh text, not a repeat.
    """

    def __init__(self, openai_client: AsyncOpenAI, server: HostedMcpServer, assistant_name: str) -> None:
        self._openai = openai_client
        self._server = server
        self._assistant_name = assistant_name

    @property
    def traits(self) -> HandlerTraits:
        return AGENTS_TRAITS

    async def handle(self, messages: Sequence[ChatMessage], config: ChatHandlerConfig, sink: EventSink) -> None:
        await guarded_turn(self.traits, sink, len(messages), self._run(messages, config, sink))

    def _build_agent(self, config: ChatHandlerConfig) -> Agent[Any]:
        return Agent(
            name=f"{self._assistant_name} AI Assistant",
            model=config.model,
            instructions=build_agent_instructions(config.system_message),
            tools=[HostedMCPTool(tool_config=self._server.tool_config(include_description=False))],
        )

    def _run_config(self) -> RunConfig:
        return RunConfig(model_provider=OpenAIProvider(openai_client=self._openai, use_responses=True))

    async def _run(self, messages: Sequence[ChatMessage], config: ChatHandlerConfig, sink: EventSink) -> None:
        intro_notice(self.traits, sink)
        agent = self._build_agent(config)

        sink.notice(AGENT_STARTING_NOTICE)
        result = Runner.run_streamed(
            agent,
            input=[message.to_openai() for message in messages],
            run_config=self._run_config(),
        )

        dedup = SequenceDeduplicator()
        emitted_any = False
        streamed_this_turn = False

        try:
            async for event in result.stream_events():
                signal = classify_stream_event(event)

                if isinstance(signal, TextDelta):
                    if dedup.is_duplicate(signal):
                        logger.debug(
                            "Skipping duplicate text delta",
                            sequence_number=signal.sequence_number,
                            item_id=signal.item_id,
                        )
                        continue
                    if signal.delta:
                        sink.content(signal.delta)
                        emitted_any = True
                        streamed_this_turn = True
                elif isinstance(signal, FinalText):
                    if not streamed_this_turn:
                        await simulate_typing(sink, signal.text, NATIVE_TYPING_DELAY)
                        emitted_any = True
                elif isinstance(signal, TurnStarted):
                    streamed_this_turn = False
                elif isinstance(signal, ToolActivity):
                    logger.debug(f"Agent tool {signal.phase}: {signal.tool_name or 'unknown_tool'}")
                elif isinstance(signal, AgentSwitch):
                    logger.debug(f"Agent updated: {signal.agent_name}")
                elif isinstance(signal, Ignored):
                    pass
                else:
                    assert_never(signal)
        except asyncio.CancelledError:
            result.cancel()
            raise

        if not emitted_any:
            logger.info("Agent run produced no streamed text, using final output")
            await simulate_typing(sink, final_output_text(result), NATIVE_TYPING_DELAY)

        sink.notice(AGENT_COMPLETED_NOTICE)


__all__ = [
    "AGENTS_TRAITS",
    "AGENT_COMPLETED_NOTICE",
    "AGENT_STARTING_NOTICE",
    "AgentsChatHandler",
    "SequenceDeduplicator",
    "final_output_text",
]
