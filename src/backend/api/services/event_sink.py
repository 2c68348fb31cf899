"""
Event sink bridging chat handlers and the SSE response body.

A chat handler runs on its own task and pushes events into an ``EventSink``;
the response body generator drains the sink's queue and writes each frame as
soon as it is available. The sink enforces the stream contract: once ``Done``
has been emitted nothing else gets through, so every stream ends with exactly
one ``data: [DONE]`` frame.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator, Awaitable, Callable
from functools import partial

from models.event_models import (
    ContentDelta,
    Done,
    NoticeSeverity,
    SystemNotice,
    ToolPhase,
    ToolStatus,
)
from utils.logger import logger

#: Notice sent when a producer dies with an error it did not report itself.
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

Producer = Callable[["EventSink"], Awaitable[None]]


class EventSink:
    """Ordered, single-consumer queue of encoded SSE frames."""

    def __init__(self) -> None:
        # None marks end of stream for the consumer
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once Done has been emitted."""
        return self._closed

    def emit(self, event: ContentDelta | ToolStatus | SystemNotice | Done) -> None:
        if self._closed:
            logger.debug("Dropping stream event emitted after Done", event_kind=event.kind)
            return

        self._queue.put_nowait(event.to_sse())
        if isinstance(event, Done):
            self._closed = True
            self._queue.put_nowait(None)

    def content(self, text: str) -> None:
        if text:
            self.emit(ContentDelta(text=text))

    def tool_status(self, name: str, phase: ToolPhase, error: str | None = None) -> None:
        self.emit(ToolStatus(name=name, phase=phase, error=error))

    def notice(self, message: str, severity: NoticeSeverity = "info") -> None:
        self.emit(SystemNotice(message=message, severity=severity))

    def done(self) -> None:
        self.emit(Done())

    async def frames(self) -> AsyncIterator[str]:
        """Yield frames in emission order until Done has been delivered."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


def _finish_stream(sink: EventSink, task: asyncio.Task[None]) -> None:
    """Guarantee the terminal frame whatever way the producer ended."""
    if task.cancelled():
        sink.done()
        return

    exc = task.exception()
    if exc is not None:
        logger.error(f"Chat producer failed: {type(exc).__name__}: {exc}", exc_info=False)
        sink.notice(UNEXPECTED_ERROR_MESSAGE, severity="error")
    elif not sink.closed:
        logger.warning("Chat producer returned without emitting Done")
    sink.done()


async def stream_events(producer: Producer, sink: EventSink | None = None) -> AsyncIterator[str]:
    """Run ``producer`` on its own task and yield its SSE frames.

    Closing the generator early (client disconnect) cancels the producer,
    which propagates ``CancelledError`` into whatever it is awaiting.
    """
    sink = sink or EventSink()
    task = asyncio.create_task(producer(sink))
    task.add_done_callback(partial(_finish_stream, sink))

    try:
        async for frame in sink.frames():
            yield frame
    finally:
        if not task.done():
            logger.info("Client disconnected, cancelling chat turn")
            task.cancel()


__all__ = ["UNEXPECTED_ERROR_MESSAGE", "EventSink", "Producer", "stream_events"]
