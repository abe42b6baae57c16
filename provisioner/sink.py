"""
OpenClaw Admin - Progress Sinks
=================================
Ordered event channels used to report workflow progress.

Every unit of progress is a ProgressEvent with a type and a payload:

    - "stdout" : raw text chunk from a child process (or a step header)
    - "stderr" : raw text chunk, warning or error hint
    - "exit"   : final status, payload {"code": int}
    - "error"  : spawn failure or internal error, payload is a message string

Consumers treat the stream as append-only and stop reading after
"exit" or "error".

Sinks:
    ProgressSink    -> base interface (emit + convenience helpers)
    QueueSink       -> asyncio.Queue backed, drained by the SSE response
    CollectingSink  -> keeps every event in a list (tests, summaries)
    ObservedSink    -> forwards to an inner sink and notifies an observer
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable


EVENT_TYPES = ("stdout", "stderr", "exit", "error")


@dataclass
class ProgressEvent:
    """A single tagged progress message."""

    type: str
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}

    def to_sse(self) -> str:
        """Encode as one Server-Sent-Events frame."""
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"

    @property
    def is_terminal(self) -> bool:
        return self.type in ("exit", "error")


class ProgressSink:
    """
    Base class for progress consumers.

    Subclasses implement emit(); the helpers below build the event
    for the four known types.
    """

    async def emit(self, event_type: str, data: Any) -> None:
        raise NotImplementedError

    async def stdout(self, text: str) -> None:
        await self.emit("stdout", text)

    async def stderr(self, text: str) -> None:
        await self.emit("stderr", text)

    async def exit(self, code: int) -> None:
        await self.emit("exit", {"code": code})

    async def error(self, message: str) -> None:
        await self.emit("error", message)


class QueueSink(ProgressSink):
    """
    Sink backed by an unbounded asyncio.Queue.

    The producer (the workflow task) emits events; the consumer (the
    streaming HTTP response) iterates the sink until close() is called.
    """

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    async def emit(self, event_type: str, data: Any) -> None:
        if self._closed:
            return
        self._queue.put_nowait(ProgressEvent(event_type, data))

    def close(self) -> None:
        """Mark the end of the stream. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class CollectingSink(ProgressSink):
    """Keep every event in memory, in emission order."""

    def __init__(self):
        self.events: list[ProgressEvent] = []

    async def emit(self, event_type: str, data: Any) -> None:
        self.events.append(ProgressEvent(event_type, data))

    def text(self, event_type: str) -> str:
        """Concatenate all text payloads of one type."""
        return "".join(e.data for e in self.events if e.type == event_type)

    @property
    def exit_code(self) -> int | None:
        for event in reversed(self.events):
            if event.type == "exit":
                return event.data["code"]
        return None


class ObservedSink(ProgressSink):
    """
    Forward every event to an inner sink, then hand it to an observer.

    Used by the operation manager to mirror a request's stream into
    the operation log and the dashboard WebSocket.
    """

    def __init__(
        self,
        inner: ProgressSink,
        observer: Callable[[ProgressEvent], Awaitable[None]],
    ):
        self.inner = inner
        self.observer = observer

    async def emit(self, event_type: str, data: Any) -> None:
        await self.inner.emit(event_type, data)
        await self.observer(ProgressEvent(event_type, data))
