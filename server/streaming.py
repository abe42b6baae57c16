"""
OpenClaw Admin - Server-Sent Events
=====================================
Turns a workflow coroutine into a text/event-stream response.

    operation(sink) runs in its own task and writes to a QueueSink;
    the response body drains the queue, one "data: {...}\\n\\n" frame
    per ProgressEvent.

If the browser disconnects, the response generator is closed and the
operation task is cancelled; the runner then sends SIGTERM to a child
that is still running. An unexpected exception inside the operation is
reported as an "error" event followed by "exit" with code -1.
"""

import asyncio
from typing import Any, Awaitable, Callable

from fastapi.responses import StreamingResponse

from provisioner.sink import ProgressSink, QueueSink
from server.manager import OperationManager


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

Operation = Callable[[ProgressSink], Awaitable[Any]]


async def _drive(manager: OperationManager, name: str, operation: Operation, queue: QueueSink) -> None:
    op_id = None
    try:
        op_id = await manager.begin(name)
        sink = manager.observe(op_id, queue)
        try:
            await operation(sink)
        except Exception as e:
            await sink.error(str(e) or type(e).__name__)
            await sink.exit(-1)
    finally:
        try:
            if op_id is not None:
                await manager.finish(op_id)
        finally:
            queue.close()


def stream_operation(manager: OperationManager, name: str, operation: Operation) -> StreamingResponse:
    """
    Run `operation` and stream its progress to the client.

    Args:
        manager:   OperationManager that registers and logs the run.
        name:      Operation name (install, update, logs, ...).
        operation: Coroutine function taking the request's ProgressSink.
    """
    async def _events():
        queue = QueueSink()
        task = asyncio.create_task(_drive(manager, name, operation, queue))
        try:
            async for event in queue:
                yield event.to_sse()
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(_events(), media_type="text/event-stream", headers=SSE_HEADERS)
