"""
OpenClaw Admin - Operation Manager
====================================
Tracks the gateway operations started from the panel.

Every streamed request (install, update, logs, ...) is registered here
for its lifetime. The manager:
    - assigns an operation id
    - mirrors the operation's progress events to the OperationLogger
      (log file + WebSocket)
    - keeps a status snapshot for /api/operations

There is no mutual exclusion: two tabs may run two installs at once.

Usage:
    op_id = await manager.begin("install")
    sink = manager.observe(op_id, queue_sink)
    ...
    await manager.finish(op_id)
"""

import asyncio
import itertools
import time
from datetime import datetime, timezone
from typing import Any

from provisioner.oplog import OperationLogger
from provisioner.sink import ObservedSink, ProgressEvent, ProgressSink
from server.websocket import WebSocketManager


# Long-lived pass-through streams: only header/footer are logged.
QUIET_OPERATIONS = {"logs", "status"}


class OperationManager:
    """
    Registry of in-flight operations.

    Attributes:
        ws:          WebSocket manager for status broadcasts.
        oplog:       OperationLogger writing the per-day log files.
        total_runs:  Operations finished since the panel started.
        last_result: {"id", "name", "code"} of the last finished operation.
    """

    def __init__(self, ws_manager: WebSocketManager, oplog: OperationLogger):
        self.ws = ws_manager
        self.oplog = oplog
        self.total_runs: int = 0
        self.last_result: dict[str, Any] | None = None
        self._active: dict[int, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    @property
    def status(self) -> dict[str, Any]:
        return {
            "active": [
                {k: v for k, v in op.items() if not k.startswith("_")}
                for op in self._active.values()
            ],
            "total_runs": self.total_runs,
            "last_result": self.last_result,
            "ws_clients": self.ws.client_count,
        }

    async def begin(self, name: str) -> int:
        op_id = next(self._ids)
        self._active[op_id] = {
            "id": op_id,
            "name": name,
            "started_at": datetime.now(timezone.utc).isoformat(),
            "_t0": time.monotonic(),
            "_code": None,
        }
        try:
            await self.oplog.started(op_id, name)
            await self.ws.send_status(self.status)
        except asyncio.CancelledError:
            self._active.pop(op_id, None)
            raise
        return op_id

    def observe(self, op_id: int, sink: ProgressSink) -> ProgressSink:
        """Wrap a request sink so its events also reach the operation log."""
        op = self._active[op_id]
        quiet = op["name"] in QUIET_OPERATIONS

        async def _record(event: ProgressEvent) -> None:
            if event.type == "exit":
                op["_code"] = event.data.get("code")
            elif event.type == "error" and op["_code"] is None:
                op["_code"] = -1
            if quiet and event.type in ("stdout", "stderr"):
                return
            await self.oplog.output(op_id, op["name"], event)

        return ObservedSink(sink, _record)

    async def finish(self, op_id: int) -> None:
        op = self._active.pop(op_id, None)
        if op is None:
            return
        duration = time.monotonic() - op["_t0"]
        self.total_runs += 1
        self.last_result = {"id": op_id, "name": op["name"], "code": op["_code"]}
        await self.oplog.finished(op_id, op["name"], op["_code"], duration)
        await self.ws.send_status(self.status)
