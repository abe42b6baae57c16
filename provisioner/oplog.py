"""
OpenClaw Admin - Operation Log
================================
Dual-output logger for gateway operations: writes per-day log files AND
broadcasts via WebSocket to the dashboard.

Log files are stored in <state_dir>/logs/ with names like 2026-10-17.log.
Each operation starts with a separator header and ends with an [EXIT]
line. Output lines are prefixed with [STDOUT] / [STDERR].

Example:

    ==================================================
    Operation install #3 | 2026-10-17 09:12:44
    ==================================================
    [09:12:44] [STDOUT] === [1/5] Validate environment ===
    [09:12:44] [STDOUT] API key configured
    ...
    [09:13:31] [EXIT] code=0 | Time: 47.2s
"""

import os
from datetime import datetime
from typing import Any

from provisioner.sink import ProgressEvent


class OperationLogger:
    """
    Records operation progress to disk and to dashboard clients.

    Attributes:
        log_dir:    Directory for log files.
        ws_manager: WebSocket manager for broadcasting (may be None).
    """

    def __init__(self, log_dir: str, ws_manager: Any = None):
        self.log_dir = log_dir
        self.ws_manager = ws_manager

        os.makedirs(log_dir, exist_ok=True)

    def _get_log_path(self) -> str:
        """Get today's log file path."""
        today = datetime.now().strftime("%Y-%m-%d")
        return os.path.join(self.log_dir, f"{today}.log")

    def _timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def _write(self, text: str) -> None:
        """Append to today's log file."""
        try:
            with open(self._get_log_path(), "a", encoding="utf-8") as f:
                f.write(text + "\n")
        except OSError:
            pass

    async def _broadcast(self, data: dict[str, Any]) -> None:
        if self.ws_manager is None:
            return
        await self.ws_manager.broadcast({"type": "operation", "data": data})

    async def started(self, op_id: int, name: str) -> None:
        """Write the separator header for a new operation."""
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        separator = "=" * 50
        header = f"\n{separator}\nOperation {name} #{op_id} | {now}\n{separator}"
        self._write(header)
        print(header, flush=True)
        await self._broadcast({"id": op_id, "name": name, "event": "started"})

    async def output(self, op_id: int, name: str, event: ProgressEvent) -> None:
        """
        Log one stream event.

        Text chunks are split into lines; "exit" events are left to
        finished(), which also knows the duration.
        """
        if event.type in ("stdout", "stderr"):
            ts = self._timestamp()
            tag = event.type.upper()
            for line in str(event.data).splitlines():
                if line.strip():
                    self._write(f"[{ts}] [{tag}] {line}")
        elif event.type == "error":
            line = f"[{self._timestamp()}] [ERROR] {event.data}"
            self._write(line)
            print(line, flush=True)

        await self._broadcast({"id": op_id, "name": name, "event": "output", **event.to_dict()})

    async def finished(self, op_id: int, name: str, code: int | None, duration: float) -> None:
        """Log the end of an operation (code None = client went away)."""
        outcome = "cancelled" if code is None else f"code={code}"
        line = f"[{self._timestamp()}] [EXIT] {name} #{op_id} {outcome} | Time: {duration:.1f}s"
        self._write(line)
        print(line, flush=True)
        await self._broadcast({
            "id": op_id,
            "name": name,
            "event": "finished",
            "code": code,
            "duration": round(duration, 1),
        })

    def tail(self, lines: int = 100) -> dict[str, Any]:
        """Return the last lines of the newest log file."""
        if not os.path.isdir(self.log_dir):
            return {"lines": [], "total": 0}

        log_files = sorted(
            [f for f in os.listdir(self.log_dir) if f.endswith(".log")],
            reverse=True,
        )
        if not log_files:
            return {"lines": [], "total": 0}

        log_path = os.path.join(self.log_dir, log_files[0])
        try:
            with open(log_path, "r", encoding="utf-8", errors="replace") as f:
                all_lines = f.readlines()
        except OSError:
            return {"lines": [], "total": 0}

        return {
            "lines": [l.rstrip() for l in all_lines[-lines:]],
            "total": len(all_lines),
            "file": log_files[0],
        }
