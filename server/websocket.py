"""
OpenClaw Admin - WebSocket Manager
====================================
Push channel from the panel to every open dashboard tab.

Per-request progress travels over the request's own SSE stream; this
channel mirrors it so other tabs can follow long operations (an install
started in one tab shows up in all of them).

Message types (server -> client):
    - "operation" : {id, name, event: "started" | "output" | "finished", ...}
    - "status"    : snapshot of in-flight operations

Message format:
    {
        "type": "operation",
        "data": {"id": 3, "name": "install", "event": "output",
                 "type": "stdout", "data": "Pulling openclaw-gateway ..."},
        "timestamp": "2026-10-17T09:12:44+00:00"
    }
"""

import json
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket


class WebSocketManager:
    """
    Keeps the set of connected dashboard sockets and broadcasts to them.

    Attributes:
        active_connections: Currently connected WebSocket instances.
    """

    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.active_connections.discard(websocket)

    async def broadcast(self, message: dict[str, Any]) -> None:
        """
        Send a message to all connected clients.

        A timestamp is added when missing. Clients whose send fails are
        dropped from the set.
        """
        if not self.active_connections:
            return

        if "timestamp" not in message:
            message["timestamp"] = datetime.now(timezone.utc).isoformat()

        payload = json.dumps(message, ensure_ascii=False)

        disconnected = set()
        for ws in list(self.active_connections):
            try:
                await ws.send_text(payload)
            except Exception:
                disconnected.add(ws)

        self.active_connections -= disconnected

    async def send_status(self, status: dict[str, Any]) -> None:
        await self.broadcast({"type": "status", "data": status})

    @property
    def client_count(self) -> int:
        return len(self.active_connections)
