import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)

PLAYER_EVENTS = {"content_changed", "item_changed", "fade", "identify"}


class PlayerHub:
    """Fan-out of playback events to the surfaces connected on ``/ws/player``."""

    def __init__(self, device_code: str = "") -> None:
        self.device_code = device_code
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._revision = 0

    async def connect(self, websocket: WebSocket, snapshot: dict[str, Any] | None = None) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        await websocket.send_text(
            json.dumps(
                {
                    "type": "hello",
                    "device_code": self.device_code,
                    "revision": self._revision,
                    "payload": snapshot or {},
                    "ts": datetime.now(timezone.utc).isoformat(),
                },
                default=str,
            )
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)

    async def publish(self, event_type: str, payload: dict[str, Any] | None = None) -> int:
        if event_type not in PLAYER_EVENTS:
            raise ValueError(f"Unknown player event: {event_type}")
        self._revision += 1
        message = json.dumps(
            {
                "type": event_type,
                "revision": self._revision,
                "payload": payload or {},
                "ts": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
        async with self._lock:
            clients = list(self._clients)

        stale: list[WebSocket] = []
        for client in clients:
            try:
                await client.send_text(message)
            except Exception:
                stale.append(client)

        if stale:
            logger.debug("Dropping %d disconnected player sockets", len(stale))
            async with self._lock:
                for client in stale:
                    self._clients.discard(client)
        return self._revision

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def client_count(self) -> int:
        return len(self._clients)
