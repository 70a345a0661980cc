from __future__ import annotations

import asyncio
from typing import Any

from signage_player.schemas.device_state import DeviceState

DEVICE_CODE = "Device-Test"


def media(media_id: str = "m1", *, type: str = "image", duration: int = 10) -> dict[str, Any]:
    return {
        "id": media_id,
        "name": f"Media {media_id}",
        "type": type,
        "file_url": f"https://cdn.example.test/{media_id}.png",
        "duration": duration,
    }


def item(item_id: str = "i1", *, position: int = 0, media_id: str | None = None, **fields: Any) -> dict[str, Any]:
    media_fields = fields.pop("media", None) or media(media_id or f"media-{item_id}")
    return {"id": item_id, "position": position, "media": media_fields, **fields}


def channel(channel_id: str, *, position: int = 0, items: list[dict] | None = None, **fields: Any) -> dict[str, Any]:
    return {
        "id": channel_id,
        "name": fields.pop("name", channel_id),
        "position": position,
        "items": items if items is not None else [item(f"{channel_id}-item")],
        **fields,
    }


def playlist(playlist_id: str, *, priority: int = 0, items: list[dict] | None = None, **fields: Any) -> dict[str, Any]:
    payload = {
        "id": playlist_id,
        "name": fields.pop("name", playlist_id),
        "priority": priority,
        **fields,
    }
    if payload.get("has_channels"):
        payload.setdefault("channels", [])
    else:
        payload["items"] = items if items is not None else [item(f"{playlist_id}-item")]
    return payload


def state_payload(*playlists: dict[str, Any], **fields: Any) -> dict[str, Any]:
    return {"device_code": fields.pop("device_code", DEVICE_CODE), "playlists": list(playlists), **fields}


def device_state(*playlists: dict[str, Any], **fields: Any) -> DeviceState:
    return DeviceState.model_validate(state_payload(*playlists, **fields))


class FakeSource:
    """In-memory state source: a canned pull response plus a push queue."""

    def __init__(self, response: Any = None) -> None:
        self.response = response
        self.fetch_calls = 0
        self.acks: list[str] = []
        self.heartbeats = 0
        self.reports: list[list[str]] = []
        self._queue: asyncio.Queue | None = None

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def push(self, message: dict[str, Any]) -> None:
        self.queue.put_nowait(message)

    async def fetch_state(self, device_code: str) -> dict[str, Any]:
        self.fetch_calls += 1
        if isinstance(self.response, Exception):
            raise self.response
        if self.response is None:
            raise ConnectionError("backend unreachable")
        return self.response

    async def listen(self, device_code: str):
        while True:
            message = await self.queue.get()
            yield message

    async def ack_command(self, device_code: str, command_id: str) -> None:
        self.acks.append(command_id)

    async def heartbeat(self, device_code: str) -> None:
        self.heartbeats += 1

    async def report_media_cache(self, device_code: str, media_ids: list[str]) -> None:
        self.reports.append(list(media_ids))


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
