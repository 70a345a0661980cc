import json
import logging
from typing import Any, AsyncIterator, Protocol

import httpx
import websockets

from signage_player.config import API_KEY, HTTP_TIMEOUT_SEC, SERVER_URL

logger = logging.getLogger(__name__)


class StateSource(Protocol):
    """Where device state comes from. Transport details stay behind this seam."""

    async def fetch_state(self, device_code: str) -> dict[str, Any]: ...

    def listen(self, device_code: str) -> AsyncIterator[dict[str, Any]]: ...

    async def ack_command(self, device_code: str, command_id: str) -> None: ...

    async def heartbeat(self, device_code: str) -> None: ...

    async def report_media_cache(self, device_code: str, media_ids: list[str]) -> None: ...


def _ws_base(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):]
    return base_url


class HttpStateSource:
    """Pulls state over HTTP and listens for pushes on the backend's ``/ws/updates`` feed."""

    def __init__(
        self,
        base_url: str = SERVER_URL,
        api_key: str = API_KEY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"X-API-Key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=HTTP_TIMEOUT_SEC,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_state(self, device_code: str) -> dict[str, Any]:
        response = await self._client.get(f"/devices/{device_code}/state")
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("state payload must be a JSON object")
        return payload

    async def listen(self, device_code: str) -> AsyncIterator[dict[str, Any]]:
        url = f"{_ws_base(self.base_url)}/ws/updates?device_code={device_code}"
        async with websockets.connect(url) as ws:
            logger.info("Push channel connected: %s", url)
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("Ignoring non-JSON push message")
                    continue
                if isinstance(message, dict):
                    yield message

    async def ack_command(self, device_code: str, command_id: str) -> None:
        response = await self._client.delete(f"/devices/{device_code}/command/{command_id}")
        response.raise_for_status()

    async def heartbeat(self, device_code: str) -> None:
        response = await self._client.post(f"/devices/{device_code}/heartbeat")
        response.raise_for_status()

    async def report_media_cache(self, device_code: str, media_ids: list[str]) -> None:
        response = await self._client.post(f"/devices/{device_code}/media-cache-report", json=media_ids)
        response.raise_for_status()
