import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from signage_player.config import HEARTBEAT_SEC, RECONNECT_MAX_SEC, SYNC_MAX_RETRIES, SYNC_RETRY_BASE_SEC
from signage_player.schemas.command import CommandIn
from signage_player.schemas.device_state import DeviceState
from signage_player.services.source import StateSource
from signage_player.services.store import LocalStore

logger = logging.getLogger(__name__)

StateCallback = Callable[[DeviceState], None]
CommandCallback = Callable[[CommandIn], Awaitable[None]]

FORCE_SYNC_EVENTS = {"config_changed", "force_sync"}


class Subscription:
    def __init__(self, close: Callable[[], None]) -> None:
        self._close = close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._close()


class SyncService:
    """
    Keeps the device state current and mirrored to the local store.

    The service is the only writer of the state reference. Each accepted
    update is validated, persisted, then swapped in as one new object, so
    readers never see a half-built state. Transport failures and malformed
    payloads are logged and leave the previous state in place.
    """

    def __init__(
        self,
        store: LocalStore,
        source: StateSource,
        *,
        max_retries: int = SYNC_MAX_RETRIES,
        retry_base_sec: float = SYNC_RETRY_BASE_SEC,
        reconnect_max_sec: float = RECONNECT_MAX_SEC,
        heartbeat_sec: float = HEARTBEAT_SEC,
    ) -> None:
        self._store = store
        self._source = source
        self._max_retries = max_retries
        self._retry_base_sec = retry_base_sec
        self._reconnect_max_sec = reconnect_max_sec
        self._heartbeat_sec = heartbeat_sec

        self._device_code: str | None = None
        self._on_update: StateCallback | None = None
        self._on_command: CommandCallback | None = None
        self._state: DeviceState | None = None
        self._is_online = False
        self._last_sync_at: datetime | None = None
        self._last_error: str | None = None
        self._retry_count = 0
        self._retry_handle: asyncio.TimerHandle | None = None
        self._listener_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._pulls: set[asyncio.Task] = set()
        self._subscription: Subscription | None = None

    @property
    def device_code(self) -> str | None:
        return self._device_code

    @property
    def state(self) -> DeviceState | None:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def init(
        self,
        device_code: str,
        on_update: StateCallback,
        on_command: CommandCallback | None = None,
    ) -> Subscription:
        """
        Restore the last snapshot, then subscribe for fresher state.

        Must be called from a running event loop. The snapshot is delivered
        to ``on_update`` before this returns so content can resolve offline.
        """
        self.cleanup()
        self._device_code = device_code
        self._on_update = on_update
        self._on_command = on_command
        self._retry_count = 0

        cached = self._store.load_state(device_code)
        if cached is not None:
            logger.info("Restored cached state for %s", device_code)
            self._state = cached
            self._last_sync_at = cached.last_sync
            self._deliver(cached)

        self._listener_task = asyncio.create_task(self._listen_loop(device_code))
        if self._heartbeat_sec > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(device_code))
        self._spawn_pull()

        self._subscription = Subscription(self.cleanup)
        return self._subscription

    def cleanup(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        for task in (self._listener_task, self._heartbeat_task):
            if task is not None and not task.done():
                task.cancel()
        self._listener_task = None
        self._heartbeat_task = None
        # In-flight pulls finish and persist, but no longer call back into a torn-down view.
        self._on_update = None
        self._on_command = None
        subscription = self._subscription
        self._subscription = None
        if subscription is not None and not subscription.closed:
            subscription.close()

    def _deliver(self, state: DeviceState) -> None:
        callback = self._on_update
        if callback is None:
            return
        try:
            callback(state)
        except Exception:
            logger.exception("State update callback failed")

    def _spawn_pull(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._start_pull()

    def _on_retry(self) -> None:
        self._retry_handle = None
        self._start_pull()

    def _start_pull(self) -> None:
        task = asyncio.ensure_future(self.perform_full_sync())
        self._pulls.add(task)
        task.add_done_callback(self._pulls.discard)

    def _schedule_retry(self) -> None:
        if self._retry_count >= self._max_retries or self._retry_handle is not None:
            return
        if self._listener_task is None:
            return
        self._retry_count += 1
        delay = self._retry_base_sec * self._retry_count
        logger.info("Retrying sync in %.1fs (attempt %d/%d)", delay, self._retry_count, self._max_retries)
        self._retry_handle = asyncio.get_running_loop().call_later(delay, self._on_retry)

    async def perform_full_sync(self) -> DeviceState | None:
        device_code = self._device_code
        if not device_code:
            return None
        logger.info("Performing full sync for %s", device_code)
        try:
            payload = await self._source.fetch_state(device_code)
        except Exception as exc:
            self._is_online = False
            self._last_error = f"pull failed: {exc}"
            logger.warning("Sync pull failed for %s: %s", device_code, exc)
            self._schedule_retry()
            return None
        state = self.apply_payload(payload)
        if state is not None:
            self._retry_count = 0
        return state

    def apply_payload(self, payload: Any) -> DeviceState | None:
        device_code = self._device_code
        if not device_code:
            return None
        try:
            incoming = DeviceState.model_validate(payload)
        except ValidationError as exc:
            self._last_error = "malformed state payload"
            logger.warning("Rejected malformed state for %s: %s", device_code, exc)
            return None
        if incoming.device_code != device_code:
            self._last_error = "state for another device"
            logger.warning("Rejected state addressed to %s (this device is %s)", incoming.device_code, device_code)
            return None

        now = datetime.now(timezone.utc)
        state = incoming.model_copy(update={"is_online": True, "last_sync": now})
        self._store.save_state(device_code, state)
        self._state = state
        self._is_online = True
        self._last_sync_at = now
        self._last_error = None
        logger.info("Device state updated: %d playlists", len(state.playlists))
        self._deliver(state)
        return state

    async def _listen_loop(self, device_code: str) -> None:
        initial = min(1.0, self._reconnect_max_sec)
        delay = initial
        while True:
            try:
                async for message in self._source.listen(device_code):
                    delay = initial
                    await self._handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._is_online = False
                logger.warning("Push channel dropped: %s", exc)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._reconnect_max_sec)

    async def _handle_message(self, message: dict[str, Any]) -> None:
        event_type = str(message.get("type", "")).strip().lower()
        payload = message.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if event_type == "state":
            self.apply_payload(payload.get("state", payload))
        elif event_type in FORCE_SYNC_EVENTS or message.get("force_sync") is True or payload.get("force_sync") is True:
            self._spawn_pull()
        elif event_type == "command":
            await self._dispatch_command(payload)

    async def _dispatch_command(self, payload: dict[str, Any]) -> None:
        try:
            command = CommandIn.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed command: %s", exc)
            return
        callback = self._on_command
        if callback is None:
            return
        try:
            await callback(command)
        except Exception:
            logger.exception("Command %s failed", command.command.value)

    async def _heartbeat_loop(self, device_code: str) -> None:
        while True:
            try:
                await self._source.heartbeat(device_code)
                self._is_online = True
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._is_online = False
                logger.debug("Heartbeat failed: %s", exc)
            await asyncio.sleep(self._heartbeat_sec)

    async def ack_command(self, command_id: str) -> bool:
        if not self._device_code:
            return False
        try:
            await self._source.ack_command(self._device_code, command_id)
            return True
        except Exception as exc:
            logger.warning("Could not acknowledge command %s: %s", command_id, exc)
            return False

    async def report_media_cache(self, media_ids: list[str]) -> bool:
        if not self._device_code:
            return False
        try:
            await self._source.report_media_cache(self._device_code, media_ids)
            return True
        except Exception as exc:
            logger.warning("Media cache report failed: %s", exc)
            return False
