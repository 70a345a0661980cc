import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine

from signage_player.config import DEVICE_CODE, EVALUATE_INTERVAL_SEC, FLUSH_INTERVAL_SEC, IDENTIFY_SEC
from signage_player.schemas.command import DeviceCommand
from signage_player.schemas.device_state import DeviceState, PlaylistItem
from signage_player.schemas.playback import ActiveItemOut, BlockedOut, MediaResolveOut, PlaybackSnapshot
from signage_player.schemas.selection import ContentSelection, SelectionKind
from signage_player.services.clock import local_now
from signage_player.services.commands import CommandDispatcher
from signage_player.services.media_cache import MediaCache
from signage_player.services.realtime import PlayerHub
from signage_player.services.rotation import RotationController
from signage_player.services.selector import resolve_current_content
from signage_player.services.source import HttpStateSource, StateSource
from signage_player.services.store import LocalStore
from signage_player.services.sync import Subscription, SyncService

logger = logging.getLogger(__name__)


class PlayerEngine:
    """
    Top-level context for one device.

    Owns the services and the periodic work: the evaluation tick re-runs
    selection against the current wall clock, the flush tick housekeeps the
    local cache and reports cached media. ``stop()`` cancels the ticks, the
    sync subscription and rotation timers; media downloads and flushes
    already started are left to finish.
    """

    def __init__(
        self,
        device_code: str = DEVICE_CODE,
        *,
        store: LocalStore | None = None,
        source: StateSource | None = None,
        sync: SyncService | None = None,
        media_cache: MediaCache | None = None,
        rotation: RotationController | None = None,
        hub: PlayerHub | None = None,
        evaluate_interval_sec: float = EVALUATE_INTERVAL_SEC,
        flush_interval_sec: float = FLUSH_INTERVAL_SEC,
        identify_sec: float = IDENTIFY_SEC,
        clock: Callable[[], datetime] = local_now,
        reboot_hook: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.device_code = device_code
        self.store = store or LocalStore()
        self.source = source or HttpStateSource()
        self.sync = sync or SyncService(self.store, self.source)
        self.media_cache = media_cache or MediaCache(self.store)
        self.hub = hub or PlayerHub(device_code)
        self.rotation = rotation or RotationController()
        self.rotation.on_change = self._on_item_change
        self.rotation.on_fade = self._on_fade
        self.commands = CommandDispatcher(
            self.store,
            self.sync.ack_command,
            handlers={
                DeviceCommand.RELOAD: self.reload,
                DeviceCommand.CLEAR_CACHE: self.clear_cache,
                DeviceCommand.IDENTIFY: self.identify,
                DeviceCommand.REBOOT: reboot_hook or self.reload,
            },
        )

        self._evaluate_interval = evaluate_interval_sec
        self._flush_interval = flush_interval_sec
        self._identify_sec = identify_sec
        self._clock = clock

        self._selection: ContentSelection | None = None
        self._selection_key: str | None = None
        self._identify_handle: asyncio.TimerHandle | None = None
        self._subscription: Subscription | None = None
        self._evaluate_task: asyncio.Task | None = None
        self._flush_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._subscription is not None

    @property
    def selection(self) -> ContentSelection | None:
        return self._selection

    @property
    def identifying(self) -> bool:
        return self._identify_handle is not None

    async def start(self) -> None:
        if self.running:
            return
        logger.info("Starting player for %s", self.device_code)
        self._subscription = self.sync.init(self.device_code, self._on_state, self.commands.dispatch)
        self.evaluate()
        self._evaluate_task = asyncio.create_task(self._evaluate_loop())
        self._flush_task = asyncio.create_task(self._flush_loop())

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        tasks = [task for task in (self._evaluate_task, self._flush_task) if task is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._evaluate_task = None
        self._flush_task = None
        self._clear_identify()
        self.rotation.stop()
        logger.info("Player stopped")

    async def aclose(self) -> None:
        await self.stop()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.media_cache.aclose()
        close = getattr(self.source, "aclose", None)
        if close is not None:
            await close()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task | None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return None
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # -- selection -----------------------------------------------------

    def _on_state(self, state: DeviceState) -> None:
        self._spawn(self.media_cache.prefetch(state))
        self.evaluate()

    def evaluate(self, now: datetime | None = None) -> ContentSelection:
        selection = resolve_current_content(self.sync.state, now or self._clock())
        key = selection.model_dump_json()
        changed = key != self._selection_key
        self._selection = selection
        self._selection_key = key

        self.rotation.set_items(selection.items if selection.kind == SelectionKind.ITEMS else [])
        if changed:
            logger.info("Content is now %s%s", selection.kind.value, f" ({selection.reason})" if selection.reason else "")
            self._spawn(
                self.hub.publish(
                    "content_changed",
                    {
                        "kind": selection.kind.value,
                        "reason": selection.reason,
                        "playlist_id": selection.playlist_id,
                        "channel_id": selection.channel_id,
                        "item_ids": [item.id for item in selection.items],
                    },
                )
            )
        return selection

    async def _evaluate_loop(self) -> None:
        while True:
            await asyncio.sleep(self._evaluate_interval)
            try:
                self.evaluate()
            except Exception:
                logger.exception("Evaluation tick failed")

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            self._spawn(self.flush())

    async def flush(self) -> int:
        removed = self.store.clear_expired()
        if removed:
            logger.info("Removed %d expired cache entries", removed)
        await self.sync.report_media_cache(self.media_cache.cached_media_ids())
        return removed

    # -- rotation events -----------------------------------------------

    def _on_item_change(self, index: int | None, item: PlaylistItem | None) -> None:
        self._spawn(
            self.hub.publish(
                "item_changed",
                {
                    "index": index,
                    "item_id": item.id if item else None,
                    "media_id": item.media_id if item else None,
                    "duration": self.rotation.duration,
                },
            )
        )

    def _on_fade(self, index: int, item: PlaylistItem) -> None:
        self._spawn(self.hub.publish("fade", {"index": index, "item_id": item.id}))

    # -- commands ------------------------------------------------------

    async def reload(self) -> None:
        await self.sync.perform_full_sync()
        self.rotation.restart()
        self.evaluate()

    async def clear_cache(self) -> None:
        await self.media_cache.clear_all()
        state = self.sync.state
        if state is not None:
            self._spawn(self.media_cache.prefetch(state))

    async def identify(self) -> None:
        self._clear_identify()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._identify_handle = loop.call_later(self._identify_sec, self._end_identify)
        await self.hub.publish("identify", {"active": True, "device_code": self.device_code})

    def _clear_identify(self) -> None:
        if self._identify_handle is not None:
            self._identify_handle.cancel()
            self._identify_handle = None

    def _end_identify(self) -> None:
        self._identify_handle = None
        self._spawn(self.hub.publish("identify", {"active": False, "device_code": self.device_code}))

    # -- playback surface ----------------------------------------------

    async def force_sync(self) -> bool:
        state = await self.sync.perform_full_sync()
        self.evaluate()
        return state is not None

    async def resolve_media(self, media_id: str, url: str) -> MediaResolveOut:
        handle = await self.media_cache.resolve(media_id, url)
        cached = self.media_cache.is_local(handle)
        return MediaResolveOut(
            media_id=media_id,
            handle=handle,
            url=self.media_cache.handle_url(handle) if cached else handle,
            cached=cached,
        )

    def snapshot(self) -> PlaybackSnapshot:
        selection = self._selection or resolve_current_content(self.sync.state, self._clock())
        active_items: list[ActiveItemOut] = []
        for item in selection.items:
            handle = self.media_cache.peek(item.media.id)
            active_items.append(
                ActiveItemOut(item=item, handle=handle, handle_url=self.media_cache.handle_url(handle))
            )

        override_handle = None
        if selection.override_media is not None:
            override_handle = self.media_cache.handle_url(self.media_cache.peek(selection.override_media.id))

        return PlaybackSnapshot(
            device_code=self.device_code,
            kind=selection.kind,
            reason=selection.reason,
            active_items=active_items,
            current_index=self.rotation.current_index,
            current_item=self.rotation.current_item,
            time_remaining_sec=self.rotation.time_remaining,
            progress=self.rotation.progress,
            override_media=selection.override_media,
            override_handle=override_handle,
            blocked=BlockedOut(message=selection.message or "") if selection.kind == SelectionKind.BLOCKED else None,
            identify=self.identifying,
            is_online=self.sync.is_online,
            last_sync_at=self.sync.last_sync_at,
        )

    def status(self) -> dict[str, Any]:
        return {
            "device_code": self.device_code,
            "running": self.running,
            "is_online": self.sync.is_online,
            "last_sync_at": self.sync.last_sync_at.isoformat() if self.sync.last_sync_at else None,
            "last_error": self.sync.last_error,
            "has_state": self.sync.state is not None,
            "store_degraded": self.store.degraded,
            "cached_media": len(self.media_cache.cached_media_ids()),
            "player_clients": self.hub.client_count,
            "revision": self.hub.revision,
        }
