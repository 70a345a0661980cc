import asyncio
import logging
import time
from enum import Enum
from typing import Callable

from signage_player.config import DEFAULT_IMAGE_DURATION_SEC, FADE_LEAD_MS, PROGRESS_INTERVAL_MS
from signage_player.schemas.device_state import PlaylistItem

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[int | None, PlaylistItem | None], None]
FadeCallback = Callable[[int, PlaylistItem], None]


class RotationState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"


def item_duration(item: PlaylistItem, default_sec: float = DEFAULT_IMAGE_DURATION_SEC) -> float | None:
    """Seconds an item stays on screen, or None when playback end decides."""
    if item.duration_override and item.duration_override > 0:
        return float(item.duration_override)
    if item.media.is_video:
        return None
    if item.media.duration and item.media.duration > 0:
        return float(item.media.duration)
    return float(default_sec)


class RotationController:
    """
    Steps through the active item list.

    Owns three timer handles: the item timer that advances, the progress
    sampler that only reports, and the one-shot fade timer. All three are
    cancelled on every transition. Without a running event loop the
    controller still tracks the index but schedules nothing.
    """

    def __init__(
        self,
        *,
        on_change: ChangeCallback | None = None,
        on_fade: FadeCallback | None = None,
        default_image_duration_sec: float = DEFAULT_IMAGE_DURATION_SEC,
        progress_interval_ms: int = PROGRESS_INTERVAL_MS,
        fade_lead_ms: int = FADE_LEAD_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.on_change = on_change
        self.on_fade = on_fade
        self._default_sec = default_image_duration_sec
        self._progress_interval = max(progress_interval_ms, 10) / 1000.0
        self._fade_lead = max(fade_lead_ms, 0) / 1000.0
        self._clock = clock

        self._items: list[PlaylistItem] = []
        self._index: int | None = None
        self._duration: float | None = None
        self._started_at: float | None = None
        self._progress = 0.0

        self._item_timer: asyncio.TimerHandle | None = None
        self._progress_timer: asyncio.TimerHandle | None = None
        self._fade_timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> RotationState:
        return RotationState.PLAYING if self._index is not None else RotationState.IDLE

    @property
    def items(self) -> list[PlaylistItem]:
        return list(self._items)

    @property
    def current_index(self) -> int | None:
        return self._index

    @property
    def current_item(self) -> PlaylistItem | None:
        if self._index is None:
            return None
        return self._items[self._index]

    @property
    def duration(self) -> float | None:
        return self._duration

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def time_remaining(self) -> float | None:
        if self._duration is None or self._started_at is None:
            return None
        return max(self._duration - (self._clock() - self._started_at), 0.0)

    @property
    def has_timers(self) -> bool:
        return any(handle is not None for handle in (self._item_timer, self._progress_timer, self._fade_timer))

    def set_items(self, items: list[PlaylistItem]) -> bool:
        """Replace the item list. Equal lists keep the current position."""
        items = list(items)
        if items == self._items:
            return False
        self._items = items
        if not items:
            logger.info("Rotation idle")
            self._enter(None)
        else:
            logger.info("Rotation reset with %d items", len(items))
            self._enter(0)
        return True

    def restart(self) -> None:
        self._enter(0 if self._items else None)

    def next(self) -> int | None:
        if not self._items:
            return None
        current = self._index or 0
        self._enter((current + 1) % len(self._items))
        return self._index

    def prev(self) -> int | None:
        if not self._items:
            return None
        current = self._index or 0
        self._enter((current - 1) % len(self._items))
        return self._index

    def item_finished(self, item_id: str | None = None) -> bool:
        """Playback surface reports the current item ended; stale reports are ignored."""
        current = self.current_item
        if current is None:
            return False
        if item_id is not None and item_id != current.id:
            logger.debug("Ignoring finished signal for %s, now playing %s", item_id, current.id)
            return False
        self.next()
        return True

    def stop(self) -> None:
        self._cancel_timers()
        self._items = []
        self._index = None
        self._duration = None
        self._started_at = None
        self._progress = 0.0

    def _cancel_timers(self) -> None:
        for handle in (self._item_timer, self._progress_timer, self._fade_timer):
            if handle is not None:
                handle.cancel()
        self._item_timer = None
        self._progress_timer = None
        self._fade_timer = None

    def _enter(self, index: int | None) -> None:
        self._cancel_timers()
        self._index = index
        self._progress = 0.0
        if index is None:
            self._duration = None
            self._started_at = None
            self._notify(None, None)
            return

        item = self._items[index]
        self._duration = item_duration(item, self._default_sec)
        self._started_at = self._clock()
        loop = _running_loop()
        if loop is not None and self._duration is not None:
            self._item_timer = loop.call_later(self._duration, self._on_item_timer)
            self._progress_timer = loop.call_later(self._progress_interval, self._sample_progress)
            if self._fade_lead > 0 and self._duration > self._fade_lead:
                self._fade_timer = loop.call_later(self._duration - self._fade_lead, self._on_fade_timer)
        self._notify(index, item)

    def _notify(self, index: int | None, item: PlaylistItem | None) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(index, item)
        except Exception:
            logger.exception("Rotation change callback failed")

    def _on_item_timer(self) -> None:
        self._item_timer = None
        self.next()

    def _sample_progress(self) -> None:
        self._progress_timer = None
        if self._duration is None or self._started_at is None:
            return
        elapsed = self._clock() - self._started_at
        self._progress = min(max(elapsed / self._duration, 0.0), 1.0)
        if self._progress < 1.0:
            loop = _running_loop()
            if loop is not None:
                self._progress_timer = loop.call_later(self._progress_interval, self._sample_progress)

    def _on_fade_timer(self) -> None:
        self._fade_timer = None
        item = self.current_item
        if item is None or self.on_fade is None:
            return
        try:
            self.on_fade(self._index, item)
        except Exception:
            logger.exception("Fade callback failed")


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
