"""
Time-window evaluation for playlists, channels and playlist items.

All checks run against the local wall clock passed in as ``now``. Dates are
compared by calendar day, times of day as zero-padded ``HH:MM`` strings,
which orders the same way as the numeric value.
"""
from datetime import datetime, time

from signage_player.config import OVERNIGHT_WINDOWS
from signage_player.schemas.device_state import ScheduleWindow

END_OF_DAY = time(23, 59, 59)


def current_weekday(now: datetime) -> int:
    """Day number with Sunday as 0, matching ``days_of_week`` payloads."""
    return (now.weekday() + 1) % 7


def current_time_of_day(now: datetime) -> str:
    return now.strftime("%H:%M")


def is_window_open(window: ScheduleWindow, now: datetime, *, overnight: bool = OVERNIGHT_WINDOWS) -> bool:
    now = now.replace(tzinfo=None)
    if window.days_of_week and current_weekday(now) not in window.days_of_week:
        return False

    if window.start_date is not None and now.date() < window.start_date:
        return False
    if window.end_date is not None and now > datetime.combine(window.end_date, END_OF_DAY):
        return False

    current = current_time_of_day(now)
    start = window.start_time
    end = window.end_time
    if overnight and start and end and start > end:
        # 22:00-02:00 style window wraps past midnight.
        return current >= start or current <= end
    if start and current < start:
        return False
    if end and current > end:
        return False
    return True


def is_active_now(window: ScheduleWindow, now: datetime, *, overnight: bool = OVERNIGHT_WINDOWS) -> bool:
    """
    Decide whether a playlist or channel is live at ``now``.

    Disabled entries are never live. A fallback channel is live whenever it
    is enabled, whatever its own window says.
    """
    if not getattr(window, "is_active", True):
        return False
    if getattr(window, "is_fallback", False):
        return True
    return is_window_open(window, now, overnight=overnight)


def is_item_in_window(item: ScheduleWindow, now: datetime, *, overnight: bool = OVERNIGHT_WINDOWS) -> bool:
    return is_window_open(item, now, overnight=overnight)
