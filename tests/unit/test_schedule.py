from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from signage_player.schemas.device_state import Channel, Playlist, ScheduleWindow
from signage_player.services.schedule import current_weekday, is_active_now, is_item_in_window, is_window_open

pytestmark = pytest.mark.unit

SUNDAY = datetime(2024, 6, 2, 10, 0)
MONDAY = datetime(2024, 6, 3, 10, 0)


def _playlist(**fields) -> Playlist:
    return Playlist(id="p", **fields)


def test_weekday_numbering_starts_on_sunday() -> None:
    assert current_weekday(SUNDAY) == 0
    assert current_weekday(MONDAY) == 1
    assert current_weekday(datetime(2024, 6, 8)) == 6


@pytest.mark.parametrize(
    "fields",
    [
        {},
        {"start_time": "00:00", "end_time": "23:59"},
        {"days_of_week": [0, 1, 2, 3, 4, 5, 6]},
        {"start_date": "2000-01-01", "end_date": "2100-01-01"},
    ],
)
def test_inactive_playlist_is_never_live(fields) -> None:
    playlist = _playlist(is_active=False, **fields)
    for now in (SUNDAY, MONDAY, datetime(2024, 1, 1, 0, 0), datetime(2024, 12, 31, 23, 59)):
        assert is_active_now(playlist, now) is False


@pytest.mark.parametrize(
    "now",
    [SUNDAY, MONDAY, datetime(1999, 1, 1, 3, 0), datetime(2099, 12, 31, 23, 59)],
)
def test_enabled_fallback_channel_ignores_its_window(now: datetime) -> None:
    channel = Channel(
        id="fallback",
        is_fallback=True,
        start_date="2030-01-01",
        end_date="2030-01-02",
        start_time="03:00",
        end_time="03:01",
        days_of_week=[3],
    )
    assert is_active_now(channel, now) is True


def test_disabled_fallback_channel_is_not_live() -> None:
    channel = Channel(id="fallback", is_fallback=True, is_active=False)
    assert is_active_now(channel, SUNDAY) is False


def test_days_of_week_filter() -> None:
    playlist = _playlist(days_of_week=[1, 2, 3, 4, 5])
    assert is_active_now(playlist, MONDAY)
    assert not is_active_now(playlist, SUNDAY)


def test_empty_days_of_week_means_every_day() -> None:
    playlist = _playlist(days_of_week=[])
    assert is_active_now(playlist, SUNDAY)


def test_start_date_compares_calendar_day() -> None:
    playlist = _playlist(start_date="2024-06-03")
    assert not is_active_now(playlist, datetime(2024, 6, 2, 23, 59))
    assert is_active_now(playlist, datetime(2024, 6, 3, 0, 0))


def test_end_date_is_inclusive_until_end_of_day() -> None:
    playlist = _playlist(end_date="2024-06-03")
    assert is_active_now(playlist, datetime(2024, 6, 3, 23, 59, 59))
    assert not is_active_now(playlist, datetime(2024, 6, 4, 0, 0))


def test_timestamp_dates_are_truncated_to_the_day() -> None:
    window = ScheduleWindow(start_date="2024-06-03T15:00:00Z", end_date="2024-06-03T08:00:00Z")
    assert window.start_date == date(2024, 6, 3)
    assert is_window_open(window, datetime(2024, 6, 3, 20, 0))


def test_time_of_day_bounds_are_inclusive() -> None:
    playlist = _playlist(start_time="09:00", end_time="18:00")
    assert is_active_now(playlist, datetime(2024, 6, 3, 9, 0))
    assert is_active_now(playlist, datetime(2024, 6, 3, 18, 0, 59))
    assert not is_active_now(playlist, datetime(2024, 6, 3, 8, 59))
    assert not is_active_now(playlist, datetime(2024, 6, 3, 18, 1))


def test_seconds_in_time_strings_are_dropped() -> None:
    playlist = _playlist(start_time="9:00:30", end_time="18:00:00")
    assert playlist.start_time == "09:00"
    assert playlist.end_time == "18:00"


def test_invalid_time_string_is_rejected() -> None:
    with pytest.raises(ValueError):
        _playlist(start_time="25:00")


def test_overnight_window_wraps_past_midnight() -> None:
    playlist = _playlist(start_time="22:00", end_time="02:00")
    assert is_active_now(playlist, datetime(2024, 6, 3, 23, 30))
    assert is_active_now(playlist, datetime(2024, 6, 3, 1, 30))
    assert not is_active_now(playlist, datetime(2024, 6, 3, 12, 0))


def test_overnight_window_naive_comparison_when_disabled() -> None:
    playlist = _playlist(start_time="22:00", end_time="02:00")
    assert not is_active_now(playlist, datetime(2024, 6, 3, 23, 30), overnight=False)
    assert not is_active_now(playlist, datetime(2024, 6, 3, 1, 30), overnight=False)


def test_aware_now_is_read_as_wall_clock() -> None:
    playlist = _playlist(start_time="09:00", end_time="18:00", end_date="2024-06-03")
    assert is_active_now(playlist, datetime(2024, 6, 3, 10, 0, tzinfo=timezone.utc))


def test_item_window_has_no_active_flag() -> None:
    window = ScheduleWindow(start_time="09:00", end_time="10:00")
    assert is_item_in_window(window, datetime(2024, 6, 3, 9, 30))
    assert not is_item_in_window(window, datetime(2024, 6, 3, 11, 0))
