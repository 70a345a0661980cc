from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from signage_player.schemas.selection import DEFAULT_BLOCKED_MESSAGE, SelectionKind
from signage_player.services.selector import (
    get_active_channel,
    get_active_items,
    get_active_playlist,
    resolve_current_content,
)
from tests.helpers.factories import channel, device_state, item, media, playlist

pytestmark = pytest.mark.unit

NOW = datetime(2024, 6, 3, 10, 0)


def test_higher_priority_playlist_wins() -> None:
    state = device_state(playlist("low", priority=5), playlist("high", priority=10))
    assert get_active_playlist(state, NOW).id == "high"


def test_equal_priority_keeps_input_order() -> None:
    state = device_state(playlist("first", priority=3), playlist("second", priority=3))
    assert get_active_playlist(state, NOW).id == "first"

    reversed_state = device_state(playlist("second", priority=3), playlist("first", priority=3))
    assert get_active_playlist(reversed_state, NOW).id == "second"


def test_playlist_without_items_is_skipped() -> None:
    state = device_state(playlist("empty", priority=10, items=[]), playlist("full", priority=1))
    assert get_active_playlist(state, NOW).id == "full"


def test_channel_playlist_without_live_channel_is_skipped() -> None:
    closed = channel("closed", start_time="20:00", end_time="21:00")
    state = device_state(
        playlist("channels", priority=10, has_channels=True, channels=[closed]),
        playlist("flat", priority=1),
    )
    assert get_active_playlist(state, NOW).id == "flat"


def test_no_state_or_no_playlists() -> None:
    assert get_active_playlist(None, NOW) is None
    assert get_active_playlist(device_state(), NOW) is None
    assert get_active_items(None, NOW) == []


def test_fallback_channel_used_when_no_normal_channel_is_live() -> None:
    promo = channel("promo", position=1, start_time="20:00", end_time="21:00")
    default = channel("default", position=2, is_fallback=True)
    state = device_state(playlist("p", has_channels=True, channels=[promo, default]))
    assert get_active_channel(state.playlists[0], NOW).id == "default"


def test_normal_channel_beats_fallback_with_lower_position() -> None:
    fallback = channel("fallback", position=0, is_fallback=True)
    normal = channel("normal", position=5)
    state = device_state(playlist("p", has_channels=True, channels=[fallback, normal]))
    assert get_active_channel(state.playlists[0], NOW).id == "normal"


def test_lowest_position_normal_channel_wins() -> None:
    channels = [channel("b", position=2), channel("a", position=1), channel("c", position=3)]
    state = device_state(playlist("p", has_channels=True, channels=channels))
    assert get_active_channel(state.playlists[0], NOW).id == "a"


def test_playlist_without_channels_has_no_active_channel() -> None:
    state = device_state(playlist("flat"))
    assert get_active_channel(state.playlists[0], NOW) is None


def test_flat_playlist_ignores_channels_list() -> None:
    payload = playlist("flat", items=[item("flat-1")])
    payload["channels"] = [channel("ignored", items=[item("ch-1")])]
    state = device_state(payload)
    assert [i.id for i in get_active_items(state, NOW)] == ["flat-1"]


def test_channel_items_ignore_playlist_items() -> None:
    payload = playlist("p", has_channels=True, channels=[channel("ch", items=[item("ch-1")])])
    payload["items"] = [item("flat-1")]
    state = device_state(payload)
    assert [i.id for i in get_active_items(state, NOW)] == ["ch-1"]


def test_items_follow_position_order() -> None:
    state = device_state(playlist("p", items=[item("c", position=3), item("a", position=1), item("b", position=2)]))
    assert [i.id for i in get_active_items(state, NOW)] == ["a", "b", "c"]


def test_item_windows_filter_items() -> None:
    items = [item("always"), item("evening", start_time="18:00", end_time="20:00"), item("weekend", days_of_week=[0, 6])]
    state = device_state(playlist("p", items=items))
    assert [i.id for i in get_active_items(state, NOW)] == ["always"]


def test_blocked_wins_over_everything() -> None:
    override = {**media("ov"), "expires_at": (NOW + timedelta(hours=1)).isoformat()}
    state = device_state(
        playlist("p", priority=100),
        is_blocked=True,
        blocked_message="Maintenance",
        override_media=override,
    )
    selection = resolve_current_content(state, NOW)
    assert selection.kind == SelectionKind.BLOCKED
    assert selection.message == "Maintenance"
    assert selection.items == []


def test_blocked_without_message_uses_default_text() -> None:
    state = device_state(is_blocked=True)
    assert resolve_current_content(state, NOW).message == DEFAULT_BLOCKED_MESSAGE


def test_live_override_beats_high_priority_playlist() -> None:
    override = {**media("ov"), "expires_at": (NOW + timedelta(minutes=5)).isoformat()}
    state = device_state(playlist("p", priority=100), override_media=override)
    selection = resolve_current_content(state, NOW)
    assert selection.kind == SelectionKind.OVERRIDE
    assert selection.override_media.id == "ov"


def test_expired_override_falls_through_to_playlists() -> None:
    override = {**media("ov"), "expires_at": (NOW - timedelta(seconds=1)).isoformat()}
    state = device_state(playlist("p"), override_media=override)
    selection = resolve_current_content(state, NOW)
    assert selection.kind == SelectionKind.ITEMS
    assert selection.playlist_id == "p"


def test_override_expiry_is_exclusive() -> None:
    override = {**media("ov"), "expires_at": NOW.isoformat()}
    state = device_state(playlist("p"), override_media=override)
    assert resolve_current_content(state, NOW).kind == SelectionKind.ITEMS


def test_aware_override_expiry_against_wall_clock() -> None:
    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    state = device_state(override_media={**media("ov"), "expires_at": expires.isoformat()})
    selection = resolve_current_content(state, datetime.now())
    assert selection.kind == SelectionKind.OVERRIDE


@pytest.mark.parametrize(
    "state,reason",
    [
        (None, "no device state"),
        (device_state(), "no playlists assigned"),
        (device_state(playlist("off", is_active=False)), "no active playlist"),
        (device_state(playlist("later", start_time="20:00")), "no active playlist"),
        (device_state(playlist("empty", items=[])), "playlist empty"),
        (
            device_state(playlist("p", has_channels=True, channels=[channel("c", start_time="20:00")])),
            "no active channel",
        ),
        (
            device_state(playlist("p", has_channels=True, channels=[channel("c", items=[])])),
            "channel empty",
        ),
    ],
)
def test_empty_selection_reasons(state, reason: str) -> None:
    selection = resolve_current_content(state, NOW)
    assert selection.kind == SelectionKind.EMPTY
    assert selection.reason == reason
    assert selection.items == []


def test_resolution_is_idempotent() -> None:
    override = {**media("ov"), "expires_at": (NOW + timedelta(minutes=1)).isoformat()}
    states = [
        device_state(playlist("a", priority=1), playlist("b", priority=1)),
        device_state(playlist("p", has_channels=True, channels=[channel("x"), channel("y", is_fallback=True)])),
        device_state(playlist("p"), override_media=override),
        device_state(is_blocked=True),
        device_state(),
    ]
    for state in states:
        first = resolve_current_content(state, NOW).model_dump_json()
        second = resolve_current_content(state, NOW).model_dump_json()
        assert first == second


def test_daytime_playlist_scenario() -> None:
    state = device_state(
        playlist(
            "day",
            priority=1,
            start_time="09:00",
            end_time="18:00",
            items=[item("only", duration_override=10)],
        )
    )
    morning = get_active_items(state, datetime(2024, 6, 3, 10, 0))
    assert [i.id for i in morning] == ["only"]
    assert morning[0].duration_override == 10
    assert get_active_items(state, datetime(2024, 6, 3, 20, 0)) == []


def test_promo_then_default_channel_scenario() -> None:
    promo = channel("promo", name="Promo", position=1, start_time="08:00", end_time="09:00")
    default = channel("default", name="Default", position=2, is_fallback=True)
    state = device_state(playlist("p", has_channels=True, channels=[promo, default]))

    assert get_active_channel(state.playlists[0], datetime(2024, 6, 3, 8, 30)).name == "Promo"
    assert get_active_channel(state.playlists[0], datetime(2024, 6, 3, 12, 0)).name == "Default"

    selection = resolve_current_content(state, datetime(2024, 6, 3, 12, 0))
    assert selection.channel_id == "default"
