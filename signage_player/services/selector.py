from datetime import datetime

from signage_player.schemas.device_state import Channel, DeviceState, Playlist, PlaylistItem
from signage_player.schemas.selection import DEFAULT_BLOCKED_MESSAGE, ContentSelection, SelectionKind
from signage_player.services.clock import to_local_naive
from signage_player.services.schedule import is_active_now, is_item_in_window


def _items_in_window(items: list[PlaylistItem], now: datetime) -> list[PlaylistItem]:
    return [item for item in items if is_item_in_window(item, now)]


def get_active_channel(playlist: Playlist, now: datetime) -> Channel | None:
    if not playlist.channels:
        return None
    live = [channel for channel in playlist.channels if is_active_now(channel, now)]
    normal = [channel for channel in live if not channel.is_fallback]
    if normal:
        return min(normal, key=lambda channel: channel.position)
    fallback = [channel for channel in live if channel.is_fallback]
    if fallback:
        return min(fallback, key=lambda channel: channel.position)
    return None


def _has_selectable_content(playlist: Playlist, now: datetime) -> bool:
    if playlist.has_channels:
        return get_active_channel(playlist, now) is not None
    return len(_items_in_window(playlist.items, now)) > 0


def get_active_playlist(state: DeviceState | None, now: datetime) -> Playlist | None:
    if state is None or not state.playlists:
        return None
    candidates = [
        playlist
        for playlist in state.playlists
        if is_active_now(playlist, now) and _has_selectable_content(playlist, now)
    ]
    # sorted() is stable: equal priorities keep payload order.
    candidates = sorted(candidates, key=lambda playlist: playlist.priority, reverse=True)
    return candidates[0] if candidates else None


def _resolve_items(playlist: Playlist, now: datetime) -> tuple[list[PlaylistItem], Channel | None]:
    if playlist.has_channels:
        channel = get_active_channel(playlist, now)
        if channel is None:
            return [], None
        return _items_in_window(channel.items, now), channel
    return _items_in_window(playlist.items, now), None


def get_active_items(state: DeviceState | None, now: datetime) -> list[PlaylistItem]:
    playlist = get_active_playlist(state, now)
    if playlist is None:
        return []
    items, _channel = _resolve_items(playlist, now)
    return items


def _override_live(state: DeviceState, now: datetime) -> bool:
    override = state.override_media
    if override is None:
        return False
    expires_at = override.expires_at
    if (expires_at.tzinfo is None) != (now.tzinfo is None):
        expires_at = to_local_naive(expires_at)
        now = to_local_naive(now)
    return now < expires_at


def _empty_reason(state: DeviceState, now: datetime) -> str:
    if not state.playlists:
        return "no playlists assigned"
    live = [playlist for playlist in state.playlists if is_active_now(playlist, now)]
    if not live:
        return "no active playlist"
    if all(playlist.has_channels for playlist in live):
        return "no active channel"
    return "playlist empty"


def resolve_current_content(state: DeviceState | None, now: datetime) -> ContentSelection:
    """
    Decide what the screen shows at ``now``.

    Precedence: blocked, then an unexpired override, then scheduled items.
    Pure function of its arguments.
    """
    if state is None:
        return ContentSelection(kind=SelectionKind.EMPTY, reason="no device state")

    if state.is_blocked:
        return ContentSelection(
            kind=SelectionKind.BLOCKED,
            message=state.blocked_message or DEFAULT_BLOCKED_MESSAGE,
        )

    if _override_live(state, now):
        return ContentSelection(kind=SelectionKind.OVERRIDE, override_media=state.override_media)

    playlist = get_active_playlist(state, now)
    if playlist is not None:
        items, channel = _resolve_items(playlist, now)
        if items:
            return ContentSelection(
                kind=SelectionKind.ITEMS,
                items=items,
                playlist_id=playlist.id,
                channel_id=channel.id if channel else None,
            )
        return ContentSelection(
            kind=SelectionKind.EMPTY,
            playlist_id=playlist.id,
            channel_id=channel.id if channel else None,
            reason="channel empty" if channel else "playlist empty",
        )

    return ContentSelection(kind=SelectionKind.EMPTY, reason=_empty_reason(state, now))
