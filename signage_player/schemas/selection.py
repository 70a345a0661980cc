from enum import Enum

from pydantic import BaseModel, Field

from signage_player.schemas.device_state import OverrideMedia, PlaylistItem

DEFAULT_BLOCKED_MESSAGE = "Device blocked"


class SelectionKind(str, Enum):
    BLOCKED = "blocked"
    OVERRIDE = "override"
    ITEMS = "items"
    EMPTY = "empty"


class ContentSelection(BaseModel):
    kind: SelectionKind
    message: str | None = None
    override_media: OverrideMedia | None = None
    items: list[PlaylistItem] = Field(default_factory=list)
    playlist_id: str | None = None
    channel_id: str | None = None
    # Advisory only; playback never branches on it.
    reason: str | None = None
