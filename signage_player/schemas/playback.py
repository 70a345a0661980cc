from datetime import datetime

from pydantic import BaseModel, Field

from signage_player.schemas.device_state import OverrideMedia, PlaylistItem
from signage_player.schemas.selection import SelectionKind


class BlockedOut(BaseModel):
    message: str


class ActiveItemOut(BaseModel):
    item: PlaylistItem
    handle: str | None = None
    handle_url: str | None = None


class PlaybackSnapshot(BaseModel):
    device_code: str
    kind: SelectionKind
    reason: str | None = None
    active_items: list[ActiveItemOut] = Field(default_factory=list)
    current_index: int | None = None
    current_item: PlaylistItem | None = None
    time_remaining_sec: float | None = None
    progress: float = 0.0
    override_media: OverrideMedia | None = None
    override_handle: str | None = None
    blocked: BlockedOut | None = None
    identify: bool = False
    is_online: bool = False
    last_sync_at: datetime | None = None


class MediaResolveIn(BaseModel):
    media_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class MediaResolveOut(BaseModel):
    media_id: str
    handle: str
    url: str
    cached: bool
