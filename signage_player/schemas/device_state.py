from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_MEDIA_DURATION_SEC = 10


def _parse_hms(value: str) -> tuple[int, int, int] | None:
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        hour = int(parts[0])
        minute = int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
    except ValueError:
        return None
    if hour < 0 or hour > 23 or minute < 0 or minute > 59 or second < 0 or second > 59:
        return None
    return hour, minute, second


def normalize_time_of_day(value: str | None) -> str | None:
    """Return a zero-padded ``HH:MM`` string; seconds are dropped."""
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    parsed = _parse_hms(raw)
    if parsed is None:
        raise ValueError("Invalid time format. Use HH:MM or HH:MM:SS.")
    return f"{parsed[0]:02d}:{parsed[1]:02d}"


def _normalized_media_type(raw: str | None) -> str:
    media_type = (raw or "").strip().lower()
    if media_type not in {"image", "video"}:
        raise ValueError("Unsupported media type. Use image or video.")
    return media_type


class ScheduleWindow(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    start_time: str | None = None
    end_time: str | None = None
    days_of_week: list[int] | None = None  # 0 = Sunday ... 6 = Saturday

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _date_only(cls, value):
        # Backends send either "YYYY-MM-DD" or a full timestamp; only the date part matters.
        if isinstance(value, str) and len(value) > 10:
            return value[:10]
        if isinstance(value, datetime):
            return value.date()
        return value or None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _time_of_day(cls, value):
        return normalize_time_of_day(value)

    @field_validator("days_of_week")
    @classmethod
    def _days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("days_of_week entries must be within 0..6")
        return value


class Media(BaseModel):
    id: str
    name: str | None = None
    type: str = "image"
    file_url: str = Field(..., min_length=1)
    duration: int = DEFAULT_MEDIA_DURATION_SEC
    blob_url: str | None = None  # locally cached handle, when the backend already knows one

    @field_validator("type", mode="before")
    @classmethod
    def _media_type(cls, value):
        return _normalized_media_type(value)

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, value):
        if value is None:
            return DEFAULT_MEDIA_DURATION_SEC
        return value

    @property
    def is_video(self) -> bool:
        return self.type == "video"


class PlaylistItem(ScheduleWindow):
    id: str
    media_id: str | None = None
    position: int = 0
    duration_override: int | None = None
    media: Media

    @model_validator(mode="after")
    def _media_id_from_media(self):
        if not self.media_id:
            self.media_id = self.media.id
        return self


def _sorted_by_position(items: list[PlaylistItem]) -> list[PlaylistItem]:
    return sorted(items, key=lambda item: item.position)


class Channel(ScheduleWindow):
    id: str
    name: str = ""
    is_active: bool = True
    is_fallback: bool = False
    position: int = 0
    items: list[PlaylistItem] = Field(default_factory=list)

    @field_validator("items")
    @classmethod
    def _order_items(cls, value: list[PlaylistItem]) -> list[PlaylistItem]:
        return _sorted_by_position(value)


class Playlist(ScheduleWindow):
    id: str
    name: str = ""
    description: str | None = None
    is_active: bool = True
    priority: int = 0
    has_channels: bool = False
    content_scale: str | None = None
    items: list[PlaylistItem] = Field(default_factory=list)
    channels: list[Channel] = Field(default_factory=list)

    @field_validator("items")
    @classmethod
    def _order_items(cls, value: list[PlaylistItem]) -> list[PlaylistItem]:
        return _sorted_by_position(value)


class OverrideMedia(Media):
    expires_at: datetime


class DeviceState(BaseModel):
    device_code: str = Field(..., min_length=1)
    device_id: str | None = None
    device_name: str | None = None
    playlists: list[Playlist] = Field(default_factory=list)
    override_media: OverrideMedia | None = None
    is_blocked: bool = False
    blocked_message: str | None = None
    is_online: bool = True
    last_sync: datetime | None = None

    def media_refs(self) -> dict[str, str]:
        """Every media id referenced by this state mapped to its remote URL."""
        refs: dict[str, str] = {}
        for playlist in self.playlists:
            for item in playlist.items:
                refs.setdefault(item.media.id, item.media.file_url)
            for channel in playlist.channels:
                for item in channel.items:
                    refs.setdefault(item.media.id, item.media.file_url)
        if self.override_media is not None:
            refs.setdefault(self.override_media.id, self.override_media.file_url)
        return refs
