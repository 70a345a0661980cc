from datetime import datetime
from zoneinfo import ZoneInfo

from signage_player.config import TIMEZONE

try:
    _LOCAL_TZ = ZoneInfo(TIMEZONE) if TIMEZONE else None
except Exception:
    _LOCAL_TZ = None


def local_now() -> datetime:
    if _LOCAL_TZ is None:
        return datetime.now()
    # Naive wall clock in the configured zone; schedule windows are wall-clock values.
    return datetime.now(_LOCAL_TZ).replace(tzinfo=None)


def to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    if _LOCAL_TZ is None:
        return value.astimezone().replace(tzinfo=None)
    return value.astimezone(_LOCAL_TZ).replace(tzinfo=None)
