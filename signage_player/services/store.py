import hashlib
import json
import logging
import os
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from signage_player.config import STORAGE_DIR
from signage_player.db import SessionLocal
from signage_player.models.cache_entry import CacheEntry
from signage_player.models.media_blob import MediaBlob
from signage_player.schemas.device_state import DeviceState

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "device_player_state_"
DEFAULT_CACHE_TTL_SEC = 60 * 60


def ensure_storage(root: str = STORAGE_DIR) -> str:
    handles = os.path.join(root, "handles")
    os.makedirs(handles, exist_ok=True)
    return handles


def state_key(device_code: str) -> str:
    return f"{STATE_KEY_PREFIX}{device_code}"


class StoredBlob:
    __slots__ = ("id", "payload", "content_type", "cached_at")

    def __init__(self, id: str, payload: bytes, content_type: str | None, cached_at: datetime | None) -> None:
        self.id = id
        self.payload = payload
        self.content_type = content_type
        self.cached_at = cached_at


class LocalStore:
    """
    Durable key/blob storage for the device snapshot and cached media.

    The first database failure flips the store into degraded mode: from then
    on every operation runs against in-memory dictionaries so the player
    keeps working for the rest of the session.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory
        self._degraded = False
        self._memory_cache: dict[str, tuple[str, datetime | None]] = {}
        self._memory_blobs: dict[str, StoredBlob] = {}

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _fail(self, operation: str, exc: Exception) -> None:
        if not self._degraded:
            logger.warning("Local store %s failed, continuing in memory: %s", operation, exc)
        self._degraded = True

    # -- generic cache -------------------------------------------------

    def cache_put(self, key: str, payload: Any, ttl_sec: int | None = DEFAULT_CACHE_TTL_SEC) -> None:
        raw = json.dumps(payload, separators=(",", ":"), default=str)
        now = datetime.utcnow()
        expires_at = now + timedelta(seconds=ttl_sec) if ttl_sec is not None else None
        if self._degraded:
            self._memory_cache[key] = (raw, expires_at)
            return
        db = self._session_factory()
        try:
            entry = db.get(CacheEntry, key)
            if entry is None:
                entry = CacheEntry(key=key)
                db.add(entry)
            entry.payload = raw
            entry.created_at = now
            entry.expires_at = expires_at
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("cache_put", exc)
            self._memory_cache[key] = (raw, expires_at)
        finally:
            db.close()

    def cache_get(self, key: str) -> Any | None:
        now = datetime.utcnow()
        if self._degraded:
            hit = self._memory_cache.get(key)
            if hit is None:
                return None
            raw, expires_at = hit
            if expires_at is not None and now > expires_at:
                self._memory_cache.pop(key, None)
                return None
            return json.loads(raw)
        db = self._session_factory()
        try:
            entry = db.get(CacheEntry, key)
            if entry is None:
                return None
            if entry.expires_at is not None and now > entry.expires_at:
                db.delete(entry)
                db.commit()
                return None
            return json.loads(entry.payload)
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("cache_get", exc)
            return None
        except ValueError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return None
        finally:
            db.close()

    def cache_delete(self, key: str) -> None:
        self._memory_cache.pop(key, None)
        if self._degraded:
            return
        db = self._session_factory()
        try:
            db.query(CacheEntry).filter(CacheEntry.key == key).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("cache_delete", exc)
        finally:
            db.close()

    def clear_expired(self) -> int:
        now = datetime.utcnow()
        if self._degraded:
            expired = [key for key, (_raw, exp) in self._memory_cache.items() if exp is not None and now > exp]
            for key in expired:
                self._memory_cache.pop(key, None)
            return len(expired)
        db = self._session_factory()
        try:
            removed = (
                db.query(CacheEntry)
                .filter(CacheEntry.expires_at.isnot(None), CacheEntry.expires_at < now)
                .delete(synchronize_session=False)
            )
            db.commit()
            return int(removed or 0)
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("clear_expired", exc)
            return 0
        finally:
            db.close()

    # -- device snapshot -----------------------------------------------

    def save_state(self, device_code: str, state: DeviceState) -> None:
        self.cache_put(state_key(device_code), state.model_dump(mode="json"), ttl_sec=None)

    def load_state(self, device_code: str) -> DeviceState | None:
        payload = self.cache_get(state_key(device_code))
        if payload is None:
            return None
        try:
            return DeviceState.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Stored snapshot for %s is invalid, ignoring it: %s", device_code, exc)
            return None

    # -- media blobs ---------------------------------------------------

    def get_media_blob(self, media_id: str) -> StoredBlob | None:
        if self._degraded:
            return self._memory_blobs.get(media_id)
        db = self._session_factory()
        try:
            row = db.get(MediaBlob, media_id)
            if row is None:
                return None
            return StoredBlob(row.id, bytes(row.payload), row.content_type, row.cached_at)
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("get_media_blob", exc)
            return self._memory_blobs.get(media_id)
        finally:
            db.close()

    def put_media_blob(self, media_id: str, payload: bytes, content_type: str | None = None) -> None:
        now = datetime.utcnow()
        if self._degraded:
            self._memory_blobs[media_id] = StoredBlob(media_id, payload, content_type, now)
            return
        db = self._session_factory()
        try:
            row = db.get(MediaBlob, media_id)
            if row is None:
                row = MediaBlob(id=media_id)
                db.add(row)
            # Same id means same content; last writer wins.
            row.payload = payload
            row.content_type = content_type
            row.size = len(payload)
            row.checksum = hashlib.sha256(payload).hexdigest()
            row.cached_at = now
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("put_media_blob", exc)
            self._memory_blobs[media_id] = StoredBlob(media_id, payload, content_type, now)
        finally:
            db.close()

    def delete_media_blob(self, media_id: str) -> None:
        self._memory_blobs.pop(media_id, None)
        if self._degraded:
            return
        db = self._session_factory()
        try:
            db.query(MediaBlob).filter(MediaBlob.id == media_id).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("delete_media_blob", exc)
        finally:
            db.close()

    def media_ids(self) -> list[str]:
        if self._degraded:
            return sorted(self._memory_blobs)
        db = self._session_factory()
        try:
            return sorted(str(media_id) for (media_id,) in db.query(MediaBlob.id).all())
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("media_ids", exc)
            return sorted(self._memory_blobs)
        finally:
            db.close()

    def clear_media(self) -> None:
        self._memory_blobs.clear()
        if self._degraded:
            return
        db = self._session_factory()
        try:
            db.query(MediaBlob).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            self._fail("clear_media", exc)
        finally:
            db.close()

    def prune_media(self, keep_ids: set[str]) -> list[str]:
        stale = [media_id for media_id in self.media_ids() if media_id not in keep_ids]
        for media_id in stale:
            self.delete_media_blob(media_id)
        return stale
