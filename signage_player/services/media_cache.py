import asyncio
import hashlib
import logging
import mimetypes
import os
from urllib.parse import urlparse

import httpx

from signage_player.config import HTTP_TIMEOUT_SEC, PRUNE_UNUSED_MEDIA, STORAGE_DIR
from signage_player.schemas.device_state import DeviceState
from signage_player.services.store import LocalStore, ensure_storage

logger = logging.getLogger(__name__)

_SAFE_ID_CHARS = {"-", "_", "."}


def _handle_stem(media_id: str) -> str:
    cleaned = "".join(ch for ch in media_id if ch.isalnum() or ch in _SAFE_ID_CHARS).strip(".")
    digest = hashlib.sha256(media_id.encode("utf-8")).hexdigest()[:16]
    return f"{cleaned[:48] or 'media'}-{digest}"


def _extension_for(remote_url: str, content_type: str | None) -> str:
    _, ext = os.path.splitext(urlparse(remote_url).path)
    if ext and len(ext) <= 6:
        return ext.lower()
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            return guessed
    return ".bin"


class MediaCache:
    """
    Resolves media ids to locally playable handles.

    Lookup order is the in-memory handle map, then the durable blob store,
    then the media origin. A handle is a file materialised under the
    handles directory; any failure hands back the remote URL instead.
    """

    def __init__(
        self,
        store: LocalStore,
        client: httpx.AsyncClient | None = None,
        storage_dir: str = STORAGE_DIR,
        prune_unused: bool = PRUNE_UNUSED_MEDIA,
    ) -> None:
        self._store = store
        self._client = client
        self._owns_client = client is None
        self._storage_dir = storage_dir
        self._handle_dir = os.path.join(storage_dir, "handles")
        self._prune_unused = prune_unused
        self._handles: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self.fetch_count = 0

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SEC, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def peek(self, media_id: str) -> str | None:
        return self._handles.get(media_id)

    def handle_url(self, handle: str | None) -> str | None:
        if not handle:
            return None
        root = os.path.abspath(self._storage_dir)
        path = os.path.abspath(handle)
        if not path.startswith(root + os.sep):
            return handle
        relative = os.path.relpath(path, root).replace("\\", "/")
        return f"/storage/{relative}"

    def is_local(self, handle: str) -> bool:
        return os.path.isfile(handle)

    async def resolve(self, media_id: str, remote_url: str) -> str:
        handle = self._handles.get(media_id)
        if handle is not None:
            return handle

        task = self._inflight.get(media_id)
        if task is None:
            task = asyncio.ensure_future(self._load(media_id, remote_url))
            self._inflight[media_id] = task
            task.add_done_callback(lambda _t, key=media_id: self._inflight.pop(key, None))
        # Shielded: a cancelled caller must not abort the download for everyone else.
        return await asyncio.shield(task)

    async def _load(self, media_id: str, remote_url: str) -> str:
        try:
            blob = self._store.get_media_blob(media_id)
            if blob is not None:
                handle = self._materialise(media_id, remote_url, blob.payload, blob.content_type)
                self._handles[media_id] = handle
                return handle

            self.fetch_count += 1
            response = await self._http().get(remote_url)
            response.raise_for_status()
            payload = response.content
            content_type = response.headers.get("content-type")
            self._store.put_media_blob(media_id, payload, content_type)
            handle = self._materialise(media_id, remote_url, payload, content_type)
            self._handles[media_id] = handle
            logger.info("Cached media %s (%d bytes)", media_id, len(payload))
            return handle
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Media %s unavailable locally, using remote URL: %s", media_id, exc)
            return remote_url
        except Exception:
            logger.exception("Unexpected error caching media %s, using remote URL", media_id)
            return remote_url

    def _materialise(self, media_id: str, remote_url: str, payload: bytes, content_type: str | None) -> str:
        ensure_storage(self._storage_dir)
        filename = f"{_handle_stem(media_id)}{_extension_for(remote_url, content_type)}"
        path = os.path.join(self._handle_dir, filename)
        tmp_path = f"{path}.part"
        with open(tmp_path, "wb") as f:
            f.write(payload)
        os.replace(tmp_path, path)
        return path.replace("\\", "/")

    async def prefetch(self, state: DeviceState) -> dict[str, str]:
        refs = state.media_refs()
        if not refs:
            return {}
        media_ids = list(refs)
        handles = await asyncio.gather(*(self.resolve(media_id, refs[media_id]) for media_id in media_ids))
        if self._prune_unused:
            pruned = self._store.prune_media(set(media_ids))
            for media_id in pruned:
                self._release(media_id)
            if pruned:
                logger.info("Pruned %d unreferenced media blobs", len(pruned))
        return dict(zip(media_ids, handles))

    def cached_media_ids(self) -> list[str]:
        return self._store.media_ids()

    def _release(self, media_id: str) -> None:
        handle = self._handles.pop(media_id, None)
        if handle and os.path.isfile(handle):
            try:
                os.remove(handle)
            except OSError as exc:
                logger.warning("Could not remove handle %s: %s", handle, exc)

    async def clear_all(self) -> None:
        # An in-flight resolve may land after this and repopulate; that is accepted.
        for media_id in list(self._handles):
            self._release(media_id)
        if os.path.isdir(self._handle_dir):
            # Includes handles materialised by earlier runs.
            with os.scandir(self._handle_dir) as entries:
                stale = [entry.path for entry in entries if entry.is_file()]
            for path in stale:
                try:
                    os.remove(path)
                except OSError as exc:
                    logger.warning("Could not remove handle %s: %s", path, exc)
        self._store.clear_media()
        logger.info("Media cache cleared")
