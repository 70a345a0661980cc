from fastapi import APIRouter, Depends, HTTPException

from signage_player.api.deps import get_engine
from signage_player.schemas.playback import MediaResolveIn, MediaResolveOut
from signage_player.services.engine import PlayerEngine

router = APIRouter(tags=["media"])


@router.post("/media/resolve", response_model=MediaResolveOut)
async def resolve_media(payload: MediaResolveIn, engine: PlayerEngine = Depends(get_engine)):
    return await engine.resolve_media(payload.media_id, payload.url)


@router.get("/media/cached")
def cached_media(engine: PlayerEngine = Depends(get_engine)):
    return {"media_ids": engine.media_cache.cached_media_ids()}


@router.get("/media/{media_id}")
def media_handle(media_id: str, engine: PlayerEngine = Depends(get_engine)):
    handle = engine.media_cache.peek(media_id)
    if handle is None:
        raise HTTPException(status_code=404, detail="Media not cached")
    return {"media_id": media_id, "handle": handle, "url": engine.media_cache.handle_url(handle)}


@router.delete("/cache")
async def clear_cache(engine: PlayerEngine = Depends(get_engine)):
    await engine.media_cache.clear_all()
    return {"ok": True}
