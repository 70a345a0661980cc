from fastapi import APIRouter, Body, Depends, HTTPException

from signage_player.api.deps import get_engine
from signage_player.schemas.playback import PlaybackSnapshot
from signage_player.services.engine import PlayerEngine

router = APIRouter(prefix="/player", tags=["player"])


@router.get("/now", response_model=PlaybackSnapshot)
async def now_playing(engine: PlayerEngine = Depends(get_engine)):
    return engine.snapshot()


@router.post("/next", response_model=PlaybackSnapshot)
async def next_item(engine: PlayerEngine = Depends(get_engine)):
    if engine.rotation.next() is None:
        raise HTTPException(status_code=409, detail="Nothing is rotating")
    return engine.snapshot()


@router.post("/prev", response_model=PlaybackSnapshot)
async def prev_item(engine: PlayerEngine = Depends(get_engine)):
    if engine.rotation.prev() is None:
        raise HTTPException(status_code=409, detail="Nothing is rotating")
    return engine.snapshot()


@router.post("/finished", response_model=PlaybackSnapshot)
async def item_finished(
    item_id: str | None = Body(default=None, embed=True),
    engine: PlayerEngine = Depends(get_engine),
):
    if engine.rotation.current_item is None:
        raise HTTPException(status_code=409, detail="Nothing is rotating")
    # A stale item id is ignored, the snapshot shows what is actually playing.
    engine.rotation.item_finished(item_id)
    return engine.snapshot()
