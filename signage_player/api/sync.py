from fastapi import APIRouter, Depends

from signage_player.api.deps import get_engine
from signage_player.services.engine import PlayerEngine

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/force")
async def force_sync(engine: PlayerEngine = Depends(get_engine)):
    ok = await engine.force_sync()
    return {"ok": ok, **engine.status()}


@router.get("/status")
def sync_status(engine: PlayerEngine = Depends(get_engine)):
    return engine.status()
