from fastapi import HTTPException, Request

from signage_player.services.engine import PlayerEngine


def get_engine(request: Request) -> PlayerEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Player not ready")
    return engine
