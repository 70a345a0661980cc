import os
import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from signage_player.api import media, player, sync
from signage_player.config import PLAYER_API_KEY, STORAGE_DIR, configure_logging
from signage_player.db import init_db
from signage_player.services.engine import PlayerEngine
from signage_player.services.media_cache import MediaCache
from signage_player.services.store import LocalStore, ensure_storage

logger = logging.getLogger(__name__)

PLAYER_HOST = os.getenv("SIGNAGE_PLAYER_HOST", "127.0.0.1")
PLAYER_PORT = int(os.getenv("SIGNAGE_PLAYER_PORT", "8080"))
OPEN_PREFIXES = ("/docs", "/openapi.json", "/redoc", "/storage", "/healthz")


def create_app(
    engine: PlayerEngine | None = None,
    *,
    bind: Engine | None = None,
    storage_dir: str = STORAGE_DIR,
    api_key: str = PLAYER_API_KEY,
) -> FastAPI:
    ensure_storage(storage_dir)
    if engine is None:
        store = LocalStore(sessionmaker(bind=bind, autocommit=False, autoflush=False)) if bind is not None else LocalStore()
        engine = PlayerEngine(store=store, media_cache=MediaCache(store, storage_dir=storage_dir))

    app = FastAPI(title="signage-player")
    app.state.engine = engine
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {
            "ok": True,
            "service": "signage-player",
            "device_code": engine.device_code,
            "time_utc": datetime.now(timezone.utc).isoformat(),
            "docs": "/docs",
        }

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "running": engine.running, "is_online": engine.sync.is_online}

    @app.websocket("/ws/player")
    async def ws_player(websocket: WebSocket):
        await engine.hub.connect(websocket, engine.snapshot().model_dump(mode="json"))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            await engine.hub.disconnect(websocket)
        except Exception:
            await engine.hub.disconnect(websocket)

    @app.on_event("startup")
    async def startup_events() -> None:
        init_db(bind)
        await engine.start()

    @app.on_event("shutdown")
    async def shutdown_events() -> None:
        await engine.aclose()

    @app.middleware("http")
    async def api_key_middleware(request: Request, call_next):
        if not api_key:
            return await call_next(request)
        path = request.url.path
        if path == "/" or path.startswith(OPEN_PREFIXES):
            return await call_next(request)
        if request.headers.get("X-API-Key") != api_key:
            return JSONResponse({"detail": "Unauthorized"}, status_code=401)
        return await call_next(request)

    app.include_router(player.router)
    app.include_router(media.router)
    app.include_router(sync.router)

    app.mount("/storage", StaticFiles(directory=storage_dir), name="storage")
    return app


configure_logging()
app = create_app()


def run() -> None:
    logger.info("Serving player API on %s:%d", PLAYER_HOST, PLAYER_PORT)
    uvicorn.run(app, host=PLAYER_HOST, port=PLAYER_PORT, log_config=None)


if __name__ == "__main__":
    run()
