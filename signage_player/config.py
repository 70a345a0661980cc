import logging
import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DEVICE_CODE = (os.getenv("SIGNAGE_DEVICE_CODE", "Device-0001") or "").strip()
SERVER_URL = (os.getenv("SIGNAGE_SERVER_URL", "http://127.0.0.1:8000") or "").strip().rstrip("/")
API_KEY = os.getenv("SIGNAGE_API_KEY", "").strip()
PLAYER_API_KEY = os.getenv("SIGNAGE_PLAYER_API_KEY", "").strip()
DATABASE_URL = os.getenv("SIGNAGE_DATABASE_URL", "sqlite:///./player.db")
STORAGE_DIR = os.getenv("SIGNAGE_STORAGE_DIR", "storage")
TIMEZONE = (os.getenv("SIGNAGE_TIMEZONE", "") or "").strip()

EVALUATE_INTERVAL_SEC = float(os.getenv("SIGNAGE_EVALUATE_INTERVAL_SEC", "30"))
FLUSH_INTERVAL_SEC = float(os.getenv("SIGNAGE_FLUSH_INTERVAL_SEC", "300"))
HEARTBEAT_SEC = float(os.getenv("SIGNAGE_HEARTBEAT_SEC", "30"))
PROGRESS_INTERVAL_MS = int(os.getenv("SIGNAGE_PROGRESS_INTERVAL_MS", "100"))
FADE_LEAD_MS = int(os.getenv("SIGNAGE_FADE_LEAD_MS", "0"))
DEFAULT_IMAGE_DURATION_SEC = int(os.getenv("SIGNAGE_DEFAULT_IMAGE_DURATION_SEC", "10"))
SYNC_MAX_RETRIES = int(os.getenv("SIGNAGE_SYNC_MAX_RETRIES", "3"))
SYNC_RETRY_BASE_SEC = float(os.getenv("SIGNAGE_SYNC_RETRY_BASE_SEC", "5"))
RECONNECT_MAX_SEC = float(os.getenv("SIGNAGE_RECONNECT_MAX_SEC", "60"))
IDENTIFY_SEC = float(os.getenv("SIGNAGE_IDENTIFY_SEC", "5"))
HTTP_TIMEOUT_SEC = float(os.getenv("SIGNAGE_HTTP_TIMEOUT_SEC", "30"))
COMMAND_TTL_SEC = int(os.getenv("SIGNAGE_COMMAND_TTL_SEC", "86400"))
OVERNIGHT_WINDOWS = _flag("SIGNAGE_OVERNIGHT_WINDOWS", "1")
PRUNE_UNUSED_MEDIA = _flag("SIGNAGE_PRUNE_UNUSED_MEDIA", "0")

LOG_LEVEL = os.getenv("SIGNAGE_LOG_LEVEL", "INFO").strip().upper() or "INFO"
QUIET_ACCESS_LOG = _flag("SIGNAGE_QUIET_ACCESS_LOG", "1")


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if QUIET_ACCESS_LOG:
        # Keep warning/error lines, suppress the per-request noise from the playback surface polling.
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # Reconnect logic already covers dropped push channels; the transport's own traces are noise.
    logging.getLogger("websockets").setLevel(logging.CRITICAL)
    logging.getLogger("uvicorn.protocols.websockets").setLevel(logging.CRITICAL)
