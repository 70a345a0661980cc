import base64
import logging

from signage_player.config import DEVICE_CODE, SERVER_URL, configure_logging
from signage_player.db import init_db
from signage_player.schemas.device_state import DeviceState
from signage_player.services.store import LocalStore

logger = logging.getLogger(__name__)

PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGNgYAAAAAMAASsJTYQAAAAASUVORK5CYII="
)


def demo_state(device_code: str = DEVICE_CODE) -> DeviceState:
    """A playlist with a morning promo channel over an always-on default channel."""

    def media(media_id: str, label: str) -> dict:
        return {
            "id": media_id,
            "name": label,
            "type": "image",
            "file_url": f"{SERVER_URL}/storage/media/{media_id}.png",
            "duration": 10,
        }

    return DeviceState.model_validate(
        {
            "device_code": device_code,
            "device_name": "Demo Device",
            "playlists": [
                {
                    "id": "demo-playlist",
                    "name": "Demo",
                    "priority": 1,
                    "has_channels": True,
                    "channels": [
                        {
                            "id": "demo-promo",
                            "name": "Promo",
                            "position": 1,
                            "start_time": "08:00",
                            "end_time": "09:00",
                            "items": [
                                {"id": "promo-1", "position": 1, "media": media("promo", "Morning Promo")},
                            ],
                        },
                        {
                            "id": "demo-default",
                            "name": "Default",
                            "position": 2,
                            "is_fallback": True,
                            "items": [
                                {"id": "default-1", "position": 1, "media": media("default-a", "Placeholder A")},
                                {
                                    "id": "default-2",
                                    "position": 2,
                                    "duration_override": 5,
                                    "media": media("default-b", "Placeholder B"),
                                },
                            ],
                        },
                    ],
                }
            ],
            "is_online": False,
        }
    )


def seed(store: LocalStore | None = None, device_code: str = DEVICE_CODE) -> DeviceState:
    init_db()
    store = store or LocalStore()
    state = demo_state(device_code)
    for media_id in state.media_refs():
        store.put_media_blob(media_id, PLACEHOLDER_PNG, "image/png")
    store.save_state(device_code, state)
    logger.info("Seeded demo state for %s", device_code)
    return state


if __name__ == "__main__":
    configure_logging()
    seed()
