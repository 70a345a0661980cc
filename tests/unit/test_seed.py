from __future__ import annotations

from datetime import datetime

import pytest

from signage_player.seed import PLACEHOLDER_PNG, seed
from signage_player.services.selector import resolve_current_content
from signage_player.services.store import LocalStore

pytestmark = pytest.mark.unit


def test_seed_writes_playable_offline_state(store: LocalStore) -> None:
    state = seed(store, device_code="Demo-1")

    assert store.load_state("Demo-1") == state
    assert store.media_ids() == ["default-a", "default-b", "promo"]
    assert store.get_media_blob("promo").payload == PLACEHOLDER_PNG

    morning = resolve_current_content(state, datetime(2024, 6, 3, 8, 15))
    noon = resolve_current_content(state, datetime(2024, 6, 3, 12, 0))
    assert morning.channel_id == "demo-promo"
    assert noon.channel_id == "demo-default"
    assert [item.id for item in noon.items] == ["default-1", "default-2"]
