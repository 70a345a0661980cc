from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("SIGNAGE_STORAGE_DIR", tempfile.mkdtemp(prefix="signage-storage-"))
os.environ.setdefault("SIGNAGE_DATABASE_URL", f"sqlite:///{tempfile.mkdtemp(prefix='signage-db-')}/player.db")
os.environ.setdefault("SIGNAGE_TIMEZONE", "")
os.environ.setdefault("SIGNAGE_PLAYER_API_KEY", "")

from signage_player.db import build_engine, init_db  # noqa: E402
from signage_player.services.store import LocalStore  # noqa: E402
from tests.helpers.factories import FakeSource  # noqa: E402


@pytest.fixture
def sqlite_engine(tmp_path: Path):
    engine = build_engine(f"sqlite:///{tmp_path / 'player.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(sqlite_engine) -> LocalStore:
    return LocalStore(sessionmaker(bind=sqlite_engine, autocommit=False, autoflush=False))


@pytest.fixture
def storage_dir(tmp_path: Path) -> str:
    path = tmp_path / "storage"
    path.mkdir()
    return str(path)


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()
