"""Shared fixtures for the Keepsake test suite."""

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from keepsake.config import EngineConfig
from keepsake.db_bridge import KeepsakeDB
from keepsake.engine import PermanenceEngine
from keepsake.models import ContentItem, ContentKind

# A fixed epoch keeps every scenario deterministic
T0 = 1_760_000_000.0
HOUR = 3600.0


def hours(n: float) -> float:
    """Timestamp n hours after T0."""
    return T0 + n * HOUR


def make_item(kind=ContentKind.ROUTINE, item_id="story-1", owner_id="user-1", created_at=T0, **kwargs):
    return ContentItem(id=item_id, owner_id=owner_id, kind=kind, created_at=created_at, **kwargs)


# ---------------------------------------------------------------------------
# Databases and engines
# ---------------------------------------------------------------------------
@pytest.fixture
def tmp_db_path(tmp_path):
    return str(tmp_path / "test_keepsake.db")


@pytest.fixture
def db(tmp_db_path):
    database = KeepsakeDB(tmp_db_path)
    yield database
    database.close()


@pytest.fixture
def engine(db):
    return PermanenceEngine(db, EngineConfig())


@pytest.fixture
def populated_engine(engine):
    """Engine with one story of every kind for user-1 and a tip for user-2."""
    engine.create_item("routine-1", "routine", created_at=T0, owner_id="user-1")
    engine.create_item("tip-1", "tip", created_at=hours(1), owner_id="user-1")
    engine.create_item("achievement-1", "achievement", created_at=hours(2), owner_id="user-1")
    engine.create_item("milestone-1", "milestone", created_at=hours(3), owner_id="user-1")
    engine.create_item("tip-2", "tip", created_at=hours(4), owner_id="user-2")
    return engine


@pytest.fixture
def config_file(tmp_path):
    """Write a JSON config and return its path."""
    def _write(text: str) -> Path:
        path = tmp_path / "keepsake.json"
        path.write_text(text)
        return path
    return _write
