"""Hostile and odd inputs: ids, labels, payloads and concurrent writers."""

import math
import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from tests.conftest import T0, hours

from keepsake.errors import InvalidEvent, KeepsakeError, UnknownKind
from keepsake.models import ItemState


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("item_id", [
    "'; DROP TABLE items; --",
    "story\" OR 1=1 --",
    "ストーリー-🎉",
    " ",
    "a" * 2000,
])
def test_odd_ids_round_trip(engine, item_id):
    engine.create_item(item_id, "tip", created_at=T0, owner_id=item_id)
    engine.record_event(item_id, "view", at=T0, viewer_id=item_id)
    assert engine.get_item(item_id).viewers == {item_id}
    assert engine.db.open_item_ids() == [item_id]


def test_injection_in_owner_scoped_archive(engine):
    engine.create_item("m1", "milestone", created_at=T0, owner_id="alice")
    engine.create_item("m2", "milestone", created_at=T0, owner_id="bob")
    assert list(engine.archive.list("alice' OR '1'='1")) == []
    assert [i.id for i in engine.archive.list("alice")] == ["m1"]


# ---------------------------------------------------------------------------
# Labels and payloads
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("label", ["", "MILESTONE!", "milestone ", "None", "tip\x00"])
def test_kind_labels(engine, label):
    if label.strip().lower() == "milestone":
        assert engine.create_item("x", label, created_at=T0).state is ItemState.ARCHIVED
    else:
        with pytest.raises(UnknownKind):
            engine.create_item("x", label, created_at=T0)


@pytest.mark.parametrize("event_type, weight", [
    ("superlike", None),
    ("like", 0),
    ("like", -4),
    ("like", 2.5),
    ("like", True),
    ("like", "10"),
    ("watch_time", None),
    ("watch_time", -0.1),
    ("watch_time", 1.0001),
    ("watch_time", math.nan),
    ("watch_time", math.inf),
    ("watch_time", "half"),
])
def test_malformed_events(engine, event_type, weight):
    engine.create_item("x", "tip", created_at=T0)
    with pytest.raises(InvalidEvent):
        engine.record_event("x", event_type, weight, at=T0)
    assert engine.get_item("x").raw_engagement == 0.0


def test_event_labels_normalised(engine):
    engine.create_item("x", "tip", created_at=T0)
    engine.record_event("x", "Watch-Time", 0.5, at=T0)
    engine.record_event("x", " LIKE ", at=T0)
    item = engine.get_item("x")
    assert item.watch_time == 0.5
    assert item.likes == 1


def test_errors_share_a_base(engine):
    with pytest.raises(KeepsakeError):
        engine.evaluate("missing", now=T0)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def test_event_before_creation_does_not_rewind(engine):
    engine.create_item("x", "tip", created_at=hours(10))
    engine.record_event("x", "like", at=hours(2))
    assert engine.get_item("x").last_interaction_at == hours(10)


def test_evaluation_before_creation_clamps(engine):
    engine.create_item("x", "routine", created_at=hours(10))
    vis = engine.evaluate("x", now=hours(5))
    assert vis.current_score == pytest.approx(0.1 * 0.3 + 0.2 + 0.1)


def test_viral_spike_stays_bounded(engine):
    engine.create_item("x", "tip", created_at=T0)
    engine.record_event("x", "share", 10**7, at=T0)
    vis = engine.evaluate("x", now=T0)
    assert engine.get_item("x").engagement_metric <= 1.0
    assert 0.0 <= vis.current_score <= 1.0


# ---------------------------------------------------------------------------
# Concurrent writers
# ---------------------------------------------------------------------------

def test_concurrent_events_on_one_item(engine):
    engine.create_item("x", "tip", created_at=T0)
    barrier = threading.Barrier(8)

    def burst(kind):
        barrier.wait()
        for _ in range(40):
            engine.record_event("x", kind, at=T0)

    threads = [threading.Thread(target=burst, args=(k,)) for k in ["view", "like", "comment", "share"] * 2]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    item = engine.get_item("x")
    assert (item.views, item.likes, item.comments, item.shares) == (80, 80, 80, 80)
    assert item.raw_engagement == 80 * (1 + 3 + 5 + 8)


def test_concurrent_creates_of_one_id(engine):
    outcomes = []
    barrier = threading.Barrier(6)

    def create():
        barrier.wait()
        try:
            engine.create_item("same", "milestone", created_at=T0, owner_id="u")
            outcomes.append("ok")
        except KeepsakeError as e:
            outcomes.append(type(e).__name__)

    threads = [threading.Thread(target=create) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["DuplicateItem"] * 5 + ["ok"]
    assert engine.archive.count("u") == 1


def test_concurrent_takedown_and_evaluation(engine):
    engine.create_item("x", "achievement", created_at=T0)
    errors = []

    def takedown():
        try:
            engine.force_state("x", "expired", at=hours(1))
        except KeepsakeError as e:
            errors.append(e)

    def evaluate_loop():
        for h in range(1, 30):
            try:
                engine.get_visibility_state("x", now=hours(h))
            except KeepsakeError as e:
                errors.append(e)

    threads = [threading.Thread(target=takedown), threading.Thread(target=evaluate_loop)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert engine.get_item("x").state is ItemState.EXPIRED
    # Only the takedown can fail, and only if the window expired the item first
    assert all(type(e).__name__ == "ItemTerminal" for e in errors)
