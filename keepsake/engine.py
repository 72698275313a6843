"""Permanence engine — the inbound/outbound surface over the scoring pipeline.

    record_event -> EngagementAccumulator
    evaluate     -> DecayScheduler -> PermanenceStateMachine -> MilestoneArchive

Mutations of one item are serialized by a per-item lock; different items never
contend. The engine owns no clock: every time-dependent call takes `now`
(falling back to wall-clock time when omitted) so periodic sweeps and
evaluate-on-read produce identical results for the same timestamp.
"""

import logging
import math
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Optional

from keepsake.archive import MilestoneArchive
from keepsake.config import EngineConfig
from keepsake.db_bridge import KeepsakeDB
from keepsake.decay import DecayScheduler, Evaluation, visibility_window_hours, window_ends_at, window_tier
from keepsake.engagement import EngagementAccumulator
from keepsake.errors import InvalidTimestamp, InvalidTransition, ItemNotFound, ItemTerminal, KeepsakeError
from keepsake.lifecycle import PermanenceStateMachine
from keepsake.models import ContentItem, ContentKind, ItemState, VisibilityState

logger = logging.getLogger(__name__)


def _timestamp(value, name: str) -> float:
    """Wall-clock time for None, otherwise a finite number of unix seconds."""
    if value is None:
        return time.time()
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidTimestamp(f"{name} must be a finite timestamp, got {value!r}")
    return float(value)


@dataclass
class SweepReport:
    """Outcome of one batch pass. Failures are isolated per item."""
    now: float
    evaluated: int = 0
    transitions: dict = field(default_factory=dict)
    archived: list = field(default_factory=list)
    expired: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)
    interrupted: bool = False
    last_item_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed and not self.interrupted

    def to_dict(self) -> dict:
        return {
            "now": self.now,
            "evaluated": self.evaluated,
            "transitions": dict(self.transitions),
            "archived": list(self.archived),
            "expired": list(self.expired),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
            "interrupted": self.interrupted,
            "last_item_id": self.last_item_id,
        }


class PermanenceEngine:

    def __init__(self, db: KeepsakeDB = None, config: EngineConfig = None):
        # ConfigurationError here is fatal: no engine exists with a bad weight table
        self.config = (config or EngineConfig()).validate()
        self.db = db if db is not None else KeepsakeDB()
        self.accumulator = EngagementAccumulator(self.config.normalization_constant)
        self.scheduler = DecayScheduler(self.config.weights, self.config.thresholds)
        self.lifecycle = PermanenceStateMachine()
        self.archive = MilestoneArchive(self.db, self.config.archive_page_size)
        self._locks = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _item_lock(self, item_id: str):
        # Entries are [lock, holders]; the last holder out removes the entry
        with self._locks_guard:
            entry = self._locks.get(item_id)
            if entry is None:
                entry = self._locks[item_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[item_id]

    def _load(self, item_id: str) -> ContentItem:
        item = self.db.get_item(item_id)
        if item is None:
            raise ItemNotFound(f"No item {item_id!r}", item_id=item_id)
        return item

    def get_item(self, item_id: str) -> ContentItem:
        return self._load(item_id)

    # --- Inbound ---

    def create_item(self, item_id: str, kind, created_at: float = None, owner_id: str = "") -> ContentItem:
        """Register a newly published item. Milestones are archived immediately.

        Raises:
            UnknownKind: classifier label not recognised
            DuplicateItem: id already tracked
        """
        kind = ContentKind.from_label(kind)
        created_at = _timestamp(created_at, "created_at")
        item = ContentItem(id=item_id, owner_id=owner_id, kind=kind, created_at=created_at)
        self.lifecycle.admit(item)

        with self._item_lock(item_id), self.db.transaction():
            self.db.insert_item(item)
            if item.state is ItemState.ARCHIVED:
                self.archive.add(item, archived_at=created_at)

        logger.info("created item %s (%s) -> %s", item_id, kind.value, item.state.value)
        return item

    def record_event(self, item_id: str, event_type, weight=None, at: float = None,
                     viewer_id: str = None) -> float:
        """Record engagement and return the item's new engagement metric.

        Raises:
            ItemNotFound: unknown id
            InvalidEvent: item is terminal or the event is malformed
        """
        at = _timestamp(at, "at")
        with self._item_lock(item_id):
            item = self._load(item_id)
            metric = self.accumulator.record_event(item, event_type, weight, at=at, viewer_id=viewer_id)
            self.db.save_item(item)
        return metric

    # --- Evaluation ---

    def _apply_evaluation(self, item: ContentItem, now: float) -> Optional[Evaluation]:
        """Evaluate and persist atomically. Caller holds the item lock."""
        self.lifecycle.guard(item)
        if self.scheduler.is_stale(item, now):
            logger.debug("item %s: ignoring stale evaluation at %s", item.id, now)
            return None

        evaluation = self.scheduler.evaluate(item, now)
        with self.db.transaction():
            self.lifecycle.apply(item, evaluation)
            self.db.save_item(item)
            if item.state is ItemState.ARCHIVED:
                self.archive.add(item, archived_at=now)
        return evaluation

    def evaluate(self, item_id: str, now: float = None) -> VisibilityState:
        """Re-score one item at `now` and persist the result.

        Raises:
            ItemTerminal: item is Expired or Archived; nothing changes
            InvalidTimestamp: `now` is not a finite number
        """
        now = _timestamp(now, "now")
        with self._item_lock(item_id):
            item = self._load(item_id)
            self._apply_evaluation(item, now)
        return self._visibility(item)

    def get_visibility_state(self, item_id: str, now: float = None, evaluate: bool = True) -> VisibilityState:
        """State and score for rendering. Evaluates on read unless `evaluate` is False."""
        now = _timestamp(now, "now")
        with self._item_lock(item_id):
            item = self._load(item_id)
            if evaluate and not item.state.is_terminal:
                self._apply_evaluation(item, now)
        return self._visibility(item)

    def _visibility(self, item: ContentItem) -> VisibilityState:
        return VisibilityState(
            state=item.state,
            current_score=item.current_score,
            window_ends_at=window_ends_at(item, self.config.thresholds),
        )

    def sweep(self, now: float = None, should_stop: Callable[[], bool] = None,
              start_after: str = None) -> SweepReport:
        """Evaluate every Active/Fading item at `now`.

        One failing item never aborts the pass; its id lands in report.failed.
        `should_stop` is polled between items; pass report.last_item_id back as
        `start_after` to resume an interrupted sweep.
        """
        now = _timestamp(now, "now")
        report = SweepReport(now=now)

        for item_id in self.db.open_item_ids(start_after):
            if should_stop is not None and should_stop():
                report.interrupted = True
                break
            try:
                with self._item_lock(item_id):
                    item = self._load(item_id)
                    previous = item.state
                    evaluation = self._apply_evaluation(item, now)
            except ItemTerminal:
                report.skipped.append(item_id)
            except (KeepsakeError, sqlite3.Error) as e:
                report.failed[item_id] = f"{type(e).__name__}: {e}"
                logger.warning("sweep: item %s failed: %s", item_id, e)
            else:
                if evaluation is None:
                    report.skipped.append(item_id)
                else:
                    report.evaluated += 1
                    if item.state is not previous:
                        key = f"{previous.value}->{item.state.value}"
                        report.transitions[key] = report.transitions.get(key, 0) + 1
                    if item.state is ItemState.ARCHIVED:
                        report.archived.append(item_id)
                    elif item.state is ItemState.EXPIRED:
                        report.expired.append(item_id)
            report.last_item_id = item_id

        logger.info(
            "sweep at %s: %d evaluated, %d archived, %d expired, %d failed%s",
            now, report.evaluated, len(report.archived), len(report.expired), len(report.failed),
            " (interrupted)" if report.interrupted else "",
        )
        return report

    # --- Administrative ---

    def force_state(self, item_id: str, state, at: float = None) -> ItemState:
        """Application-requested transition; only EXPIRED (takedown) is accepted.

        Raises:
            InvalidTransition: target is derived from score (ACTIVE, FADING, ARCHIVED)
            ItemTerminal: item already terminal
        """
        try:
            target = state if isinstance(state, ItemState) else ItemState(str(state).lower())
        except ValueError:
            raise InvalidTransition(f"Unknown state {state!r}", item_id=item_id) from None
        at = _timestamp(at, "at")
        with self._item_lock(item_id):
            item = self._load(item_id)
            self.lifecycle.force(item, target, at)
            self.db.save_item(item)
        return item.state

    def get_insights(self, item_id: str, now: float = None) -> dict:
        """Read-only analytics for one item (counts, rates, time to expiry)."""
        now = _timestamp(now, "now")
        item = self._load(item_id)
        thresholds = self.config.thresholds

        ends_at = window_ends_at(item, thresholds)
        if item.state.is_terminal or ends_at is None:
            time_to_expiry = 0.0 if item.state is ItemState.EXPIRED else None
        else:
            time_to_expiry = max(0.0, ends_at - now) / 3600.0

        return {
            "id": item.id,
            "owner_id": item.owner_id,
            "kind": item.kind.value,
            "state": item.state.value,
            "current_score": item.current_score,
            "engagement_metric": item.engagement_metric,
            "engagement": {
                "views": item.views,
                "likes": item.likes,
                "comments": item.comments,
                "shares": item.shares,
                "watch_time": item.watch_time,
            },
            "unique_viewers": len(item.viewers),
            "engagement_rate": item.interactions / item.views if item.views else 0.0,
            "window_hours": visibility_window_hours(item, thresholds),
            "tier": window_tier(item, thresholds),
            "time_to_expiry_hours": time_to_expiry,
        }
