"""Decay scheduling — turns a fresh permanence score into a lifecycle hint.

Scores are recomputed from scratch on every evaluation; the recency and age
terms already decay monotonically, so no prior score is carried forward.
Rules, first match wins:

    1. Milestone                               -> ARCHIVED (score forced to 1.0)
    2. score >= 0.85 and engagement >= 0.8,
       held for 3 consecutive evaluations      -> ARCHIVED
    3. score < 0.05 or visibility window over  -> EXPIRED
    4. score < 0.35                            -> FADING
    5. otherwise                               -> ACTIVE

The visibility window is the logarithmic permanence duration: 24 hours
stretched by engagement, capped at 30 days. Significance is a constant term,
so Tip and Achievement scores level off above the expiry threshold; the
window is what eventually retires them.
"""

import math
from dataclasses import asdict, dataclass
from typing import Optional

from keepsake.errors import ConfigurationError
from keepsake.models import ArchiveReason, ContentItem, ContentKind, ItemState
from keepsake.scoring import ScoringWeights, permanence_score

HOUR = 3600.0

# (upper bound in hours, label) for non-archived items
WINDOW_TIERS = [
    (24.0, "standard"),
    (72.0, "extended"),
    (168.0, "weekly"),
    (720.0, "monthly"),
]


@dataclass
class DecayThresholds:
    archive_score: float = 0.85
    archive_engagement: float = 0.8
    sustain_evaluations: int = 3
    expire_below: float = 0.05
    fading_below: float = 0.35
    window_base_hours: float = 24.0
    window_max_multiplier: float = 30.0


def validate_thresholds(thresholds: DecayThresholds) -> DecayThresholds:
    t = thresholds
    non_finite = [name for name, value in asdict(t).items() if not math.isfinite(value)]
    if non_finite:
        raise ConfigurationError(f"Non-finite thresholds: {', '.join(non_finite)}")
    if not 0.0 <= t.expire_below < t.fading_below < t.archive_score <= 1.0:
        raise ConfigurationError(
            "Thresholds must satisfy 0 <= expire_below < fading_below < archive_score <= 1"
        )
    if not 0.0 <= t.archive_engagement <= 1.0:
        raise ConfigurationError("archive_engagement must be within [0, 1]")
    if t.sustain_evaluations < 1:
        raise ConfigurationError("sustain_evaluations must be at least 1")
    if t.window_base_hours <= 0 or t.window_max_multiplier < 1:
        raise ConfigurationError("Visibility window must be positive with a multiplier cap >= 1")
    return thresholds


def visibility_window_hours(item: ContentItem, thresholds: DecayThresholds = None) -> float:
    """Hours the item may stay visible, stretched logarithmically by engagement."""
    if thresholds is None:
        thresholds = DecayThresholds()

    engagement_multiplier = math.log1p(item.raw_engagement) * 0.5
    view_velocity_bonus = min(item.views / 10.0, 2.0)
    quality = (item.likes * 0.3) + (item.comments * 0.5) + (item.shares * 0.7)
    quality_multiplier = math.log1p(quality) * 0.3

    multiplier = min(1 + engagement_multiplier + view_velocity_bonus + quality_multiplier,
                     thresholds.window_max_multiplier)
    return thresholds.window_base_hours * multiplier


def window_ends_at(item: ContentItem, thresholds: DecayThresholds = None) -> Optional[float]:
    if item.kind is ContentKind.MILESTONE or item.state is ItemState.ARCHIVED:
        return None
    return item.created_at + visibility_window_hours(item, thresholds) * HOUR


def window_tier(item: ContentItem, thresholds: DecayThresholds = None) -> str:
    """Label for how far engagement has stretched the item's window."""
    if item.state is ItemState.ARCHIVED or item.kind is ContentKind.MILESTONE:
        return "archived"
    hours = visibility_window_hours(item, thresholds)
    for upper, label in WINDOW_TIERS:
        if hours <= upper:
            return label
    return WINDOW_TIERS[-1][1]


@dataclass(frozen=True)
class Evaluation:
    """Outcome of one evaluation. Applied to the item by the state machine."""
    score: float
    state_hint: ItemState
    sustained_count: int
    evaluated_at: float
    archive_reason: Optional[ArchiveReason] = None


class DecayScheduler:
    """Evaluates items against the decay rules. Holds configuration only."""

    def __init__(self, weights: ScoringWeights = None, thresholds: DecayThresholds = None):
        self.weights = weights or ScoringWeights()
        self.thresholds = thresholds or DecayThresholds()

    def is_stale(self, item: ContentItem, now: float) -> bool:
        """True if `now` predates the item's last applied evaluation."""
        return item.last_evaluated_at is not None and now < item.last_evaluated_at

    def evaluate(self, item: ContentItem, now: float) -> Evaluation:
        """Score the item at `now` and pick a state hint. Does not mutate the item.

        Evaluating again at the same `now` with no intervening events gives the
        same result: the sustained counter only advances on strictly later ticks.
        """
        t = self.thresholds

        if item.kind is ContentKind.MILESTONE:
            return Evaluation(1.0, ItemState.ARCHIVED, item.sustained_count, now, ArchiveReason.MILESTONE)

        score = permanence_score(item, now, self.weights)

        advancing = item.last_evaluated_at is None or now > item.last_evaluated_at
        qualifies = score >= t.archive_score and item.engagement_metric >= t.archive_engagement
        if not qualifies:
            sustained = 0
        elif advancing:
            sustained = min(item.sustained_count + 1, t.sustain_evaluations)
        else:
            sustained = item.sustained_count

        if qualifies and sustained >= t.sustain_evaluations:
            return Evaluation(score, ItemState.ARCHIVED, sustained, now, ArchiveReason.SUSTAINED_ENGAGEMENT)

        window_end = item.created_at + visibility_window_hours(item, t) * HOUR
        if score < t.expire_below or now >= window_end:
            hint = ItemState.EXPIRED
        elif score < t.fading_below:
            hint = ItemState.FADING
        else:
            hint = ItemState.ACTIVE

        return Evaluation(score, hint, sustained, now)
