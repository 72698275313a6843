"""Weighted permanence scoring for stories.

Formula:
    Score = (w_e * engagement) + (w_s * significance)
          + (w_r * interaction_recency) + (w_t * temporal_relevance)

Where:
    - engagement: saturated engagement metric from the accumulator
    - significance: fixed weight per content kind
    - interaction_recency: exponential decay since the last interaction
    - temporal_relevance: slower exponential decay since creation
"""

import math
from dataclasses import dataclass

from keepsake.errors import ConfigurationError
from keepsake.models import ContentItem, ContentKind

SIGNIFICANCE_WEIGHTS = {
    ContentKind.ROUTINE: 0.1,
    ContentKind.TIP: 0.3,
    ContentKind.ACHIEVEMENT: 0.7,
    ContentKind.MILESTONE: 1.0,
}

WEIGHT_SUM_TOLERANCE = 1e-9


@dataclass
class ScoringWeights:
    """Tunable weights for the scoring formula."""
    engagement: float = 0.40     # w_e
    significance: float = 0.30   # w_s
    recency: float = 0.20        # w_r
    temporal: float = 0.10       # w_t
    recency_tau_hours: float = 72.0
    temporal_tau_hours: float = 240.0

    @property
    def total(self) -> float:
        return math.fsum((self.engagement, self.significance, self.recency, self.temporal))


def validate_weights(weights: ScoringWeights) -> ScoringWeights:
    """Raise ConfigurationError unless the table is usable. Returns the weights."""
    parts = {
        "engagement": weights.engagement,
        "significance": weights.significance,
        "recency": weights.recency,
        "temporal": weights.temporal,
    }
    taus = {"recency_tau_hours": weights.recency_tau_hours, "temporal_tau_hours": weights.temporal_tau_hours}
    non_finite = [name for name, value in {**parts, **taus}.items() if not math.isfinite(value)]
    if non_finite:
        raise ConfigurationError(f"Non-finite scoring values: {', '.join(non_finite)}")
    negative = [name for name, value in parts.items() if value < 0]
    if negative:
        raise ConfigurationError(f"Negative scoring weights: {', '.join(negative)}")
    if abs(weights.total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ConfigurationError(f"Scoring weights sum to {weights.total!r}, expected 1.0")
    if weights.recency_tau_hours <= 0 or weights.temporal_tau_hours <= 0:
        raise ConfigurationError("Decay time constants must be positive")
    return weights


def significance_weight(kind: ContentKind) -> float:
    return SIGNIFICANCE_WEIGHTS[kind]


def _hours_between(earlier: float, now: float) -> float:
    return max(0.0, now - earlier) / 3600.0


def interaction_recency(last_interaction_at: float, now: float, tau_hours: float = 72.0) -> float:
    """exp(-hours/72): roughly halves every 50 hours without new interaction."""
    return math.exp(-_hours_between(last_interaction_at, now) / tau_hours)


def temporal_relevance(created_at: float, now: float, tau_hours: float = 240.0) -> float:
    """exp(-hours/240): slow decay on raw age, independent of interaction."""
    return math.exp(-_hours_between(created_at, now) / tau_hours)


def permanence_score(item: ContentItem, now: float, weights: ScoringWeights = None) -> float:
    """Compute the permanence score for an item at `now`.

    Pure: reads the item's fields and never mutates them.

    Returns:
        Score between 0.0 and 1.0
    """
    if weights is None:
        weights = ScoringWeights()

    e = max(0.0, min(1.0, item.engagement_metric))
    s = significance_weight(item.kind)
    r = interaction_recency(item.last_interaction_at, now, weights.recency_tau_hours)
    t = temporal_relevance(item.created_at, now, weights.temporal_tau_hours)

    score = (weights.engagement * e) + (weights.significance * s) + (weights.recency * r) + (weights.temporal * t)
    return max(0.0, min(1.0, score))
