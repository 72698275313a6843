"""Engagement accumulation — turns raw events into a saturating [0,1] metric.

Each event type contributes a fixed raw amount; the exposed metric is
1 - exp(-raw / normalization_constant), so early events matter most and no
viral spike can push the metric past 1.0.
"""

import logging
import math
import time

from keepsake.errors import InvalidEvent, UnknownKind
from keepsake.models import ContentItem, EventType

logger = logging.getLogger(__name__)

EVENT_CONTRIBUTIONS = {
    EventType.VIEW: 1.0,
    EventType.LIKE: 3.0,
    EventType.COMMENT: 5.0,
    EventType.SHARE: 8.0,
    EventType.WATCH_TIME: 4.0,  # multiplied by the watch ratio
}

DEFAULT_NORMALIZATION = 50.0


def saturate(raw_sum: float, normalization_constant: float = DEFAULT_NORMALIZATION) -> float:
    """Map a raw contribution sum onto [0, 1)."""
    if raw_sum <= 0:
        return 0.0
    return 1.0 - math.exp(-raw_sum / normalization_constant)


class EngagementAccumulator:
    """Sole writer of an item's engagement fields."""

    def __init__(self, normalization_constant: float = DEFAULT_NORMALIZATION):
        self.normalization_constant = normalization_constant

    def contribution(self, event_type, weight=None) -> float:
        """Raw contribution of one (possibly batched) event. Raises InvalidEvent."""
        try:
            event_type = EventType.from_label(event_type)
        except UnknownKind as e:
            raise InvalidEvent(str(e)) from None

        if event_type is EventType.WATCH_TIME:
            if weight is None:
                raise InvalidEvent("watch_time events require a ratio")
            try:
                ratio = float(weight)
            except (TypeError, ValueError):
                raise InvalidEvent(f"watch ratio must be a number, got {weight!r}") from None
            if math.isnan(ratio) or not 0.0 <= ratio <= 1.0:
                raise InvalidEvent(f"watch ratio must be within [0, 1], got {weight!r}")
            return ratio * EVENT_CONTRIBUTIONS[event_type]

        count = 1 if weight is None else weight
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise InvalidEvent(f"event count must be a positive integer, got {weight!r}")
        return count * EVENT_CONTRIBUTIONS[event_type]

    def record_event(self, item: ContentItem, event_type, weight=None, at: float = None,
                     viewer_id: str = None) -> float:
        """Apply an engagement event to the item and return its new metric.

        Args:
            item: Target item (mutated in place)
            event_type: EventType or tracker label ("like", "watch_time", ...)
            weight: Watch ratio for WATCH_TIME, repeat count for other types
            at: Event timestamp (defaults to now)
            viewer_id: Optional viewer for unique-viewer tracking on VIEW

        Raises:
            InvalidEvent: terminal item or malformed event. Nothing is applied.
        """
        if item.state.is_terminal:
            raise InvalidEvent(
                f"Item {item.id!r} is {item.state.value}; engagement rejected",
                item_id=item.id,
            )

        raw = self.contribution(event_type, weight)
        event_type = EventType.from_label(event_type)
        if at is None:
            at = time.time()

        count = 1 if event_type is EventType.WATCH_TIME or weight is None else weight
        if event_type is EventType.VIEW:
            item.views += count
            if viewer_id:
                item.viewers.add(viewer_id)
        elif event_type is EventType.LIKE:
            item.likes += count
        elif event_type is EventType.COMMENT:
            item.comments += count
        elif event_type is EventType.SHARE:
            item.shares += count
        else:
            item.watch_time += raw / EVENT_CONTRIBUTIONS[EventType.WATCH_TIME]

        item.raw_engagement += raw
        item.engagement_metric = saturate(item.raw_engagement, self.normalization_constant)
        item.last_interaction_at = max(item.last_interaction_at, at)

        logger.debug("item %s: %s +%.2f raw -> metric %.4f", item.id, event_type.value, raw,
                     item.engagement_metric)
        return item.engagement_metric
