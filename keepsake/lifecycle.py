"""Permanence state machine — the only writer of an item's lifecycle state.

    Created --(milestone)--------------------------------> ARCHIVED
    Created --> ACTIVE <--> FADING --> EXPIRED
                  |           |
                  +-----+-----+--(sustained engagement)--> ARCHIVED

EXPIRED and ARCHIVED are terminal. ARCHIVED is only reachable through the
scheduler's archive rules, never by request from application code.
"""

import logging

from keepsake.decay import Evaluation
from keepsake.errors import InvalidTransition, ItemTerminal
from keepsake.models import ArchiveReason, ContentItem, ContentKind, ItemState

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ItemState.ACTIVE: {ItemState.ACTIVE, ItemState.FADING, ItemState.EXPIRED, ItemState.ARCHIVED},
    ItemState.FADING: {ItemState.ACTIVE, ItemState.FADING, ItemState.EXPIRED, ItemState.ARCHIVED},
    ItemState.EXPIRED: set(),
    ItemState.ARCHIVED: set(),
}

# States application code may request directly (administrative takedown)
FORCEABLE_STATES = {ItemState.EXPIRED}


class PermanenceStateMachine:

    def admit(self, item: ContentItem) -> ItemState:
        """Place a newly created item in its initial state."""
        if item.kind is ContentKind.MILESTONE:
            item.state = ItemState.ARCHIVED
            item.current_score = 1.0
            item.archive_reason = ArchiveReason.MILESTONE
        else:
            item.state = ItemState.ACTIVE
        return item.state

    def guard(self, item: ContentItem):
        """Raise ItemTerminal if the item accepts no further input."""
        if item.state.is_terminal:
            raise ItemTerminal(item.id, item.state)

    def apply(self, item: ContentItem, evaluation: Evaluation) -> ItemState:
        """Commit an evaluation to the item. Returns the previous state."""
        self.guard(item)

        target = evaluation.state_hint
        if target not in ALLOWED_TRANSITIONS[item.state]:
            raise InvalidTransition(
                f"{item.state.value} -> {target.value} is not a legal transition", item_id=item.id
            )
        if target is ItemState.ARCHIVED and evaluation.archive_reason is None:
            raise InvalidTransition("Archival requires a milestone or sustained-engagement rule",
                                    item_id=item.id)

        previous = item.state
        item.current_score = evaluation.score
        item.sustained_count = evaluation.sustained_count
        item.last_evaluated_at = evaluation.evaluated_at
        item.state = target
        if target is ItemState.ARCHIVED:
            item.archive_reason = evaluation.archive_reason
        elif target is ItemState.EXPIRED:
            item.expired_at = evaluation.evaluated_at

        if previous is not target:
            logger.debug("item %s: %s -> %s (score %.4f)", item.id, previous.value, target.value,
                         evaluation.score)
        return previous

    def force(self, item: ContentItem, target: ItemState, at: float) -> ItemState:
        """Application-requested transition. Only EXPIRED may be forced."""
        self.guard(item)
        if target not in FORCEABLE_STATES:
            raise InvalidTransition(
                f"{target.value} cannot be forced; it is derived from the item's score",
                item_id=item.id,
            )
        previous = item.state
        item.state = target
        item.expired_at = at
        logger.info("item %s: forced %s -> %s", item.id, previous.value, target.value)
        return previous
