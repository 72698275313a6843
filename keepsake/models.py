"""Core records: content items, their kinds, lifecycle states and event types.

The significance classifier is an external collaborator; this module only
translates its labels into the closed ContentKind enum at ingestion.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from keepsake.errors import UnknownKind


class ContentKind(Enum):
    ROUTINE = "routine"
    TIP = "tip"
    ACHIEVEMENT = "achievement"
    MILESTONE = "milestone"

    @classmethod
    def from_label(cls, label) -> "ContentKind":
        """Translate a classifier label (case-insensitive, with aliases)."""
        if isinstance(label, cls):
            return label
        key = str(label).strip().lower()
        kind = KIND_ALIASES.get(key)
        if kind is None:
            raise UnknownKind(f"Unknown content kind label: {label!r}")
        return kind


# Labels the classifier is known to emit besides the canonical names
KIND_ALIASES = {
    "routine": ContentKind.ROUTINE,
    "daily": ContentKind.ROUTINE,
    "meal": ContentKind.ROUTINE,
    "tip": ContentKind.TIP,
    "advice": ContentKind.TIP,
    "achievement": ContentKind.ACHIEVEMENT,
    "goal": ContentKind.ACHIEVEMENT,
    "milestone": ContentKind.MILESTONE,
}


class ItemState(Enum):
    ACTIVE = "active"
    FADING = "fading"
    EXPIRED = "expired"
    ARCHIVED = "archived"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemState.EXPIRED, ItemState.ARCHIVED)


class ArchiveReason(Enum):
    MILESTONE = "milestone"
    SUSTAINED_ENGAGEMENT = "sustained_engagement"


class EventType(Enum):
    VIEW = "view"
    LIKE = "like"
    COMMENT = "comment"
    SHARE = "share"
    WATCH_TIME = "watch_time"

    @classmethod
    def from_label(cls, label) -> "EventType":
        if isinstance(label, cls):
            return label
        key = str(label).strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            raise UnknownKind(f"Unknown event type label: {label!r}") from None


@dataclass
class ContentItem:
    """Metadata record tracked for one story. Content bytes live elsewhere."""
    id: str
    owner_id: str
    kind: ContentKind
    created_at: float
    engagement_metric: float = 0.0
    raw_engagement: float = 0.0
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    watch_time: float = 0.0
    viewers: set = field(default_factory=set)
    last_interaction_at: float = 0.0
    current_score: float = 0.0
    state: ItemState = ItemState.ACTIVE
    sustained_count: int = 0
    last_evaluated_at: Optional[float] = None
    archive_reason: Optional[ArchiveReason] = None
    expired_at: Optional[float] = None

    def __post_init__(self):
        self.kind = ContentKind.from_label(self.kind)
        if isinstance(self.state, str):
            self.state = ItemState(self.state)
        if isinstance(self.archive_reason, str):
            self.archive_reason = ArchiveReason(self.archive_reason)
        if not self.last_interaction_at:
            self.last_interaction_at = self.created_at
        self.viewers = set(self.viewers or ())

    @property
    def interactions(self) -> int:
        return self.likes + self.comments + self.shares

    def to_row(self) -> dict:
        """Flatten to the column layout used by the items table."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "kind": self.kind.value,
            "created_at": self.created_at,
            "engagement_metric": self.engagement_metric,
            "raw_engagement": self.raw_engagement,
            "views": self.views,
            "likes": self.likes,
            "comments": self.comments,
            "shares": self.shares,
            "watch_time": self.watch_time,
            "viewers": json.dumps(sorted(self.viewers)),
            "last_interaction_at": self.last_interaction_at,
            "current_score": self.current_score,
            "state": self.state.value,
            "sustained_count": self.sustained_count,
            "last_evaluated_at": self.last_evaluated_at,
            "archive_reason": self.archive_reason.value if self.archive_reason else None,
            "expired_at": self.expired_at,
        }

    @classmethod
    def from_row(cls, row) -> "ContentItem":
        data = dict(row)
        data.pop("archived_at", None)
        data["viewers"] = set(json.loads(data.get("viewers") or "[]"))
        return cls(**data)


@dataclass(frozen=True)
class VisibilityState:
    """What the feed needs to decide whether (and how faded) to render."""
    state: ItemState
    current_score: float
    window_ends_at: Optional[float] = None
