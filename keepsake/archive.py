"""Milestone archive — append-only store of items that reached ARCHIVED.

No deletion API: removal is an administrative job outside the engine.
Re-adding an item id is a hard failure (DuplicateArchive), not a no-op, so
callers notice double archival.
"""

import time
from typing import Iterator

from keepsake.db_bridge import KeepsakeDB
from keepsake.errors import InvalidTransition
from keepsake.models import ContentItem, ItemState

DEFAULT_PAGE_SIZE = 50


class ArchiveListing:
    """Lazy, restartable view over one owner's archive, newest first.

    Each iteration starts a fresh paged read, so new archivals show up on the
    next pass and an interrupted pass can simply be started again.
    """

    def __init__(self, db: KeepsakeDB, owner_id: str, page_size: int = DEFAULT_PAGE_SIZE):
        self.db = db
        self.owner_id = owner_id
        self.page_size = page_size

    def __iter__(self) -> Iterator[ContentItem]:
        after = None
        while True:
            page = self.db.archive_page(self.owner_id, self.page_size, after)
            yield from page
            if len(page) < self.page_size:
                return
            last = page[-1]
            after = (last.created_at, last.id)

    def __len__(self) -> int:
        return self.db.archive_count(self.owner_id)


class MilestoneArchive:

    def __init__(self, db: KeepsakeDB, page_size: int = DEFAULT_PAGE_SIZE):
        self.db = db
        self.page_size = page_size

    def add(self, item: ContentItem, archived_at: float = None):
        """Append an archived item. Raises DuplicateArchive if the id is present."""
        if item.state is not ItemState.ARCHIVED:
            raise InvalidTransition(
                f"Only archived items can enter the archive (item is {item.state.value})",
                item_id=item.id,
            )
        if archived_at is None:
            archived_at = time.time()
        self.db.archive_insert(item, archived_at)

    def contains(self, item_id: str) -> bool:
        return self.db.archive_contains(item_id)

    def count(self, owner_id: str) -> int:
        return self.db.archive_count(owner_id)

    def list(self, owner_id: str) -> ArchiveListing:
        return ArchiveListing(self.db, owner_id, self.page_size)
