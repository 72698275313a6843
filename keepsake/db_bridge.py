"""Database bridge for Keepsake — SQLite persistence for item records and the archive.

One connection per database, shared across worker threads and guarded by a
re-entrant lock. Uses WAL mode and short transactions; each item's
evaluate-and-persist is committed as a single transaction.

The connection lock is held for the whole of a transaction, so writes for
different items are serialized here even though the engine never makes one
item wait on another item's lock. Scoring runs before the transaction opens;
only the state update and archive insert happen while the lock is held.
"""

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Optional

from keepsake.errors import DuplicateArchive, DuplicateItem
from keepsake.models import ContentItem, ItemState

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    created_at REAL NOT NULL,
    engagement_metric REAL NOT NULL DEFAULT 0,
    raw_engagement REAL NOT NULL DEFAULT 0,
    views INTEGER NOT NULL DEFAULT 0,
    likes INTEGER NOT NULL DEFAULT 0,
    comments INTEGER NOT NULL DEFAULT 0,
    shares INTEGER NOT NULL DEFAULT 0,
    watch_time REAL NOT NULL DEFAULT 0,
    viewers TEXT NOT NULL DEFAULT '[]',
    last_interaction_at REAL NOT NULL,
    current_score REAL NOT NULL DEFAULT 0,
    state TEXT NOT NULL,
    sustained_count INTEGER NOT NULL DEFAULT 0,
    last_evaluated_at REAL,
    archive_reason TEXT,
    expired_at REAL
);

CREATE TABLE IF NOT EXISTS milestone_archive (
    item_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    created_at REAL NOT NULL,
    archived_at REAL NOT NULL,
    record TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_state ON items(state);
CREATE INDEX IF NOT EXISTS idx_items_owner ON items(owner_id);
CREATE INDEX IF NOT EXISTS idx_archive_owner_created ON milestone_archive(owner_id, created_at);
"""

OPEN_STATES = (ItemState.ACTIVE.value, ItemState.FADING.value)

ITEM_COLUMNS = [
    "id", "owner_id", "kind", "created_at", "engagement_metric", "raw_engagement",
    "views", "likes", "comments", "shares", "watch_time", "viewers",
    "last_interaction_at", "current_score", "state", "sustained_count",
    "last_evaluated_at", "archive_reason", "expired_at",
]


class KeepsakeDB:
    """SQLite store for item records and archived milestones. Thread-safe."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, timeout=10, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        if db_path != ":memory:":
            # WAL mode for concurrent readers
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on error. Nested calls join the outer one."""
        with self._lock:
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self.conn.rollback()
                raise
            self._depth -= 1
            if self._depth == 0:
                self.conn.commit()

    # --- Items ---

    def insert_item(self, item: ContentItem):
        row = item.to_row()
        placeholders = ", ".join("?" for _ in ITEM_COLUMNS)
        with self.transaction():
            try:
                self.conn.execute(
                    f"INSERT INTO items ({', '.join(ITEM_COLUMNS)}) VALUES ({placeholders})",
                    [row[c] for c in ITEM_COLUMNS],
                )
            except sqlite3.IntegrityError:
                raise DuplicateItem(f"Item {item.id!r} already exists", item_id=item.id) from None

    def save_item(self, item: ContentItem):
        """Write every mutable field of an existing item back."""
        row = item.to_row()
        mutable = [c for c in ITEM_COLUMNS if c not in ("id", "owner_id", "kind", "created_at")]
        assignments = ", ".join(f"{c} = ?" for c in mutable)
        with self.transaction():
            self.conn.execute(
                f"UPDATE items SET {assignments} WHERE id = ?",
                [row[c] for c in mutable] + [item.id],
            )

    def get_item(self, item_id: str) -> Optional[ContentItem]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        return ContentItem.from_row(row) if row else None

    def open_item_ids(self, start_after: str = None) -> list[str]:
        """Ids of Active/Fading items in id order, optionally resuming after a checkpoint."""
        sql = "SELECT id FROM items WHERE state IN (?, ?)"
        params = list(OPEN_STATES)
        if start_after is not None:
            sql += " AND id > ?"
            params.append(start_after)
        sql += " ORDER BY id"
        with self._lock:
            return [row["id"] for row in self.conn.execute(sql, params).fetchall()]

    def count_by_state(self) -> dict:
        with self._lock:
            rows = self.conn.execute("SELECT state, COUNT(*) AS n FROM items GROUP BY state").fetchall()
        counts = {state.value: 0 for state in ItemState}
        counts.update({row["state"]: row["n"] for row in rows})
        return counts

    # --- Archive ---

    def archive_insert(self, item: ContentItem, archived_at: float):
        with self.transaction():
            try:
                self.conn.execute(
                    """INSERT INTO milestone_archive (item_id, owner_id, created_at, archived_at, record)
                       VALUES (?, ?, ?, ?, ?)""",
                    (item.id, item.owner_id, item.created_at, archived_at, json.dumps(item.to_row())),
                )
            except sqlite3.IntegrityError:
                raise DuplicateArchive(f"Item {item.id!r} is already archived", item_id=item.id) from None

    def archive_contains(self, item_id: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM milestone_archive WHERE item_id = ?", (item_id,)
            ).fetchone()
        return row is not None

    def archive_count(self, owner_id: str) -> int:
        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM milestone_archive WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        return row[0]

    def archive_page(self, owner_id: str, limit: int, after: tuple = None) -> list[ContentItem]:
        """One page of archived items, newest first, ties by id.

        `after` is the (created_at, item_id) of the last row of the previous page.
        """
        sql = "SELECT record FROM milestone_archive WHERE owner_id = ?"
        params = [owner_id]
        if after is not None:
            sql += " AND (created_at < ? OR (created_at = ? AND item_id > ?))"
            params.extend([after[0], after[0], after[1]])
        sql += " ORDER BY created_at DESC, item_id ASC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [ContentItem.from_row(json.loads(row["record"])) for row in rows]

    def get_stats(self) -> dict:
        """Overall database statistics."""
        db_size = os.path.getsize(self.db_path) if os.path.exists(self.db_path) else 0
        with self._lock:
            archived = self.conn.execute("SELECT COUNT(*) FROM milestone_archive").fetchone()[0]
        return {
            "states": self.count_by_state(),
            "archive_entries": archived,
            "db_size_mb": db_size / (1024 * 1024),
        }
