"""Review item persistence.

An item leaves Pending only through a compare-and-set on its status: of two
concurrent resolutions, exactly one sees True. transition_review_item runs
that update on a caller's cursor so a resolution can commit it together with
its audit and match writes.
"""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Tuple

from core.errors import CollaboratorUnavailableError
from review_queue.models import ReviewItem, ReviewQueueStats, ReviewStatus


def _queue_order(item: ReviewItem):
    # priority asc, score desc, oldest first
    return (item.priority, -item.match_score, item.created_at)


class ReviewStore(ABC):
    """Abstract review item store."""

    @abstractmethod
    def add(self, item: ReviewItem) -> None:
        pass

    @abstractmethod
    def get(self, tenant_id: str, item_id: str) -> Optional[ReviewItem]:
        pass

    @abstractmethod
    def find_for_match(self, tenant_id: str, duplicate_match_id: str) -> Optional[ReviewItem]:
        pass

    @abstractmethod
    def list_pending(
        self,
        tenant_id: str,
        skip: int = 0,
        take: int = 50,
        max_priority: Optional[int] = None,
    ) -> List[ReviewItem]:
        """Pending items by priority asc, then score desc."""
        pass

    @abstractmethod
    def count_pending(self, tenant_id: str) -> int:
        pass

    @abstractmethod
    def list_items(
        self,
        tenant_id: str,
        status: Optional[ReviewStatus] = None,
        skip: int = 0,
        take: int = 50,
    ) -> List[ReviewItem]:
        """Items in queue order, optionally of one status."""
        pass

    @abstractmethod
    def get_stats(self, tenant_id: str) -> ReviewQueueStats:
        pass

    @abstractmethod
    def transition(
        self,
        tenant_id: str,
        item_id: str,
        new_status: ReviewStatus,
        reviewed_by: str,
        notes: Optional[str],
        reviewed_at: datetime,
    ) -> bool:
        """Move Pending → new_status. False if the item was not Pending."""
        pass


# =============================================================================
# In-memory
# =============================================================================

class InMemoryReviewStore(ReviewStore):

    def __init__(self):
        self._items: Dict[str, ReviewItem] = {}
        self._lock = Lock()

    def add(self, item):
        with self._lock:
            self._items[item.id] = item.model_copy()

    def get(self, tenant_id, item_id):
        item = self._items.get(item_id)
        if item is None or item.tenant_id != tenant_id:
            return None
        return item.model_copy()

    def find_for_match(self, tenant_id, duplicate_match_id):
        for item in list(self._items.values()):
            if item.tenant_id == tenant_id and item.duplicate_match_id == duplicate_match_id:
                return item.model_copy()
        return None

    def list_pending(self, tenant_id, skip=0, take=50, max_priority=None):
        pending = [
            i for i in list(self._items.values())
            if i.tenant_id == tenant_id
            and i.status == ReviewStatus.PENDING
            and (max_priority is None or i.priority <= max_priority)
        ]
        pending.sort(key=_queue_order)
        return [i.model_copy() for i in pending[skip:skip + take]]

    def count_pending(self, tenant_id):
        return sum(
            1 for i in list(self._items.values())
            if i.tenant_id == tenant_id and i.status == ReviewStatus.PENDING
        )

    def list_items(self, tenant_id, status=None, skip=0, take=50):
        items = [
            i for i in list(self._items.values())
            if i.tenant_id == tenant_id and (status is None or i.status == status)
        ]
        items.sort(key=_queue_order)
        return [i.model_copy() for i in items[skip:skip + take]]

    def get_stats(self, tenant_id):
        groups: Dict[Tuple[ReviewStatus, int], List[float]] = {}
        for item in list(self._items.values()):
            if item.tenant_id == tenant_id:
                groups.setdefault((item.status, item.priority), []).append(item.match_score)
        return ReviewQueueStats.from_groups(
            tenant_id,
            ((status, priority, len(scores), sum(scores)) for (status, priority), scores in groups.items()),
        )

    def transition(self, tenant_id, item_id, new_status, reviewed_by, notes, reviewed_at):
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.tenant_id != tenant_id or item.status != ReviewStatus.PENDING:
                return False
            item.status = new_status
            item.reviewed_by = reviewed_by
            item.review_notes = notes
            item.reviewed_at = reviewed_at
            return True


# =============================================================================
# SQLite
# =============================================================================

REVIEW_COLUMNS = """
    id, tenant_id, duplicate_match_id, audit_entry_id, source_listing_id,
    target_listing_id, match_score, priority, status, review_notes,
    reviewed_by, created_at, reviewed_at
"""


def init_review_db(db_path: Path) -> None:
    """Create the review_items table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS review_items (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                duplicate_match_id TEXT NOT NULL,
                audit_entry_id TEXT,
                source_listing_id TEXT NOT NULL,
                target_listing_id TEXT NOT NULL,
                match_score REAL NOT NULL,
                priority INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'Pending',
                review_notes TEXT,
                reviewed_by TEXT,
                created_at TEXT NOT NULL,
                reviewed_at TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_review_queue
            ON review_items(tenant_id, status, priority, match_score)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_review_match
            ON review_items(tenant_id, duplicate_match_id)
        """)
        conn.commit()
    finally:
        conn.close()


def insert_review_item(cursor: sqlite3.Cursor, item: ReviewItem) -> None:
    """Insert one item using an open cursor (caller commits)."""
    cursor.execute(f"""
        INSERT INTO review_items ({REVIEW_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        item.id,
        item.tenant_id,
        item.duplicate_match_id,
        item.audit_entry_id,
        item.source_listing_id,
        item.target_listing_id,
        item.match_score,
        item.priority,
        item.status.value,
        item.review_notes,
        item.reviewed_by,
        item.created_at.isoformat(),
        item.reviewed_at.isoformat() if item.reviewed_at else None,
    ))


def transition_review_item(
    cursor: sqlite3.Cursor,
    tenant_id: str,
    item_id: str,
    new_status: ReviewStatus,
    reviewed_by: str,
    notes: Optional[str],
    reviewed_at: datetime,
) -> bool:
    """Pending -> new_status on an open cursor (caller commits). False if not Pending."""
    cursor.execute("""
        UPDATE review_items
        SET status = ?, reviewed_by = ?, review_notes = ?, reviewed_at = ?
        WHERE tenant_id = ? AND id = ? AND status = ?
    """, (
        new_status.value,
        reviewed_by,
        notes,
        reviewed_at.isoformat(),
        tenant_id,
        item_id,
        ReviewStatus.PENDING.value,
    ))
    return cursor.rowcount == 1


def row_to_review_item(row: sqlite3.Row) -> ReviewItem:
    return ReviewItem(
        id=row["id"],
        tenant_id=row["tenant_id"],
        duplicate_match_id=row["duplicate_match_id"],
        audit_entry_id=row["audit_entry_id"],
        source_listing_id=row["source_listing_id"],
        target_listing_id=row["target_listing_id"],
        match_score=row["match_score"],
        priority=row["priority"],
        status=ReviewStatus(row["status"]),
        review_notes=row["review_notes"],
        reviewed_by=row["reviewed_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        reviewed_at=datetime.fromisoformat(row["reviewed_at"]) if row["reviewed_at"] else None,
    )


class SQLiteReviewStore(ReviewStore):
    """sqlite3-backed review store."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        init_review_db(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("review store", str(e)) from e

    def add(self, item):
        try:
            conn = self._connect()
            try:
                insert_review_item(conn.cursor(), item)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("review store", str(e)) from e

    def get(self, tenant_id, item_id):
        rows = self._fetch(
            f"SELECT {REVIEW_COLUMNS} FROM review_items WHERE tenant_id = ? AND id = ?",
            (tenant_id, item_id),
        )
        return row_to_review_item(rows[0]) if rows else None

    def find_for_match(self, tenant_id, duplicate_match_id):
        rows = self._fetch(
            f"SELECT {REVIEW_COLUMNS} FROM review_items WHERE tenant_id = ? AND duplicate_match_id = ? LIMIT 1",
            (tenant_id, duplicate_match_id),
        )
        return row_to_review_item(rows[0]) if rows else None

    def list_pending(self, tenant_id, skip=0, take=50, max_priority=None):
        sql = f"SELECT {REVIEW_COLUMNS} FROM review_items WHERE tenant_id = ? AND status = ?"
        params = [tenant_id, ReviewStatus.PENDING.value]
        if max_priority is not None:
            sql += " AND priority <= ?"
            params.append(max_priority)
        sql += " ORDER BY priority ASC, match_score DESC, created_at ASC LIMIT ? OFFSET ?"
        params.extend([take, skip])
        return [row_to_review_item(r) for r in self._fetch(sql, tuple(params))]

    def count_pending(self, tenant_id):
        rows = self._fetch(
            "SELECT COUNT(*) AS n FROM review_items WHERE tenant_id = ? AND status = ?",
            (tenant_id, ReviewStatus.PENDING.value),
        )
        return rows[0]["n"]

    def list_items(self, tenant_id, status=None, skip=0, take=50):
        sql = f"SELECT {REVIEW_COLUMNS} FROM review_items WHERE tenant_id = ?"
        params = [tenant_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY priority ASC, match_score DESC, created_at ASC LIMIT ? OFFSET ?"
        params.extend([take, skip])
        return [row_to_review_item(r) for r in self._fetch(sql, tuple(params))]

    def get_stats(self, tenant_id):
        rows = self._fetch("""
            SELECT status, priority, COUNT(*) AS n, SUM(match_score) AS score_sum
            FROM review_items
            WHERE tenant_id = ?
            GROUP BY status, priority
        """, (tenant_id,))
        return ReviewQueueStats.from_groups(
            tenant_id,
            ((ReviewStatus(r["status"]), r["priority"], r["n"], r["score_sum"] or 0.0) for r in rows),
        )

    def transition(self, tenant_id, item_id, new_status, reviewed_by, notes, reviewed_at):
        try:
            conn = self._connect()
            try:
                won = transition_review_item(
                    conn.cursor(), tenant_id, item_id, new_status, reviewed_by, notes, reviewed_at,
                )
                conn.commit()
                return won
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("review store", str(e)) from e
