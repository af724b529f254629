"""Match persistence - the storage collaborator of the decision engine.

commit_decision writes everything produced for one pair (audit entry, new or
re-linked DuplicateMatch, review item) as a single unit. Pairs are independent;
there is no cross-pair transaction.

commit_resolution is the matching unit for a human review: the review item's
status change, the corrective audit entry, the flag on the original entry and
the match confirmation land together or not at all.
"""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from core.audit.backends import InMemoryAuditBackend, init_audit_db, insert_audit_entry, insert_correction
from core.errors import CollaboratorUnavailableError
from dedup_engine.models import DecisionRecord, DuplicateMatch, ScoreBreakdown
from review_queue.models import ResolutionCommit
from review_queue.store import InMemoryReviewStore, init_review_db, insert_review_item, transition_review_item


class MatchStore(ABC):
    """Abstract DuplicateMatch store."""

    @abstractmethod
    def commit_decision(self, record: DecisionRecord) -> None:
        """Persist one pair's audit entry, match and review item atomically."""
        pass

    @abstractmethod
    def find_match_for_pair(self, tenant_id: str, listing_a: str, listing_b: str) -> Optional[DuplicateMatch]:
        """Existing match for the pair in either order."""
        pass

    @abstractmethod
    def get_match(self, tenant_id: str, match_id: str) -> Optional[DuplicateMatch]:
        pass

    @abstractmethod
    def list_matches(self, tenant_id: str, confirmed: Optional[bool] = None) -> List[DuplicateMatch]:
        pass

    @abstractmethod
    def confirm_match(self, tenant_id: str, match_id: str, confirmed_by: str) -> bool:
        """Set is_confirmed. Returns False if the match does not exist."""
        pass

    @abstractmethod
    def commit_resolution(self, commit: ResolutionCommit) -> bool:
        """Apply a review resolution atomically.

        Returns False, writing nothing, when the review item is no longer Pending.
        """
        pass


# =============================================================================
# In-memory
# =============================================================================

class InMemoryMatchStore(MatchStore):
    """Dict-backed store writing audit entries and review items to in-memory peers.

    Args:
        audit_backend: Receives the audit entry of each decision
        review_store: Receives review items
    """

    def __init__(
        self,
        audit_backend: Optional[InMemoryAuditBackend] = None,
        review_store: Optional[InMemoryReviewStore] = None,
    ):
        self.audit_backend = audit_backend or InMemoryAuditBackend()
        self.review_store = review_store or InMemoryReviewStore()
        self._matches: Dict[str, DuplicateMatch] = {}
        self._lock = Lock()

    def commit_decision(self, record):
        with self._lock:
            self.audit_backend.append(record.audit_entry)
            if record.match is not None:
                self._matches[record.match.id] = record.match.model_copy(deep=True)
            if record.review_item is not None:
                self.review_store.add(record.review_item)

    def find_match_for_pair(self, tenant_id, listing_a, listing_b):
        for match in list(self._matches.values()):
            if match.tenant_id == tenant_id and match.involves(listing_a, listing_b):
                return match.model_copy(deep=True)
        return None

    def get_match(self, tenant_id, match_id):
        match = self._matches.get(match_id)
        if match is None or match.tenant_id != tenant_id:
            return None
        return match.model_copy(deep=True)

    def list_matches(self, tenant_id, confirmed=None):
        return [
            m.model_copy(deep=True) for m in list(self._matches.values())
            if m.tenant_id == tenant_id and (confirmed is None or m.is_confirmed == confirmed)
        ]

    def confirm_match(self, tenant_id, match_id, confirmed_by):
        with self._lock:
            match = self._matches.get(match_id)
            if match is None or match.tenant_id != tenant_id:
                return False
            match.confirm(confirmed_by)
            return True

    def commit_resolution(self, commit):
        with self._lock:
            item = self.review_store.get(commit.tenant_id, commit.review_item_id)
            if item is None or not item.is_pending:
                return False
            # Fallible writes first; the status flip is last
            self.audit_backend.append_correction(
                commit.correction,
                mark_false_positive=commit.mark_original_false_positive,
            )
            if commit.confirm_match_id is not None:
                match = self._matches.get(commit.confirm_match_id)
                if match is not None and match.tenant_id == commit.tenant_id:
                    match.confirm(commit.reviewed_by, commit.reviewed_at)
            return self.review_store.transition(
                commit.tenant_id,
                commit.review_item_id,
                commit.new_status,
                commit.reviewed_by,
                commit.notes,
                commit.reviewed_at,
            )


# =============================================================================
# SQLite
# =============================================================================

MATCH_COLUMNS = """
    id, tenant_id, source_listing_id, target_listing_id, overall_score,
    confidence, breakdown_json, detected_at, is_confirmed, confirmed_by,
    confirmed_at, review_item_id
"""


def init_match_db(db_path: Path) -> None:
    """Create duplicate_matches plus the audit and review tables it commits with.

    Args:
        db_path: Path to SQLite database file
    """
    init_audit_db(db_path)
    init_review_db(db_path)

    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS duplicate_matches (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                source_listing_id TEXT NOT NULL,
                target_listing_id TEXT NOT NULL,
                overall_score REAL NOT NULL,
                confidence TEXT NOT NULL,
                breakdown_json TEXT,
                detected_at TEXT NOT NULL,
                is_confirmed INTEGER NOT NULL DEFAULT 0,
                confirmed_by TEXT,
                confirmed_at TEXT,
                review_item_id TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_matches_pair
            ON duplicate_matches(tenant_id, source_listing_id, target_listing_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_matches_pair_reverse
            ON duplicate_matches(tenant_id, target_listing_id, source_listing_id)
        """)
        conn.commit()
    finally:
        conn.close()


def confirm_match_row(
    cursor: sqlite3.Cursor,
    tenant_id: str,
    match_id: str,
    confirmed_by: str,
    confirmed_at: datetime,
) -> bool:
    """Set is_confirmed on an open cursor (caller commits)."""
    cursor.execute("""
        UPDATE duplicate_matches
        SET is_confirmed = 1, confirmed_by = ?, confirmed_at = ?
        WHERE tenant_id = ? AND id = ?
    """, (confirmed_by, confirmed_at.isoformat(), tenant_id, match_id))
    return cursor.rowcount > 0


def _row_to_match(row: sqlite3.Row) -> DuplicateMatch:
    return DuplicateMatch(
        id=row["id"],
        tenant_id=row["tenant_id"],
        source_listing_id=row["source_listing_id"],
        target_listing_id=row["target_listing_id"],
        overall_score=row["overall_score"],
        confidence=row["confidence"],
        breakdown=ScoreBreakdown.model_validate_json(row["breakdown_json"]) if row["breakdown_json"] else ScoreBreakdown(),
        detected_at=datetime.fromisoformat(row["detected_at"]),
        is_confirmed=bool(row["is_confirmed"]),
        confirmed_by=row["confirmed_by"],
        confirmed_at=datetime.fromisoformat(row["confirmed_at"]) if row["confirmed_at"] else None,
        review_item_id=row["review_item_id"],
    )


class SQLiteMatchStore(MatchStore):
    """sqlite3-backed store; one transaction per committed decision.

    The audit_entries and review_items tables live in the same database file,
    so SQLiteAuditBackend and SQLiteReviewStore opened on db_path read what
    this store commits.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        init_match_db(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, sql: str, params: tuple) -> List[DuplicateMatch]:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("match store", str(e)) from e
        return [_row_to_match(row) for row in rows]

    def commit_decision(self, record):
        try:
            conn = self._connect()
            try:
                cursor = conn.cursor()
                insert_audit_entry(cursor, record.audit_entry)

                match = record.match
                if match is not None and record.new_match:
                    cursor.execute(f"""
                        INSERT INTO duplicate_matches ({MATCH_COLUMNS})
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        match.id,
                        match.tenant_id,
                        match.source_listing_id,
                        match.target_listing_id,
                        match.overall_score,
                        match.confidence.value,
                        match.breakdown.model_dump_json(),
                        match.detected_at.isoformat(),
                        int(match.is_confirmed),
                        match.confirmed_by,
                        match.confirmed_at.isoformat() if match.confirmed_at else None,
                        match.review_item_id,
                    ))
                elif match is not None:
                    cursor.execute(
                        "UPDATE duplicate_matches SET review_item_id = ? WHERE tenant_id = ? AND id = ?",
                        (match.review_item_id, match.tenant_id, match.id),
                    )

                if record.review_item is not None:
                    insert_review_item(cursor, record.review_item)

                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("match store", str(e)) from e

    def find_match_for_pair(self, tenant_id, listing_a, listing_b):
        matches = self._fetch(f"""
            SELECT {MATCH_COLUMNS} FROM duplicate_matches
            WHERE tenant_id = ?
              AND ((source_listing_id = ? AND target_listing_id = ?)
                OR (source_listing_id = ? AND target_listing_id = ?))
            ORDER BY detected_at
            LIMIT 1
        """, (tenant_id, listing_a, listing_b, listing_b, listing_a))
        return matches[0] if matches else None

    def get_match(self, tenant_id, match_id):
        matches = self._fetch(
            f"SELECT {MATCH_COLUMNS} FROM duplicate_matches WHERE tenant_id = ? AND id = ?",
            (tenant_id, match_id),
        )
        return matches[0] if matches else None

    def list_matches(self, tenant_id, confirmed=None):
        sql = f"SELECT {MATCH_COLUMNS} FROM duplicate_matches WHERE tenant_id = ?"
        params = [tenant_id]
        if confirmed is not None:
            sql += " AND is_confirmed = ?"
            params.append(int(confirmed))
        sql += " ORDER BY detected_at DESC"
        return self._fetch(sql, tuple(params))

    def confirm_match(self, tenant_id, match_id, confirmed_by):
        try:
            conn = self._connect()
            try:
                confirmed = confirm_match_row(conn.cursor(), tenant_id, match_id, confirmed_by, datetime.utcnow())
                conn.commit()
                return confirmed
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("match store", str(e)) from e

    def commit_resolution(self, commit):
        try:
            conn = self._connect()
            try:
                cursor = conn.cursor()
                if not transition_review_item(
                    cursor,
                    commit.tenant_id,
                    commit.review_item_id,
                    commit.new_status,
                    commit.reviewed_by,
                    commit.notes,
                    commit.reviewed_at,
                ):
                    conn.rollback()
                    return False

                insert_correction(
                    cursor,
                    commit.correction,
                    mark_false_positive=commit.mark_original_false_positive,
                )
                if commit.confirm_match_id is not None:
                    confirm_match_row(
                        cursor, commit.tenant_id, commit.confirm_match_id, commit.reviewed_by, commit.reviewed_at,
                    )

                conn.commit()
                return True
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("match store", str(e)) from e
