"""Audit persistence backends.

The AuditBackend ABC is the storage collaborator behind AuditTrail. Two
implementations ship:
- InMemoryAuditBackend: for tests and single-process runs
- SQLiteAuditBackend: durable storage in the shared deduplication database

Row-level helpers (insert_audit_entry, row_to_audit_entry) operate on an open
cursor so that other stores can write an audit entry inside their own
transaction.
"""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from core.audit.entries import (
    AuditDecision,
    AuditEntry,
    AuditQueryFilter,
    AuditQueryResult,
    AuditReason,
    AuditSortField,
)
from core.errors import CollaboratorUnavailableError


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def append(self, entry: AuditEntry) -> None:
        """Persist a new audit entry."""
        pass

    @abstractmethod
    def get(self, tenant_id: str, entry_id: str) -> Optional[AuditEntry]:
        """Fetch one entry by id, scoped to the tenant."""
        pass

    @abstractmethod
    def set_error_flags(
        self,
        tenant_id: str,
        entry_id: str,
        is_false_positive: bool,
        is_false_negative: bool,
    ) -> bool:
        """Overwrite the FP/FN flags. Returns False if the entry is missing."""
        pass

    @abstractmethod
    def append_correction(
        self,
        entry: AuditEntry,
        mark_false_positive: bool = False,
        mark_false_negative: bool = False,
    ) -> None:
        """Append a corrective entry and flag its original in one step."""
        pass

    @abstractmethod
    def list_entries(
        self,
        tenant_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """All entries for a tenant within an optional date window."""
        pass

    @abstractmethod
    def entries_for_listing(self, tenant_id: str, listing_id: str) -> List[AuditEntry]:
        """Entries where the listing is either side of the pair, newest first."""
        pass

    @abstractmethod
    def query(self, tenant_id: str, query_filter: AuditQueryFilter) -> AuditQueryResult:
        """Filtered, sorted, paged query."""
        pass


# =============================================================================
# In-memory backend
# =============================================================================

def _sort_key(sort_by: AuditSortField):
    if sort_by == AuditSortField.DECISION:
        return lambda e: e.decision.value
    if sort_by == AuditSortField.CONFIDENCE_SCORE:
        # None sorts lowest, as in SQL
        return lambda e: (e.confidence_score is not None, e.confidence_score or 0.0)
    return lambda e: e.created_at


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing."""

    def __init__(self):
        self._entries: Dict[str, AuditEntry] = {}
        self._lock = Lock()

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries[entry.id] = entry.model_copy()

    def get(self, tenant_id: str, entry_id: str) -> Optional[AuditEntry]:
        entry = self._entries.get(entry_id)
        if entry is None or entry.tenant_id != tenant_id:
            return None
        return entry.model_copy()

    def set_error_flags(self, tenant_id, entry_id, is_false_positive, is_false_negative) -> bool:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None or entry.tenant_id != tenant_id:
                return False
            entry.is_false_positive = is_false_positive
            entry.is_false_negative = is_false_negative
            return True

    def append_correction(self, entry, mark_false_positive=False, mark_false_negative=False) -> None:
        with self._lock:
            original = self._entries.get(entry.original_audit_entry_id or "")
            if original is not None:
                if mark_false_positive:
                    original.mark_false_positive()
                if mark_false_negative:
                    original.mark_false_negative()
            self._entries[entry.id] = entry.model_copy()

    def list_entries(self, tenant_id, from_date=None, to_date=None) -> List[AuditEntry]:
        results = []
        for entry in list(self._entries.values()):
            if entry.tenant_id != tenant_id:
                continue
            if from_date and entry.created_at < from_date:
                continue
            if to_date and entry.created_at > to_date:
                continue
            results.append(entry.model_copy())
        return sorted(results, key=lambda e: e.created_at)

    def entries_for_listing(self, tenant_id, listing_id) -> List[AuditEntry]:
        results = [
            e.model_copy() for e in list(self._entries.values())
            if e.tenant_id == tenant_id
            and (e.source_listing_id == listing_id or e.target_listing_id == listing_id)
        ]
        return sorted(results, key=lambda e: e.created_at, reverse=True)

    def query(self, tenant_id, query_filter) -> AuditQueryResult:
        matched = [
            e for e in list(self._entries.values())
            if e.tenant_id == tenant_id and query_filter.matches(e)
        ]
        matched.sort(key=_sort_key(query_filter.sort_by), reverse=query_filter.sort_descending)
        page = matched[query_filter.skip:query_filter.skip + query_filter.take]

        return AuditQueryResult(
            items=[e.model_copy() for e in page],
            total_count=len(matched),
            skip=query_filter.skip,
            take=query_filter.take,
        )

    def clear(self) -> None:
        """Clear all entries (for testing)."""
        self._entries.clear()


# =============================================================================
# SQLite backend
# =============================================================================

AUDIT_COLUMNS = """
    id, tenant_id, source_listing_id, target_listing_id, decision, reason,
    confidence_score, was_automatic, manual_override, override_reason,
    original_audit_entry_id, is_false_positive, is_false_negative,
    score_breakdown_json, created_at, created_by
"""

_SORT_COLUMNS = {
    AuditSortField.CREATED_AT: "created_at",
    AuditSortField.DECISION: "decision",
    AuditSortField.CONFIDENCE_SCORE: "confidence_score",
}


def init_audit_db(db_path: Path) -> None:
    """Create the audit_entries table and its indexes.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_entries (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                source_listing_id TEXT NOT NULL,
                target_listing_id TEXT,
                decision TEXT NOT NULL,
                reason TEXT NOT NULL,
                confidence_score REAL,
                was_automatic INTEGER NOT NULL DEFAULT 1,
                manual_override INTEGER NOT NULL DEFAULT 0,
                override_reason TEXT,
                original_audit_entry_id TEXT,
                is_false_positive INTEGER NOT NULL DEFAULT 0,
                is_false_negative INTEGER NOT NULL DEFAULT 0,
                score_breakdown_json TEXT,
                created_at TEXT NOT NULL,
                created_by TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_tenant_time
            ON audit_entries(tenant_id, created_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_source
            ON audit_entries(tenant_id, source_listing_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_target
            ON audit_entries(tenant_id, target_listing_id)
        """)
        conn.commit()
    finally:
        conn.close()


def insert_audit_entry(cursor: sqlite3.Cursor, entry: AuditEntry) -> None:
    """Insert one entry using an open cursor (caller commits)."""
    cursor.execute(f"""
        INSERT INTO audit_entries ({AUDIT_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        entry.id,
        entry.tenant_id,
        entry.source_listing_id,
        entry.target_listing_id,
        entry.decision.value,
        entry.reason.value,
        entry.confidence_score,
        int(entry.was_automatic),
        int(entry.manual_override),
        entry.override_reason,
        entry.original_audit_entry_id,
        int(entry.is_false_positive),
        int(entry.is_false_negative),
        entry.score_breakdown_json,
        entry.created_at.isoformat(),
        entry.created_by,
    ))


def insert_correction(
    cursor: sqlite3.Cursor,
    entry: AuditEntry,
    mark_false_positive: bool = False,
    mark_false_negative: bool = False,
) -> None:
    """Insert a corrective entry and flag its original (caller commits)."""
    if entry.original_audit_entry_id and mark_false_positive:
        cursor.execute(
            "UPDATE audit_entries SET is_false_positive = 1 WHERE tenant_id = ? AND id = ?",
            (entry.tenant_id, entry.original_audit_entry_id),
        )
    if entry.original_audit_entry_id and mark_false_negative:
        cursor.execute(
            "UPDATE audit_entries SET is_false_negative = 1 WHERE tenant_id = ? AND id = ?",
            (entry.tenant_id, entry.original_audit_entry_id),
        )
    insert_audit_entry(cursor, entry)


def row_to_audit_entry(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        id=row["id"],
        tenant_id=row["tenant_id"],
        source_listing_id=row["source_listing_id"],
        target_listing_id=row["target_listing_id"],
        decision=AuditDecision(row["decision"]),
        reason=AuditReason(row["reason"]),
        confidence_score=row["confidence_score"],
        was_automatic=bool(row["was_automatic"]),
        manual_override=bool(row["manual_override"]),
        override_reason=row["override_reason"],
        original_audit_entry_id=row["original_audit_entry_id"],
        is_false_positive=bool(row["is_false_positive"]),
        is_false_negative=bool(row["is_false_negative"]),
        score_breakdown_json=row["score_breakdown_json"],
        created_at=datetime.fromisoformat(row["created_at"]),
        created_by=row["created_by"],
    )


class SQLiteAuditBackend(AuditBackend):
    """Audit backend storing entries in the audit_entries table.

    A connection is opened per operation. sqlite3 errors are raised as
    CollaboratorUnavailableError so callers can retry.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        init_audit_db(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, sql: str, params: tuple) -> List[AuditEntry]:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("audit store", str(e)) from e
        return [row_to_audit_entry(row) for row in rows]

    def append(self, entry: AuditEntry) -> None:
        try:
            conn = self._connect()
            try:
                insert_audit_entry(conn.cursor(), entry)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("audit store", str(e)) from e

    def get(self, tenant_id: str, entry_id: str) -> Optional[AuditEntry]:
        rows = self._fetch(
            f"SELECT {AUDIT_COLUMNS} FROM audit_entries WHERE tenant_id = ? AND id = ?",
            (tenant_id, entry_id),
        )
        return rows[0] if rows else None

    def set_error_flags(self, tenant_id, entry_id, is_false_positive, is_false_negative) -> bool:
        try:
            conn = self._connect()
            try:
                cursor = conn.execute("""
                    UPDATE audit_entries
                    SET is_false_positive = ?, is_false_negative = ?
                    WHERE tenant_id = ? AND id = ?
                """, (int(is_false_positive), int(is_false_negative), tenant_id, entry_id))
                conn.commit()
                return cursor.rowcount > 0
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("audit store", str(e)) from e

    def append_correction(self, entry, mark_false_positive=False, mark_false_negative=False) -> None:
        try:
            conn = self._connect()
            try:
                insert_correction(conn.cursor(), entry, mark_false_positive, mark_false_negative)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("audit store", str(e)) from e

    def list_entries(self, tenant_id, from_date=None, to_date=None) -> List[AuditEntry]:
        sql = f"SELECT {AUDIT_COLUMNS} FROM audit_entries WHERE tenant_id = ?"
        params = [tenant_id]
        if from_date:
            sql += " AND created_at >= ?"
            params.append(from_date.isoformat())
        if to_date:
            sql += " AND created_at <= ?"
            params.append(to_date.isoformat())
        sql += " ORDER BY created_at"
        return self._fetch(sql, tuple(params))

    def entries_for_listing(self, tenant_id, listing_id) -> List[AuditEntry]:
        return self._fetch(f"""
            SELECT {AUDIT_COLUMNS} FROM audit_entries
            WHERE tenant_id = ? AND (source_listing_id = ? OR target_listing_id = ?)
            ORDER BY created_at DESC
        """, (tenant_id, listing_id, listing_id))

    def query(self, tenant_id, query_filter) -> AuditQueryResult:
        where = ["tenant_id = ?"]
        params: list = [tenant_id]

        if query_filter.decision is not None:
            where.append("decision = ?")
            params.append(query_filter.decision.value)
        if query_filter.reason is not None:
            where.append("reason = ?")
            params.append(query_filter.reason.value)
        if query_filter.from_date is not None:
            where.append("created_at >= ?")
            params.append(query_filter.from_date.isoformat())
        if query_filter.to_date is not None:
            where.append("created_at <= ?")
            params.append(query_filter.to_date.isoformat())
        if query_filter.was_automatic is not None:
            where.append("was_automatic = ?")
            params.append(int(query_filter.was_automatic))
        if query_filter.has_manual_override is not None:
            where.append("manual_override = ?")
            params.append(int(query_filter.has_manual_override))
        if query_filter.is_false_positive is not None:
            where.append("is_false_positive = ?")
            params.append(int(query_filter.is_false_positive))
        if query_filter.is_false_negative is not None:
            where.append("is_false_negative = ?")
            params.append(int(query_filter.is_false_negative))

        where_sql = " AND ".join(where)
        order = "DESC" if query_filter.sort_descending else "ASC"
        sort_column = _SORT_COLUMNS[query_filter.sort_by]

        try:
            conn = self._connect()
            try:
                total = conn.execute(
                    f"SELECT COUNT(*) FROM audit_entries WHERE {where_sql}", tuple(params)
                ).fetchone()[0]
                rows = conn.execute(f"""
                    SELECT {AUDIT_COLUMNS} FROM audit_entries
                    WHERE {where_sql}
                    ORDER BY {sort_column} {order}
                    LIMIT ? OFFSET ?
                """, tuple(params) + (query_filter.take, query_filter.skip)).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("audit store", str(e)) from e

        return AuditQueryResult(
            items=[row_to_audit_entry(row) for row in rows],
            total_count=total,
            skip=query_filter.skip,
            take=query_filter.take,
        )
