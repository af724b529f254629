"""Core audit module - decision trail, corrections and accuracy metrics."""

from core.audit.entries import (
    AuditDecision,
    AuditReason,
    AuditEntry,
    AuditQueryFilter,
    AuditQueryResult,
    AuditSortField,
    create_automatic_entry,
    create_manual_override_entry,
)
from core.audit.backends import (
    AuditBackend,
    InMemoryAuditBackend,
    SQLiteAuditBackend,
    init_audit_db,
)
from core.audit.trail import AuditTrail, FalsePositiveStats
from core.audit.accuracy import (
    AccuracyMetrics,
    AccuracyMetricsService,
    TrendGranularity,
    calculate_confusion_matrix,
)

__all__ = [
    "AuditDecision",
    "AuditReason",
    "AuditEntry",
    "AuditQueryFilter",
    "AuditQueryResult",
    "AuditSortField",
    "create_automatic_entry",
    "create_manual_override_entry",
    "AuditBackend",
    "InMemoryAuditBackend",
    "SQLiteAuditBackend",
    "init_audit_db",
    "AuditTrail",
    "FalsePositiveStats",
    "AccuracyMetrics",
    "AccuracyMetricsService",
    "TrendGranularity",
    "calculate_confusion_matrix",
]
