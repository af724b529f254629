"""AuditTrail - recording and querying deduplication decisions.

Usage:
    trail = AuditTrail(SQLiteAuditBackend(db_path))

    entry = trail.record_automatic_decision(
        tenant_id="t-1",
        source_listing_id="L-100",
        target_listing_id="L-200",
        decision=AuditDecision.NEAR_MATCH,
        reason=AuditReason.FUZZY_MATCH,
        confidence_score=0.74,
    )

    # Later, a reviewer finds the pair were different vehicles
    trail.correct_decision("t-1", entry.id, false_positive=True,
                           corrected_by="analyst@example.com",
                           reason="Different trim and colour")
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from core.audit.backends import AuditBackend
from core.audit.entries import (
    AuditDecision,
    AuditEntry,
    AuditQueryFilter,
    AuditQueryResult,
    AuditReason,
    create_automatic_entry,
    create_manual_override_entry,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FalsePositiveStats:
    """Error-flag counts over a tenant's audit entries."""
    total_decisions: int = 0
    false_positive_count: int = 0
    false_negative_count: int = 0
    true_positive_count: int = 0
    true_negative_count: int = 0
    decision_breakdown: Dict[str, int] = field(default_factory=dict)
    reason_breakdown: Dict[str, int] = field(default_factory=dict)

    @property
    def false_positive_rate(self) -> float:
        """FP / (FP + TN)"""
        denominator = self.false_positive_count + self.true_negative_count
        return self.false_positive_count / denominator if denominator else 0.0

    @property
    def false_negative_rate(self) -> float:
        """FN / (FN + TP)"""
        denominator = self.false_negative_count + self.true_positive_count
        return self.false_negative_count / denominator if denominator else 0.0

    def to_dict(self) -> Dict:
        return {
            "total_decisions": self.total_decisions,
            "false_positive_count": self.false_positive_count,
            "false_negative_count": self.false_negative_count,
            "true_positive_count": self.true_positive_count,
            "true_negative_count": self.true_negative_count,
            "false_positive_rate": self.false_positive_rate,
            "false_negative_rate": self.false_negative_rate,
            "decision_breakdown": dict(self.decision_breakdown),
            "reason_breakdown": dict(self.reason_breakdown),
        }


class AuditTrail:
    """Service facade over an AuditBackend."""

    def __init__(self, backend: AuditBackend):
        self.backend = backend

    # =========================================================================
    # Recording
    # =========================================================================

    def record_automatic_decision(
        self,
        tenant_id: str,
        source_listing_id: str,
        target_listing_id: Optional[str],
        decision: AuditDecision,
        reason: AuditReason,
        confidence_score: Optional[float] = None,
        score_breakdown_json: Optional[str] = None,
    ) -> AuditEntry:
        """Append an entry for an engine decision."""
        entry = create_automatic_entry(
            tenant_id,
            source_listing_id,
            target_listing_id,
            decision,
            reason,
            confidence_score,
            score_breakdown_json,
        )
        self.backend.append(entry)

        logger.debug(
            f"Recorded automatic decision {decision.value} ({reason.value}) for {source_listing_id}",
        )
        return entry

    def record_manual_override(
        self,
        tenant_id: str,
        source_listing_id: str,
        target_listing_id: Optional[str],
        new_decision: AuditDecision,
        reason: AuditReason,
        override_reason: str,
        original_audit_entry_id: Optional[str],
        created_by: str,
        mark_original_false_positive: bool = False,
        mark_original_false_negative: bool = False,
    ) -> AuditEntry:
        """Append a corrective entry, optionally flagging the original.

        Raises:
            ValueError: If override_reason or created_by is blank
        """
        entry = create_manual_override_entry(
            tenant_id,
            source_listing_id,
            target_listing_id,
            new_decision,
            reason,
            override_reason,
            original_audit_entry_id,
            created_by,
        )
        self.backend.append_correction(
            entry,
            mark_false_positive=mark_original_false_positive,
            mark_false_negative=mark_original_false_negative,
        )

        logger.info(
            f"Recorded manual override {new_decision.value} for {source_listing_id} by {created_by}",
            extra_fields={"original_audit_entry_id": original_audit_entry_id},
        )
        return entry

    def correct_decision(
        self,
        tenant_id: str,
        entry_id: str,
        false_positive: bool,
        corrected_by: str,
        reason: str,
    ) -> Optional[AuditEntry]:
        """Record that an automatic decision was wrong.

        A false positive (pair wrongly flagged as duplicate) yields a
        NewListing / FalsePositiveCorrection entry; a false negative (missed
        duplicate) yields a Duplicate / FalseNegativeCorrection entry. The
        original entry's flag is set in the same write.

        Args:
            tenant_id: Owning tenant
            entry_id: Entry being corrected
            false_positive: True for a false positive, False for a false negative
            corrected_by: Actor making the correction
            reason: Free-text justification

        Returns:
            The corrective entry, or None if the original does not exist
        """
        original = self.backend.get(tenant_id, entry_id)
        if original is None:
            return None

        if false_positive:
            new_decision = AuditDecision.NEW_LISTING
            correction_reason = AuditReason.FALSE_POSITIVE_CORRECTION
        else:
            new_decision = AuditDecision.DUPLICATE
            correction_reason = AuditReason.FALSE_NEGATIVE_CORRECTION

        return self.record_manual_override(
            tenant_id=tenant_id,
            source_listing_id=original.source_listing_id,
            target_listing_id=original.target_listing_id,
            new_decision=new_decision,
            reason=correction_reason,
            override_reason=reason,
            original_audit_entry_id=original.id,
            created_by=corrected_by,
            mark_original_false_positive=false_positive,
            mark_original_false_negative=not false_positive,
        )

    # =========================================================================
    # Flags
    # =========================================================================

    def mark_false_positive(self, tenant_id: str, entry_id: str) -> bool:
        entry = self.backend.get(tenant_id, entry_id)
        if entry is None:
            return False
        ok = self.backend.set_error_flags(tenant_id, entry_id, True, entry.is_false_negative)
        logger.info(f"Marked audit entry {entry_id} as false positive")
        return ok

    def mark_false_negative(self, tenant_id: str, entry_id: str) -> bool:
        entry = self.backend.get(tenant_id, entry_id)
        if entry is None:
            return False
        ok = self.backend.set_error_flags(tenant_id, entry_id, entry.is_false_positive, True)
        logger.info(f"Marked audit entry {entry_id} as false negative")
        return ok

    def clear_error_flags(self, tenant_id: str, entry_id: str) -> bool:
        ok = self.backend.set_error_flags(tenant_id, entry_id, False, False)
        if ok:
            logger.info(f"Cleared error flags from audit entry {entry_id}")
        return ok

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, tenant_id: str, entry_id: str) -> Optional[AuditEntry]:
        return self.backend.get(tenant_id, entry_id)

    def get_entries_for_listing(self, tenant_id: str, listing_id: str) -> List[AuditEntry]:
        """Entries where the listing appears on either side, newest first."""
        return self.backend.entries_for_listing(tenant_id, listing_id)

    def query(self, tenant_id: str, query_filter: Optional[AuditQueryFilter] = None) -> AuditQueryResult:
        return self.backend.query(tenant_id, query_filter or AuditQueryFilter())

    def list_entries(
        self,
        tenant_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        return self.backend.list_entries(tenant_id, from_date, to_date)

    def get_false_positive_stats(
        self,
        tenant_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> FalsePositiveStats:
        """Count FP/FN flags plus decision and reason breakdowns."""
        entries = self.backend.list_entries(tenant_id, from_date, to_date)
        stats = FalsePositiveStats(total_decisions=len(entries))

        for entry in entries:
            if entry.is_false_positive:
                stats.false_positive_count += 1
            if entry.is_false_negative:
                stats.false_negative_count += 1
            if entry.decision == AuditDecision.DUPLICATE and not entry.is_false_positive:
                stats.true_positive_count += 1
            if entry.decision == AuditDecision.NEW_LISTING and not entry.is_false_negative:
                stats.true_negative_count += 1

            decision = entry.decision.value
            reason = entry.reason.value
            stats.decision_breakdown[decision] = stats.decision_breakdown.get(decision, 0) + 1
            stats.reason_breakdown[reason] = stats.reason_breakdown.get(reason, 0) + 1

        return stats
