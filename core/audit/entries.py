"""Audit entry models for deduplication decisions.

Every evaluated candidate pair produces exactly one AuditEntry. Human
corrections are recorded as additional entries pointing back at the
original through original_audit_entry_id. Entries are append-only; the only
fields that change after creation are the false-positive/false-negative flags.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditDecision(str, Enum):
    """Outcome recorded for a candidate pair."""
    NEW_LISTING = "NewListing"
    DUPLICATE = "Duplicate"
    NEAR_MATCH = "NearMatch"
    MANUAL_OVERRIDE = "ManualOverride"


class AuditReason(str, Enum):
    """How the decision was reached."""
    NO_MATCH = "NoMatch"
    VIN_MATCH = "VinMatch"
    EXTERNAL_ID_MATCH = "ExternalIdMatch"
    FUZZY_MATCH = "FuzzyMatch"
    IMAGE_MATCH = "ImageMatch"
    COMBINED_MATCH = "CombinedMatch"
    MANUAL_REVIEW = "ManualReview"
    FALSE_POSITIVE_CORRECTION = "FalsePositiveCorrection"
    FALSE_NEGATIVE_CORRECTION = "FalseNegativeCorrection"


KEY_MATCH_REASONS = (AuditReason.VIN_MATCH, AuditReason.EXTERNAL_ID_MATCH)


class AuditEntry(BaseModel):
    """Append-only record of one deduplication decision or correction.

    Attributes:
        id: Entry identifier
        tenant_id: Owning tenant
        source_listing_id: The listing that was evaluated
        target_listing_id: The existing listing it was compared against
        decision: NewListing / Duplicate / NearMatch / ManualOverride
        reason: Method behind the decision (VinMatch, FuzzyMatch, ...)
        confidence_score: Composite score 0-1; None for VIN/external-id matches
        was_automatic: Produced by the engine rather than a person
        manual_override: Produced by a human correction
        override_reason: Free text supplied with the correction
        original_audit_entry_id: Entry this one corrects
        is_false_positive: Later found to be wrongly flagged as a duplicate
        is_false_negative: Later found to be a missed duplicate
        score_breakdown_json: Serialized per-field sub-scores
        created_by: Actor for manual entries
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Entry identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    source_listing_id: str = Field(..., description="Evaluated listing")
    target_listing_id: Optional[str] = Field(None, description="Listing compared against")

    decision: AuditDecision
    reason: AuditReason
    confidence_score: Optional[float] = Field(None, description="Composite score (None for key matches)")

    was_automatic: bool = True
    manual_override: bool = False
    override_reason: Optional[str] = None
    original_audit_entry_id: Optional[str] = None

    is_false_positive: bool = False
    is_false_negative: bool = False

    score_breakdown_json: Optional[str] = Field(None, description="Serialized field-score breakdown")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    created_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_key_match(self) -> bool:
        return self.reason in KEY_MATCH_REASONS

    def mark_false_positive(self) -> None:
        """Flag as incorrectly identified as a duplicate."""
        self.is_false_positive = True

    def mark_false_negative(self) -> None:
        """Flag as a missed duplicate."""
        self.is_false_negative = True

    def clear_error_flags(self) -> None:
        self.is_false_positive = False
        self.is_false_negative = False


def create_automatic_entry(
    tenant_id: str,
    source_listing_id: str,
    target_listing_id: Optional[str],
    decision: AuditDecision,
    reason: AuditReason,
    confidence_score: Optional[float] = None,
    score_breakdown_json: Optional[str] = None,
) -> AuditEntry:
    """Create an entry for a decision made by the engine.

    Args:
        tenant_id: Owning tenant
        source_listing_id: Evaluated listing
        target_listing_id: Listing compared against
        decision: Outcome
        reason: Method behind the outcome
        confidence_score: Composite score, None for key matches
        score_breakdown_json: Serialized ScoreBreakdown

    Returns:
        New AuditEntry with was_automatic=True
    """
    return AuditEntry(
        tenant_id=tenant_id,
        source_listing_id=source_listing_id,
        target_listing_id=target_listing_id,
        decision=decision,
        reason=reason,
        confidence_score=confidence_score,
        was_automatic=True,
        manual_override=False,
        score_breakdown_json=score_breakdown_json,
    )


def create_manual_override_entry(
    tenant_id: str,
    source_listing_id: str,
    target_listing_id: Optional[str],
    new_decision: AuditDecision,
    reason: AuditReason,
    override_reason: str,
    original_audit_entry_id: Optional[str],
    created_by: str,
) -> AuditEntry:
    """Create a corrective entry for a human decision.

    Raises:
        ValueError: If override_reason or created_by is blank
    """
    if not override_reason or not override_reason.strip():
        raise ValueError("Override reason is required")
    if not created_by or not created_by.strip():
        raise ValueError("Created by is required")

    return AuditEntry(
        tenant_id=tenant_id,
        source_listing_id=source_listing_id,
        target_listing_id=target_listing_id,
        decision=new_decision,
        reason=reason,
        was_automatic=False,
        manual_override=True,
        override_reason=override_reason,
        original_audit_entry_id=original_audit_entry_id,
        created_by=created_by,
    )


# =============================================================================
# Query Models
# =============================================================================

class AuditSortField(str, Enum):
    CREATED_AT = "created_at"
    DECISION = "decision"
    CONFIDENCE_SCORE = "confidence_score"


class AuditQueryFilter(BaseModel):
    """Filters and paging for audit queries. Unset filters match everything."""
    decision: Optional[AuditDecision] = None
    reason: Optional[AuditReason] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    was_automatic: Optional[bool] = None
    has_manual_override: Optional[bool] = None
    is_false_positive: Optional[bool] = None
    is_false_negative: Optional[bool] = None

    skip: int = Field(default=0, ge=0)
    take: int = Field(default=100, ge=1, le=1000)
    sort_by: AuditSortField = AuditSortField.CREATED_AT
    sort_descending: bool = True

    def matches(self, entry: AuditEntry) -> bool:
        """Evaluate the filters against one entry (used by in-memory backends)."""
        if self.decision is not None and entry.decision != self.decision:
            return False
        if self.reason is not None and entry.reason != self.reason:
            return False
        if self.from_date is not None and entry.created_at < self.from_date:
            return False
        if self.to_date is not None and entry.created_at > self.to_date:
            return False
        if self.was_automatic is not None and entry.was_automatic != self.was_automatic:
            return False
        if self.has_manual_override is not None and entry.manual_override != self.has_manual_override:
            return False
        if self.is_false_positive is not None and entry.is_false_positive != self.is_false_positive:
            return False
        if self.is_false_negative is not None and entry.is_false_negative != self.is_false_negative:
            return False
        return True


class AuditQueryResult(BaseModel):
    """One page of audit entries plus the unpaged total."""
    items: List[AuditEntry] = Field(default_factory=list)
    total_count: int = 0
    skip: int = 0
    take: int = 100

    @property
    def has_more(self) -> bool:
        return self.skip + len(self.items) < self.total_count
