"""Review queue models.

A ReviewItem is created for every NearMatch and resolved exactly once by a
person. Resolution outcomes are returned as typed values rather than raised:

    result = manager.confirm_as_duplicate("t-1", item_id, "analyst")
    if isinstance(result, AlreadyResolved):
        ...
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from core.audit.entries import AuditEntry


class ReviewStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED_DUPLICATE = "ConfirmedDuplicate"
    CONFIRMED_NOT_DUPLICATE = "ConfirmedNotDuplicate"
    SKIPPED = "Skipped"

    @property
    def is_terminal(self) -> bool:
        return self != ReviewStatus.PENDING


# (minimum score, priority); 1 is most urgent
PRIORITY_BANDS = [
    (0.90, 1),
    (0.85, 2),
    (0.80, 3),
    (0.75, 4),
]
LOWEST_PRIORITY = 5


def review_priority(score: float) -> int:
    """Map a composite score to a review priority (1 = most urgent)."""
    for minimum, priority in PRIORITY_BANDS:
        if score >= minimum:
            return priority
    return LOWEST_PRIORITY


class ReviewItem(BaseModel):
    """A near-duplicate pair awaiting human adjudication.

    Attributes:
        duplicate_match_id: The DuplicateMatch under review
        audit_entry_id: Automatic audit entry that produced the NearMatch
        match_score: Composite score at detection time
        priority: 1 (most urgent) to 5, derived from match_score
        status: Pending until resolved; the other statuses are terminal
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Review item identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    duplicate_match_id: str = Field(..., description="Match under review")
    audit_entry_id: Optional[str] = Field(None, description="Audit entry of the automatic decision")
    source_listing_id: str
    target_listing_id: str
    match_score: float = Field(..., ge=0.0, le=1.0)
    priority: int = Field(..., ge=1, le=LOWEST_PRIORITY)
    status: ReviewStatus = ReviewStatus.PENDING
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    reviewed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def create(
        cls,
        tenant_id: str,
        duplicate_match_id: str,
        source_listing_id: str,
        target_listing_id: str,
        match_score: float,
        audit_entry_id: Optional[str] = None,
    ) -> "ReviewItem":
        return cls(
            tenant_id=tenant_id,
            duplicate_match_id=duplicate_match_id,
            audit_entry_id=audit_entry_id,
            source_listing_id=source_listing_id,
            target_listing_id=target_listing_id,
            match_score=match_score,
            priority=review_priority(match_score),
        )

    @property
    def is_pending(self) -> bool:
        return self.status == ReviewStatus.PENDING


# =============================================================================
# Resolution results
# =============================================================================

class ResolutionAction(str, Enum):
    """Human actions on a pending item, mapped to their terminal status."""
    CONFIRM_DUPLICATE = "confirm_duplicate"
    CONFIRM_NOT_DUPLICATE = "confirm_not_duplicate"
    SKIP = "skip"

    @property
    def target_status(self) -> ReviewStatus:
        return {
            ResolutionAction.CONFIRM_DUPLICATE: ReviewStatus.CONFIRMED_DUPLICATE,
            ResolutionAction.CONFIRM_NOT_DUPLICATE: ReviewStatus.CONFIRMED_NOT_DUPLICATE,
            ResolutionAction.SKIP: ReviewStatus.SKIPPED,
        }[self]


@dataclass(frozen=True)
class Resolved:
    """The item moved from Pending to a terminal status."""
    item: ReviewItem
    corrective_audit_entry_id: Optional[str] = None


@dataclass(frozen=True)
class AlreadyResolved:
    """The item was not Pending; nothing changed."""
    item: ReviewItem


@dataclass(frozen=True)
class ReviewNotFound:
    review_item_id: str


ReviewResolution = Union[Resolved, AlreadyResolved, ReviewNotFound]


@dataclass(frozen=True)
class ResolutionCommit:
    """Everything one resolution writes, committed as a unit.

    The status change only lands together with the corrective audit entry,
    the false-positive flag on the original entry and, for confirmed
    duplicates, the match confirmation.
    """
    tenant_id: str
    review_item_id: str
    new_status: ReviewStatus
    reviewed_by: str
    notes: Optional[str]
    reviewed_at: datetime
    correction: AuditEntry
    mark_original_false_positive: bool = False
    confirm_match_id: Optional[str] = None


# =============================================================================
# Queue statistics
# =============================================================================

class ReviewQueueStats(BaseModel):
    """Counts over every review item of a tenant, whatever its status."""
    tenant_id: str
    total_count: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    pending_by_priority: Dict[int, int] = Field(default_factory=dict)
    average_match_score: float = 0.0

    @property
    def pending_count(self) -> int:
        return self.by_status.get(ReviewStatus.PENDING.value, 0)

    @property
    def resolved_count(self) -> int:
        return self.total_count - self.pending_count

    @classmethod
    def from_groups(
        cls,
        tenant_id: str,
        groups: Iterable[Tuple[ReviewStatus, int, int, float]],
    ) -> "ReviewQueueStats":
        """Build stats from (status, priority, count, score_sum) groups."""
        by_status = {status.value: 0 for status in ReviewStatus}
        pending_by_priority: Dict[int, int] = {}
        total = 0
        score_sum = 0.0
        for status, priority, count, group_score_sum in groups:
            by_status[status.value] += count
            if status == ReviewStatus.PENDING:
                pending_by_priority[priority] = pending_by_priority.get(priority, 0) + count
            total += count
            score_sum += group_score_sum
        return cls(
            tenant_id=tenant_id,
            total_count=total,
            by_status=by_status,
            pending_by_priority=dict(sorted(pending_by_priority.items())),
            average_match_score=round(score_sum / total, 4) if total else 0.0,
        )
