"""ReviewQueueManager - human adjudication of near-duplicate pairs.

Each resolution is one commit: a compare-and-set on the item's status together
with the corrective audit entry and, for confirmed duplicates, the match
confirmation. A failed commit leaves the item Pending so the resolution can be
retried; a second resolution of a resolved item returns AlreadyResolved and
changes nothing.
"""

from typing import List, Optional, Protocol

from core.audit.entries import AuditDecision, AuditReason, create_manual_override_entry
from core.observability.logging import get_logger
from core.observability.metrics import record_review_conflict, record_review_resolved
from review_queue.models import (
    AlreadyResolved,
    ResolutionAction,
    ResolutionCommit,
    Resolved,
    ReviewItem,
    ReviewNotFound,
    ReviewQueueStats,
    ReviewResolution,
    ReviewStatus,
)
from review_queue.store import ReviewStore

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50


class ResolutionCommitter(Protocol):
    """Writes a resolution's status change, audit correction and match confirmation as one unit."""

    def commit_resolution(self, commit: ResolutionCommit) -> bool:
        ...


# Corrective audit entry written for each action
CORRECTIVE_DECISIONS = {
    ResolutionAction.CONFIRM_DUPLICATE: AuditDecision.DUPLICATE,
    ResolutionAction.CONFIRM_NOT_DUPLICATE: AuditDecision.NEW_LISTING,
    ResolutionAction.SKIP: AuditDecision.MANUAL_OVERRIDE,
}

DEFAULT_OVERRIDE_REASONS = {
    ResolutionAction.CONFIRM_DUPLICATE: "Confirmed as duplicate in review",
    ResolutionAction.CONFIRM_NOT_DUPLICATE: "Confirmed as not duplicate in review",
    ResolutionAction.SKIP: "Skipped in review",
}


class ReviewQueueManager:
    """Resolves and lists review items for a tenant.

    Args:
        store: Review item store (reads and queue listings)
        committer: Writes each resolution atomically; the match store of the
            same backend
    """

    def __init__(self, store: ReviewStore, committer: ResolutionCommitter):
        self.store = store
        self.committer = committer

    # =========================================================================
    # Resolution
    # =========================================================================

    def confirm_as_duplicate(
        self,
        tenant_id: str,
        review_item_id: str,
        reviewed_by: str,
        notes: Optional[str] = None,
    ) -> ReviewResolution:
        return self.resolve(tenant_id, review_item_id, ResolutionAction.CONFIRM_DUPLICATE, reviewed_by, notes)

    def confirm_as_not_duplicate(
        self,
        tenant_id: str,
        review_item_id: str,
        reviewed_by: str,
        notes: Optional[str] = None,
    ) -> ReviewResolution:
        return self.resolve(tenant_id, review_item_id, ResolutionAction.CONFIRM_NOT_DUPLICATE, reviewed_by, notes)

    def skip(
        self,
        tenant_id: str,
        review_item_id: str,
        reviewed_by: str,
        notes: Optional[str] = None,
    ) -> ReviewResolution:
        return self.resolve(tenant_id, review_item_id, ResolutionAction.SKIP, reviewed_by, notes)

    def resolve(
        self,
        tenant_id: str,
        review_item_id: str,
        action: ResolutionAction,
        reviewed_by: str,
        notes: Optional[str] = None,
    ) -> ReviewResolution:
        """Apply a terminal action to a pending item.

        Args:
            tenant_id: Owning tenant
            review_item_id: Item to resolve
            action: Terminal action
            reviewed_by: Reviewer identity (required)
            notes: Optional reviewer notes

        Returns:
            Resolved, AlreadyResolved or ReviewNotFound

        Raises:
            ValueError: If reviewed_by is blank
            CollaboratorUnavailableError: If the commit fails; the item stays
                Pending and nothing was written
        """
        if not reviewed_by or not reviewed_by.strip():
            raise ValueError("reviewed_by is required")

        item = self.store.get(tenant_id, review_item_id)
        if item is None:
            return ReviewNotFound(review_item_id)
        if not item.is_pending:
            return self._conflict(item)

        correction = create_manual_override_entry(
            tenant_id,
            item.source_listing_id,
            item.target_listing_id,
            CORRECTIVE_DECISIONS[action],
            AuditReason.MANUAL_REVIEW,
            notes or DEFAULT_OVERRIDE_REASONS[action],
            item.audit_entry_id,
            reviewed_by,
        )
        commit = ResolutionCommit(
            tenant_id=tenant_id,
            review_item_id=review_item_id,
            new_status=action.target_status,
            reviewed_by=reviewed_by,
            notes=notes,
            reviewed_at=correction.created_at,
            correction=correction,
            mark_original_false_positive=(
                action == ResolutionAction.CONFIRM_NOT_DUPLICATE and item.audit_entry_id is not None
            ),
            confirm_match_id=(
                item.duplicate_match_id if action == ResolutionAction.CONFIRM_DUPLICATE else None
            ),
        )

        if not self.committer.commit_resolution(commit):
            # Another reviewer got there first
            current = self.store.get(tenant_id, review_item_id)
            if current is None:
                return ReviewNotFound(review_item_id)
            return self._conflict(current)

        resolved_item = item.model_copy(update={
            "status": commit.new_status,
            "reviewed_by": reviewed_by,
            "review_notes": notes,
            "reviewed_at": commit.reviewed_at,
        })

        record_review_resolved(action.target_status.value)
        logger.info(
            f"Review item {review_item_id} resolved as {action.target_status.value} by {reviewed_by}",
            extra_fields={
                "review_item_id": review_item_id,
                "duplicate_match_id": item.duplicate_match_id,
                "corrective_audit_entry_id": correction.id,
            },
        )
        return Resolved(item=resolved_item, corrective_audit_entry_id=correction.id)

    def _conflict(self, item: ReviewItem) -> AlreadyResolved:
        record_review_conflict()
        logger.warning(
            f"Review item {item.id} already resolved as {item.status.value}",
            extra_fields={"review_item_id": item.id, "reviewed_by": item.reviewed_by},
        )
        return AlreadyResolved(item)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_item(self, tenant_id: str, review_item_id: str) -> Optional[ReviewItem]:
        return self.store.get(tenant_id, review_item_id)

    def get_pending(self, tenant_id: str, skip: int = 0, take: int = DEFAULT_PAGE_SIZE) -> List[ReviewItem]:
        """Pending items, most urgent first (priority asc, score desc)."""
        return self.store.list_pending(tenant_id, skip=max(skip, 0), take=max(take, 1))

    def get_by_priority(
        self,
        tenant_id: str,
        max_priority: int,
        skip: int = 0,
        take: int = DEFAULT_PAGE_SIZE,
    ) -> List[ReviewItem]:
        """Pending items at or above an urgency level (priority <= max_priority)."""
        return self.store.list_pending(
            tenant_id,
            skip=max(skip, 0),
            take=max(take, 1),
            max_priority=max_priority,
        )

    def list_items(
        self,
        tenant_id: str,
        status: Optional[ReviewStatus] = None,
        skip: int = 0,
        take: int = DEFAULT_PAGE_SIZE,
    ) -> List[ReviewItem]:
        """Items of any status (or one status), in queue order."""
        return self.store.list_items(tenant_id, status=status, skip=max(skip, 0), take=max(take, 1))

    def get_stats(self, tenant_id: str) -> ReviewQueueStats:
        return self.store.get_stats(tenant_id)

    def pending_count(self, tenant_id: str) -> int:
        return self.store.count_pending(tenant_id)

    def has_review_for_match(self, tenant_id: str, duplicate_match_id: str) -> bool:
        return self.store.find_for_match(tenant_id, duplicate_match_id) is not None


__all__ = [
    "ResolutionCommitter",
    "ReviewQueueManager",
    "ReviewStatus",
]
