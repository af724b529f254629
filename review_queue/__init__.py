"""Review queue - near-duplicate pairs awaiting human adjudication."""

from review_queue.models import (
    ReviewStatus,
    ReviewItem,
    ResolutionAction,
    Resolved,
    AlreadyResolved,
    ReviewNotFound,
    ReviewResolution,
    ResolutionCommit,
    ReviewQueueStats,
    review_priority,
)
from review_queue.store import (
    ReviewStore,
    InMemoryReviewStore,
    SQLiteReviewStore,
    init_review_db,
)
from review_queue.manager import ResolutionCommitter, ReviewQueueManager

__all__ = [
    "ReviewStatus",
    "ReviewItem",
    "ResolutionAction",
    "Resolved",
    "AlreadyResolved",
    "ReviewNotFound",
    "ReviewResolution",
    "ResolutionCommit",
    "ReviewQueueStats",
    "review_priority",
    "ReviewStore",
    "InMemoryReviewStore",
    "SQLiteReviewStore",
    "init_review_db",
    "ResolutionCommitter",
    "ReviewQueueManager",
]
