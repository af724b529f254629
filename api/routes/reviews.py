"""Review queue endpoints.

Reviewers list the pending queue for their tenant, browse items by status,
read queue statistics and resolve items. A resolution that loses to a
concurrent reviewer gets 409 with the item's current state.
"""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.services.deps import get_review_manager
from review_queue.manager import ReviewQueueManager
from review_queue.models import (
    AlreadyResolved,
    ResolutionAction,
    ReviewItem,
    ReviewNotFound,
    ReviewStatus,
)


router = APIRouter()


# =============================================================================
# Response Models
# =============================================================================

class ReviewItemResponse(BaseModel):
    """One review item as shown to reviewers."""
    id: str
    duplicate_match_id: str
    audit_entry_id: Optional[str] = None
    source_listing_id: str
    target_listing_id: str
    match_score: float
    priority: int
    status: str
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    created_at: datetime
    reviewed_at: Optional[datetime] = None

    @classmethod
    def from_item(cls, item: ReviewItem) -> "ReviewItemResponse":
        return cls(
            id=item.id,
            duplicate_match_id=item.duplicate_match_id,
            audit_entry_id=item.audit_entry_id,
            source_listing_id=item.source_listing_id,
            target_listing_id=item.target_listing_id,
            match_score=item.match_score,
            priority=item.priority,
            status=item.status.value,
            review_notes=item.review_notes,
            reviewed_by=item.reviewed_by,
            created_at=item.created_at,
            reviewed_at=item.reviewed_at,
        )


class ReviewListResponse(BaseModel):
    items: List[ReviewItemResponse]
    total_pending: int
    skip: int
    take: int


class ReviewPageResponse(BaseModel):
    items: List[ReviewItemResponse]
    status: Optional[str] = None
    skip: int
    take: int


class ReviewStatsResponse(BaseModel):
    """Queue counts for one tenant."""
    tenant_id: str
    total_count: int
    pending_count: int
    resolved_count: int
    by_status: Dict[str, int]
    pending_by_priority: Dict[int, int]
    average_match_score: float


class ResolveReviewRequest(BaseModel):
    """Body for POST /reviews/{id}/resolve."""
    tenant_id: str = Field(..., min_length=1)
    action: ResolutionAction
    reviewed_by: str = Field(..., min_length=1)
    notes: Optional[str] = None


class ResolveReviewResponse(BaseModel):
    item: ReviewItemResponse
    corrective_audit_entry_id: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/pending", response_model=ReviewListResponse)
async def list_pending_reviews(
    tenant_id: str = Query(..., description="Tenant whose queue to list"),
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=500),
    max_priority: Optional[int] = Query(None, ge=1, le=5, description="Only items at or above this urgency"),
    manager: ReviewQueueManager = Depends(get_review_manager),
) -> ReviewListResponse:
    """Pending items, most urgent first."""
    if max_priority is not None:
        items = manager.get_by_priority(tenant_id, max_priority, skip=skip, take=take)
    else:
        items = manager.get_pending(tenant_id, skip=skip, take=take)

    return ReviewListResponse(
        items=[ReviewItemResponse.from_item(i) for i in items],
        total_pending=manager.pending_count(tenant_id),
        skip=skip,
        take=take,
    )


@router.get("", response_model=ReviewPageResponse)
async def list_reviews(
    tenant_id: str = Query(...),
    status: Optional[ReviewStatus] = Query(None, description="Only items in this status"),
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=500),
    manager: ReviewQueueManager = Depends(get_review_manager),
) -> ReviewPageResponse:
    """Items of every status, or one, in queue order."""
    items = manager.list_items(tenant_id, status=status, skip=skip, take=take)
    return ReviewPageResponse(
        items=[ReviewItemResponse.from_item(i) for i in items],
        status=status.value if status else None,
        skip=skip,
        take=take,
    )


@router.get("/stats", response_model=ReviewStatsResponse)
async def review_stats(
    tenant_id: str = Query(...),
    manager: ReviewQueueManager = Depends(get_review_manager),
) -> ReviewStatsResponse:
    stats = manager.get_stats(tenant_id)
    return ReviewStatsResponse(
        tenant_id=stats.tenant_id,
        total_count=stats.total_count,
        pending_count=stats.pending_count,
        resolved_count=stats.resolved_count,
        by_status=stats.by_status,
        pending_by_priority=stats.pending_by_priority,
        average_match_score=stats.average_match_score,
    )


@router.get("/{review_item_id}", response_model=ReviewItemResponse)
async def get_review_item(
    review_item_id: str,
    tenant_id: str = Query(...),
    manager: ReviewQueueManager = Depends(get_review_manager),
) -> ReviewItemResponse:
    item = manager.get_item(tenant_id, review_item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Review item {review_item_id} not found")
    return ReviewItemResponse.from_item(item)


@router.post("/{review_item_id}/resolve", response_model=ResolveReviewResponse)
async def resolve_review(
    review_item_id: str,
    request: ResolveReviewRequest,
    manager: ReviewQueueManager = Depends(get_review_manager),
) -> ResolveReviewResponse:
    """Resolve a pending item.

    Returns 404 for an unknown item and 409 when the item is no longer
    Pending; the 409 detail carries the current status and reviewer.
    """
    try:
        result = manager.resolve(
            request.tenant_id,
            review_item_id,
            request.action,
            request.reviewed_by,
            request.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if isinstance(result, ReviewNotFound):
        raise HTTPException(status_code=404, detail=f"Review item {review_item_id} not found")
    if isinstance(result, AlreadyResolved):
        raise HTTPException(
            status_code=409,
            detail={
                "message": f"Review item {review_item_id} is already resolved",
                "status": result.item.status.value,
                "reviewed_by": result.item.reviewed_by,
            },
        )

    return ResolveReviewResponse(
        item=ReviewItemResponse.from_item(result.item),
        corrective_audit_entry_id=result.corrective_audit_entry_id,
    )
