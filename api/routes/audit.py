"""Audit trail and accuracy endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.services.deps import get_accuracy_service, get_audit_trail
from core.audit.accuracy import AccuracyMetricsService, TrendGranularity
from core.audit.entries import (
    AuditDecision,
    AuditEntry,
    AuditQueryFilter,
    AuditQueryResult,
    AuditReason,
)
from core.audit.trail import AuditTrail


router = APIRouter()


class CorrectDecisionRequest(BaseModel):
    """Body for POST /audit/entries/{id}/correct."""
    tenant_id: str = Field(..., min_length=1)
    false_positive: bool = Field(..., description="True: wrongly flagged duplicate. False: missed duplicate")
    corrected_by: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


def _check_range(from_date: Optional[datetime], to_date: Optional[datetime]) -> None:
    if from_date and to_date and from_date > to_date:
        raise HTTPException(status_code=422, detail="from_date must not be after to_date")


@router.get("/listings/{listing_id}", response_model=List[AuditEntry])
async def get_listing_history(
    listing_id: str,
    tenant_id: str = Query(...),
    trail: AuditTrail = Depends(get_audit_trail),
) -> List[AuditEntry]:
    """Every decision involving the listing on either side, newest first."""
    return trail.get_entries_for_listing(tenant_id, listing_id)


@router.get("/entries", response_model=AuditQueryResult)
async def query_entries(
    tenant_id: str = Query(...),
    decision: Optional[AuditDecision] = Query(None),
    reason: Optional[AuditReason] = Query(None),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    was_automatic: Optional[bool] = Query(None),
    is_false_positive: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    take: int = Query(100, ge=1, le=1000),
    trail: AuditTrail = Depends(get_audit_trail),
) -> AuditQueryResult:
    _check_range(from_date, to_date)
    query_filter = AuditQueryFilter(
        decision=decision,
        reason=reason,
        from_date=from_date,
        to_date=to_date,
        was_automatic=was_automatic,
        is_false_positive=is_false_positive,
        skip=skip,
        take=take,
    )
    return trail.query(tenant_id, query_filter)


@router.post("/entries/{entry_id}/correct", response_model=AuditEntry)
async def correct_entry(
    entry_id: str,
    request: CorrectDecisionRequest,
    trail: AuditTrail = Depends(get_audit_trail),
) -> AuditEntry:
    """Flag an automatic decision as a false positive or false negative."""
    correction = trail.correct_decision(
        request.tenant_id,
        entry_id,
        request.false_positive,
        request.corrected_by,
        request.reason,
    )
    if correction is None:
        raise HTTPException(status_code=404, detail=f"Audit entry {entry_id} not found")
    return correction


@router.get("/stats")
async def get_stats(
    tenant_id: str = Query(...),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    trail: AuditTrail = Depends(get_audit_trail),
) -> Dict[str, Any]:
    """False-positive/false-negative counts with decision and reason breakdowns."""
    _check_range(from_date, to_date)
    return trail.get_false_positive_stats(tenant_id, from_date, to_date).to_dict()


@router.get("/accuracy")
async def get_accuracy(
    tenant_id: str = Query(...),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    by_reason: bool = Query(False, description="Include per-reason metrics"),
    accuracy: AccuracyMetricsService = Depends(get_accuracy_service),
) -> Dict[str, Any]:
    """Precision, recall, F1 and accuracy over automatic decisions."""
    _check_range(from_date, to_date)
    result = accuracy.calculate_metrics(tenant_id, from_date, to_date).to_dict()
    if by_reason:
        result["by_reason"] = {
            reason: metrics.to_dict()
            for reason, metrics in accuracy.get_metrics_by_reason(tenant_id, from_date, to_date).items()
        }
    return result


@router.get("/accuracy/trend")
async def get_accuracy_trend(
    tenant_id: str = Query(...),
    from_date: datetime = Query(...),
    to_date: datetime = Query(...),
    granularity: TrendGranularity = Query(TrendGranularity.DAILY),
    accuracy: AccuracyMetricsService = Depends(get_accuracy_service),
) -> List[Dict[str, Any]]:
    _check_range(from_date, to_date)
    points = accuracy.get_accuracy_trend(tenant_id, from_date, to_date, granularity)
    return [
        {"period_start": p.period_start.isoformat(), **p.metrics.to_dict()}
        for p in points
    ]


@router.get("/accuracy/thresholds")
async def get_threshold_analysis(
    tenant_id: str = Query(...),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    accuracy: AccuracyMetricsService = Depends(get_accuracy_service),
) -> List[Dict[str, Any]]:
    """Precision and cumulative recall at each candidate auto threshold."""
    _check_range(from_date, to_date)
    return [
        {
            "threshold": a.threshold,
            "total_at_or_above": a.total_at_or_above,
            "true_positives": a.true_positives,
            "false_positives": a.false_positives,
            "precision": a.precision,
            "cumulative_recall": a.cumulative_recall,
        }
        for a in accuracy.get_threshold_analysis(tenant_id, from_date, to_date)
    ]
