"""Deduplication activities.

Temporal activities that evaluate candidate pairs and resolve review items
against the SQLite stores at DEDUP_DB_PATH. Inputs and outputs are plain
dataclasses; listings cross the workflow boundary as dicts.

Retries belong to the workflow's RetryPolicy. CollaboratorUnavailableError is
left to propagate (retryable); validation failures are listed as
non-retryable by name.
"""

import time
from dataclasses import dataclass
from typing import Optional

from temporalio import activity

from core.models import CandidatePair, Listing
from core.observability.logging import (
    log_activity_complete,
    log_activity_error,
    log_activity_start,
    with_correlation,
)
from core.observability.metrics import (
    record_activity_completed,
    record_activity_failed,
    record_activity_started,
)
from dedup_engine.services import get_services
from review_queue.models import (
    AlreadyResolved,
    ResolutionAction,
    Resolved,
    ReviewNotFound,
)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class EvaluatePairInput:
    """Input for evaluate_candidate_pair activity.

    Attributes:
        source: Serialized Listing (the incoming listing)
        target: Serialized Listing (the existing listing)
        batch_id: Batch the pair belongs to, for log correlation
    """
    source: dict
    target: dict
    batch_id: Optional[str] = None


@dataclass
class EvaluatePairOutput:
    """Output from evaluate_candidate_pair activity.

    Attributes:
        decision: NewListing, Duplicate or NearMatch
        reason: Audit reason (VinMatch, FuzzyMatch, ...)
        confidence: Confidence tier
        confidence_score: Composite score, None for key decisions
        audit_entry_id: Audit entry written for the pair
        duplicate_match_id: Match created or reused, if any
        review_item_id: Review item enqueued, if any
        applied_rule_id: Dealer rule applied, if any
    """
    source_listing_id: str
    target_listing_id: str
    decision: str
    reason: str
    confidence: str
    confidence_score: Optional[float]
    audit_entry_id: str
    duplicate_match_id: Optional[str] = None
    review_item_id: Optional[str] = None
    applied_rule_id: Optional[str] = None


@dataclass
class ResolveReviewInput:
    """Input for resolve_review_item activity.

    Attributes:
        action: confirm_duplicate, confirm_not_duplicate or skip
    """
    tenant_id: str
    review_item_id: str
    action: str
    reviewed_by: str
    notes: Optional[str] = None


@dataclass
class ResolveReviewOutput:
    """Output from resolve_review_item activity.

    Attributes:
        outcome: resolved, already_resolved or not_found
        status: Review item status after the call (None if not found)
    """
    review_item_id: str
    outcome: str
    status: Optional[str] = None
    corrective_audit_entry_id: Optional[str] = None


# =============================================================================
# evaluate_candidate_pair Activity
# =============================================================================

@activity.defn
async def evaluate_candidate_pair(input: EvaluatePairInput) -> EvaluatePairOutput:
    """
    Score, classify and commit one candidate pair.

    Raises:
        ValidationError: Malformed listing payload (non-retryable)
        ValueError: Cross-tenant or self pair (non-retryable)
        CollaboratorUnavailableError: Store failure (retryable)
    """
    activity_name = "evaluate_candidate_pair"
    start = time.time()
    record_activity_started(activity_name)

    pair = CandidatePair(
        source=Listing.model_validate(input.source),
        target=Listing.model_validate(input.target),
    )
    info = activity.info()

    with with_correlation(
        batch_id=input.batch_id,
        workflow_id=info.workflow_id,
        workflow_run_id=info.workflow_run_id,
        activity_id=info.activity_id,
        activity_name=activity_name,
    ):
        log_activity_start(activity_name, source_listing_id=pair.source.id, target_listing_id=pair.target.id)
        try:
            outcome = get_services().engine.evaluate_pair(pair)
        except Exception as e:
            record_activity_failed(activity_name, str(e))
            log_activity_error(activity_name, str(e), error_type=type(e).__name__)
            raise

        duration_ms = (time.time() - start) * 1000
        record_activity_completed(activity_name, duration_ms)
        log_activity_complete(
            activity_name,
            duration_ms=duration_ms,
            decision=outcome.decision.value,
            reason=outcome.reason.value,
        )

    return EvaluatePairOutput(
        source_listing_id=pair.source.id,
        target_listing_id=pair.target.id,
        decision=outcome.decision.value,
        reason=outcome.reason.value,
        confidence=outcome.score.confidence.value,
        confidence_score=outcome.confidence_score,
        audit_entry_id=outcome.audit_entry.id,
        duplicate_match_id=outcome.match.id if outcome.match else None,
        review_item_id=outcome.review_item.id if outcome.review_item else None,
        applied_rule_id=outcome.applied_rule_id,
    )


# =============================================================================
# resolve_review_item Activity
# =============================================================================

@activity.defn
async def resolve_review_item(input: ResolveReviewInput) -> ResolveReviewOutput:
    """
    Apply a reviewer's decision to a pending review item.

    Double resolution is not an error: the output reports already_resolved.
    """
    activity_name = "resolve_review_item"
    start = time.time()
    record_activity_started(activity_name)
    action = ResolutionAction(input.action)

    with with_correlation(tenant_id=input.tenant_id, activity_name=activity_name):
        log_activity_start(
            activity_name,
            review_item_id=input.review_item_id,
            action=action.value,
            reviewed_by=input.reviewed_by,
        )
        try:
            result = get_services().review_manager.resolve(
                input.tenant_id,
                input.review_item_id,
                action,
                input.reviewed_by,
                input.notes,
            )
        except Exception as e:
            record_activity_failed(activity_name, str(e))
            log_activity_error(activity_name, str(e), error_type=type(e).__name__)
            raise

        if isinstance(result, Resolved):
            output = ResolveReviewOutput(
                review_item_id=input.review_item_id,
                outcome="resolved",
                status=result.item.status.value,
                corrective_audit_entry_id=result.corrective_audit_entry_id,
            )
        elif isinstance(result, AlreadyResolved):
            output = ResolveReviewOutput(
                review_item_id=input.review_item_id,
                outcome="already_resolved",
                status=result.item.status.value,
            )
        elif isinstance(result, ReviewNotFound):
            output = ResolveReviewOutput(review_item_id=input.review_item_id, outcome="not_found")
        else:
            raise TypeError(f"Unexpected resolution result: {type(result).__name__}")

        duration_ms = (time.time() - start) * 1000
        record_activity_completed(activity_name, duration_ms)
        log_activity_complete(activity_name, duration_ms=duration_ms, outcome=output.outcome)

    return output
