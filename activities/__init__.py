"""Activity definitions module."""

from activities.deduplicate import (
    evaluate_candidate_pair,
    resolve_review_item,
    EvaluatePairInput,
    EvaluatePairOutput,
    ResolveReviewInput,
    ResolveReviewOutput,
)

__all__ = [
    "evaluate_candidate_pair",
    "resolve_review_item",
    "EvaluatePairInput",
    "EvaluatePairOutput",
    "ResolveReviewInput",
    "ResolveReviewOutput",
]
