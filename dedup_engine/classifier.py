"""Confidence tiers and threshold decisions.

Tiers are descriptive only; the decision comes from the effective
thresholds and gates.
"""

from typing import List, Optional, Tuple

from dedup_engine.models import ConfidenceLevel, MatchDecision
from review_queue.models import review_priority

# Inclusive lower bounds, highest first
CONFIDENCE_BANDS: List[Tuple[float, ConfidenceLevel]] = [
    (0.98, ConfidenceLevel.EXACT),
    (0.90, ConfidenceLevel.VERY_HIGH),
    (0.80, ConfidenceLevel.HIGH),
    (0.70, ConfidenceLevel.MEDIUM),
    (0.50, ConfidenceLevel.LOW),
]


def classify_confidence(score: Optional[float]) -> ConfidenceLevel:
    """Map a composite score to its confidence tier.

    None (no composite) is VeryLow.
    """
    if score is None:
        return ConfidenceLevel.VERY_LOW
    for minimum, level in CONFIDENCE_BANDS:
        if score >= minimum:
            return level
    return ConfidenceLevel.VERY_LOW


def determine_decision(
    score: float,
    auto_threshold: float,
    review_threshold: float,
    image_gate_failed: bool = False,
) -> MatchDecision:
    """
    Apply thresholds to a composite score.

    - score >= auto_threshold → Duplicate (NearMatch if the image gate failed)
    - review_threshold <= score < auto_threshold → NearMatch
    - otherwise → NewListing

    Args:
        score: Composite score in [0, 1]
        auto_threshold: Effective overall match threshold
        review_threshold: Effective review threshold
        image_gate_failed: require_image_match set and not satisfied

    Returns:
        MatchDecision
    """
    if score >= auto_threshold:
        return MatchDecision.NEAR_MATCH if image_gate_failed else MatchDecision.DUPLICATE
    if score >= review_threshold:
        return MatchDecision.NEAR_MATCH
    return MatchDecision.NEW_LISTING


__all__ = [
    "CONFIDENCE_BANDS",
    "classify_confidence",
    "determine_decision",
    "review_priority",
]
