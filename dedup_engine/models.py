"""
Decision Engine Models

Defines data structures for:
- Confidence tiers and match decisions
- Per-field score breakdowns and the scorer's MatchScore
- DuplicateMatch records
- DecisionRecord (what gets committed per pair) and DecisionOutcome
"""

import json
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.audit.entries import AuditDecision, AuditEntry, AuditReason
from review_queue.models import ReviewItem


class ConfidenceLevel(str, Enum):
    """Descriptive tier for a composite score (highest first)."""
    EXACT = "Exact"
    VERY_HIGH = "VeryHigh"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    VERY_LOW = "VeryLow"


class MatchDecision(str, Enum):
    """Automatic outcome for a candidate pair."""
    NEW_LISTING = "NewListing"
    DUPLICATE = "Duplicate"
    NEAR_MATCH = "NearMatch"

    @property
    def audit_decision(self) -> AuditDecision:
        return AuditDecision(self.value)


# =============================================================================
# Scoring Models
# =============================================================================

class ScoreBreakdown(BaseModel):
    """Per-field sub-scores. None means the field contributed no signal."""
    title: Optional[float] = None
    vin: Optional[float] = None
    image: Optional[float] = None
    price: Optional[float] = None
    mileage: Optional[float] = None
    location: Optional[float] = None
    reason: Optional[str] = Field(None, description="Short explanation of the outcome")

    def defined_scores(self) -> Dict[str, float]:
        return {
            name: value
            for name, value in (
                ("title", self.title),
                ("vin", self.vin),
                ("image", self.image),
                ("price", self.price),
                ("mileage", self.mileage),
                ("location", self.location),
            )
            if value is not None and math.isfinite(value)
        }


@dataclass
class MatchScore:
    """
    Scorer output for one pair.

    Attributes:
        overall_score: Composite in [0, 1]; None for key matches/non-matches
        breakdown: Per-field sub-scores
        reason: Audit reason implied by the scoring path
        confidence: Tier of overall_score (Exact for key matches)
        key_match: True when an authoritative key decided a match
        key_non_match: True when require_vin_match rejected the pair outright
        image_gate_failed: require_image_match set and no image sub-score cleared
            the image threshold
        applied_weights: Weights of the fields that contributed to the composite
    """
    overall_score: Optional[float]
    breakdown: ScoreBreakdown
    reason: AuditReason
    confidence: ConfidenceLevel
    key_match: bool = False
    key_non_match: bool = False
    image_gate_failed: bool = False
    applied_weights: Dict[str, float] = field(default_factory=dict)

    @property
    def is_key_decision(self) -> bool:
        return self.key_match or self.key_non_match

    def breakdown_json(self) -> str:
        payload = self.breakdown.model_dump()
        payload["weights"] = dict(self.applied_weights)
        if self.image_gate_failed:
            payload["image_gate_failed"] = True
        return json.dumps(payload, sort_keys=True)


# =============================================================================
# Persisted Records
# =============================================================================

class DuplicateMatch(BaseModel):
    """A pair that cleared the review threshold.

    Immutable except for human confirmation and review linking.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Match identifier")
    tenant_id: str
    source_listing_id: str
    target_listing_id: str
    overall_score: float = Field(..., ge=0.0, le=1.0)
    confidence: ConfidenceLevel
    breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    detected_at: datetime = Field(default_factory=datetime.utcnow)
    is_confirmed: bool = False
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    review_item_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def involves(self, listing_a: str, listing_b: str) -> bool:
        """True if this match covers the pair in either order."""
        return {self.source_listing_id, self.target_listing_id} == {listing_a, listing_b}

    def confirm(self, confirmed_by: str, confirmed_at: Optional[datetime] = None) -> None:
        self.is_confirmed = True
        self.confirmed_by = confirmed_by
        self.confirmed_at = confirmed_at or datetime.utcnow()

    def link_to_review(self, review_item_id: str) -> None:
        self.review_item_id = review_item_id


@dataclass
class DecisionRecord:
    """Everything written for one evaluated pair, committed atomically.

    new_match is a DuplicateMatch created by this evaluation; an existing match
    that was reused is carried in `match` with new_match False.
    """
    audit_entry: AuditEntry
    match: Optional[DuplicateMatch] = None
    new_match: bool = False
    review_item: Optional[ReviewItem] = None


@dataclass
class DecisionOutcome:
    """Result of evaluating one candidate pair."""
    decision: MatchDecision
    reason: AuditReason
    score: MatchScore
    audit_entry: AuditEntry
    match: Optional[DuplicateMatch] = None
    review_item: Optional[ReviewItem] = None
    applied_rule_id: Optional[str] = None

    @property
    def confidence_score(self) -> Optional[float]:
        return self.audit_entry.confidence_score

    def to_dict(self) -> Dict:
        return {
            "decision": self.decision.value,
            "reason": self.reason.value,
            "confidence": self.score.confidence.value,
            "confidence_score": self.confidence_score,
            "audit_entry_id": self.audit_entry.id,
            "duplicate_match_id": self.match.id if self.match else None,
            "review_item_id": self.review_item.id if self.review_item else None,
            "applied_rule_id": self.applied_rule_id,
        }


