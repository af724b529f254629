"""
Match Scorer

Combines the similarity calculators into one composite score:
1. Authoritative keys (VIN, source site + external id) short-circuit scoring
2. Each field with a defined signal gets a sub-score
3. Composite = weighted mean over defined sub-scores with a positive weight
4. The image gate is evaluated when require_image_match is set
"""

import math
from typing import Dict, Optional, Tuple

from core.audit.entries import AuditReason
from core.models import Listing
from dedup_config.models import EffectiveConfig
from dedup_engine.classifier import classify_confidence
from dedup_engine.models import ConfidenceLevel, MatchScore, ScoreBreakdown
from similarity import (
    LocationSignal,
    combined_location_similarity,
    compare_hash_sets,
    mileage_similarity,
    normalize_vin,
    price_similarity,
    title_similarity,
    vehicle_attribute_score,
    vin_similarity,
)
from similarity.image_hash import BOTH_ABSENT_SCORE, ONE_ABSENT_SCORE


def _location(listing: Listing) -> LocationSignal:
    return LocationSignal(
        latitude=listing.latitude,
        longitude=listing.longitude,
        postal_code=listing.postal_code,
        city=listing.city,
        province=listing.province,
    )


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def image_score(source: Listing, target: Listing) -> Optional[float]:
    """Best photo similarity between two listings.

    Both without photos → 0.5, one without → 0.3, photos present but no
    comparable hash pair (length mismatch) → None.
    """
    comparison = compare_hash_sets(source.image_hashes, target.image_hashes)
    if comparison.first_count == 0 and comparison.second_count == 0:
        return BOTH_ABSENT_SCORE
    if comparison.first_count == 0 or comparison.second_count == 0:
        return ONE_ABSENT_SCORE
    if not comparison.is_comparable:
        return None
    return comparison.best_similarity


def composite_score(scores: Dict[str, float], weights: Dict[str, float]) -> Tuple[float, Dict[str, float]]:
    """Weighted mean of defined sub-scores, clamped to [0, 1].

    NaN or infinite sub-scores are undefined and contribute no weight.

    Returns:
        (score, weights actually applied); score is 0.0 when no weight applies
    """
    applied = {
        name: weights.get(name, 0.0)
        for name, value in scores.items()
        if value is not None and math.isfinite(value) and weights.get(name, 0.0) > 0
    }
    total_weight = sum(applied.values())
    if total_weight <= 0:
        return 0.0, {}

    score = sum(scores[name] * weight for name, weight in applied.items()) / total_weight
    return min(1.0, max(0.0, score)), applied


class MatchScorer:
    """
    Stateless scorer for candidate pairs.

    Usage:
        scorer = MatchScorer()
        result = scorer.score(source, target, effective_config)
        result.overall_score, result.breakdown.title
    """

    def score(self, source: Listing, target: Listing, config: EffectiveConfig) -> MatchScore:
        key_result = self._check_keys(source, target, config)
        if key_result is not None:
            return key_result

        breakdown = self._field_scores(source, target, config)
        overall, applied = composite_score(breakdown.defined_scores(), config.weights())

        image_gate_failed = config.require_image_match and (
            breakdown.image is None or breakdown.image < config.image_hash_similarity_threshold
        )

        reason = self._fuzzy_reason(breakdown, config)
        fields = ", ".join(sorted(applied)) or "none"
        breakdown.reason = f"Weighted score {overall:.3f} over {fields}"
        if image_gate_failed:
            breakdown.reason += "; required image match not met"

        return MatchScore(
            overall_score=overall,
            breakdown=breakdown,
            reason=reason,
            confidence=classify_confidence(overall),
            image_gate_failed=image_gate_failed,
            applied_weights=applied,
        )

    # =========================================================================
    # Authoritative keys
    # =========================================================================

    def _check_keys(self, source: Listing, target: Listing, config: EffectiveConfig) -> Optional[MatchScore]:
        vin_a = normalize_vin(source.vin)
        vin_b = normalize_vin(target.vin)

        if vin_a and vin_b and vin_a == vin_b:
            return MatchScore(
                overall_score=None,
                breakdown=ScoreBreakdown(vin=1.0, reason=f"VIN match: {vin_a}"),
                reason=AuditReason.VIN_MATCH,
                confidence=ConfidenceLevel.EXACT,
                key_match=True,
            )

        if (
            not _blank(source.external_id)
            and not _blank(source.source_site)
            and source.external_id.strip() == (target.external_id or "").strip()
            and source.source_site.strip().lower() == (target.source_site or "").strip().lower()
        ):
            return MatchScore(
                overall_score=None,
                breakdown=ScoreBreakdown(
                    reason=f"External id match: {source.source_site}/{source.external_id}",
                ),
                reason=AuditReason.EXTERNAL_ID_MATCH,
                confidence=ConfidenceLevel.EXACT,
                key_match=True,
            )

        if config.require_vin_match and vin_a and vin_b:
            return MatchScore(
                overall_score=None,
                breakdown=ScoreBreakdown(vin=0.0, reason="VIN mismatch with VIN match required"),
                reason=AuditReason.NO_MATCH,
                confidence=ConfidenceLevel.VERY_LOW,
                key_non_match=True,
            )

        return None

    # =========================================================================
    # Field sub-scores
    # =========================================================================

    def _field_scores(self, source: Listing, target: Listing, config: EffectiveConfig) -> ScoreBreakdown:
        title = None
        if not (_blank(source.title) and _blank(target.title)):
            attributes = vehicle_attribute_score([
                (source.year, target.year),
                (source.make, target.make),
                (source.model, target.model),
            ])
            title = title_similarity(source.title, target.title, config.title_algorithm, attributes)

        return ScoreBreakdown(
            title=title,
            vin=vin_similarity(source.vin, target.vin),
            image=image_score(source, target),
            price=price_similarity(source.price, target.price, config.price_tolerance_percent),
            mileage=mileage_similarity(source.mileage, target.mileage, config.mileage_tolerance_percent),
            location=combined_location_similarity(
                _location(source),
                _location(target),
                config.max_distance_km,
            ),
        )

    def _fuzzy_reason(self, breakdown: ScoreBreakdown, config: EffectiveConfig) -> AuditReason:
        image_ok = breakdown.image is not None and breakdown.image >= config.image_hash_similarity_threshold
        title_ok = breakdown.title is not None and breakdown.title >= config.title_similarity_threshold
        if image_ok and title_ok:
            return AuditReason.COMBINED_MATCH
        if image_ok:
            return AuditReason.IMAGE_MATCH
        return AuditReason.FUZZY_MATCH
