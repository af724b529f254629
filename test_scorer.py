"""
Match Scorer and Classifier Tests

Validates how a candidate pair becomes a score and a decision:
1. Authoritative keys (VIN, source site + external id) short-circuit scoring
2. Composite score over defined sub-scores only
3. Image gate and fuzzy reasons
4. Confidence tiers, threshold decisions and review priorities
"""

import itertools
import math
from decimal import Decimal
from types import SimpleNamespace

import pytest


VIN = "1HGCM82633A004352"
HASH = "F0F0F0F0F0F0F0F0"


def make_listing(listing_id, **overrides):
    from core.models import Listing
    data = {"id": listing_id, "tenant_id": "t-1", "dealer_id": "dealer-9"}
    data.update(overrides)
    return Listing(**data)


def default_config(**overrides):
    from dedup_config import DeduplicationConfig, EffectiveConfig
    return EffectiveConfig.from_config(DeduplicationConfig(tenant_id="t-1", **overrides))


def camry_pair():
    source = make_listing("L-1", title="2020 Toyota Camry LE", price=Decimal("25000"))
    target = make_listing("L-2", title="2020 Toyota Camry SE", price=Decimal("25750"))
    return source, target


class TestKeyMatches:

    def test_vin_match_ignores_formatting(self):
        from core.audit.entries import AuditReason
        from dedup_engine import ConfidenceLevel, MatchScorer
        source = make_listing("L-1", vin=VIN, title="Camry")
        target = make_listing("L-2", vin="1hgcm-82633-a004352", title="Completely different")

        result = MatchScorer().score(source, target, default_config())

        assert result.key_match
        assert result.reason == AuditReason.VIN_MATCH
        assert result.confidence == ConfidenceLevel.EXACT
        assert result.overall_score is None
        assert result.breakdown.vin == 1.0

    def test_external_id_match_requires_same_site(self):
        from core.audit.entries import AuditReason
        from dedup_engine import MatchScorer
        scorer = MatchScorer()
        source = make_listing("L-1", external_id="A-77", source_site="AutoTrader")
        same_site = make_listing("L-2", external_id="A-77", source_site="autotrader ")
        other_site = make_listing("L-3", external_id="A-77", source_site="Kijiji")

        assert scorer.score(source, same_site, default_config()).reason == AuditReason.EXTERNAL_ID_MATCH
        assert not scorer.score(source, other_site, default_config()).key_match

    def test_required_vin_mismatch_is_key_non_match(self):
        from core.audit.entries import AuditReason
        from dedup_engine import ConfidenceLevel, MatchScorer
        source = make_listing("L-1", vin=VIN, title="2020 Honda Accord")
        target = make_listing("L-2", vin="WBA3A5C55CF256789", title="2020 Honda Accord")

        result = MatchScorer().score(source, target, default_config(require_vin_match=True))

        assert result.key_non_match
        assert result.reason == AuditReason.NO_MATCH
        assert result.confidence == ConfidenceLevel.VERY_LOW

    def test_required_vin_with_missing_vin_falls_back_to_fuzzy(self):
        from dedup_engine import MatchScorer
        source = make_listing("L-1", vin=VIN, title="2020 Honda Accord")
        target = make_listing("L-2", title="2020 Honda Accord")

        result = MatchScorer().score(source, target, default_config(require_vin_match=True))

        assert not result.is_key_decision
        assert result.breakdown.vin is None
        assert result.overall_score is not None


class TestCompositeScore:

    def test_camry_near_match(self):
        from dedup_engine import ConfidenceLevel, MatchScorer
        source, target = camry_pair()

        result = MatchScorer().score(source, target, default_config())

        assert result.breakdown.title == pytest.approx(0.908, abs=0.005)
        assert result.breakdown.price == pytest.approx(0.704, abs=0.001)
        assert result.breakdown.image == 0.5
        assert result.breakdown.mileage == 1.0
        assert result.breakdown.location == 0.5
        # No VIN on either side: excluded from the composite
        assert result.breakdown.vin is None
        assert "vin" not in result.applied_weights
        assert sum(result.applied_weights.values()) == pytest.approx(0.7)
        assert result.overall_score == pytest.approx(0.746, abs=0.003)
        assert result.confidence == ConfidenceLevel.MEDIUM

    def test_mileage_difference_lowers_score(self):
        from dedup_engine import MatchScorer
        source, target = camry_pair()
        source = source.model_copy(update={"mileage": 45000})
        target = target.model_copy(update={"mileage": 46000})

        result = MatchScorer().score(source, target, default_config())

        assert result.breakdown.mileage == pytest.approx(0.8)
        assert result.overall_score == pytest.approx(0.718, abs=0.003)

    def test_structured_attributes_raise_title_score(self):
        from dedup_engine import MatchScorer
        source, target = camry_pair()
        attributes = {"year": 2020, "make": "Toyota", "model": "Camry"}
        source = source.model_copy(update=attributes)
        target = target.model_copy(update=attributes)

        result = MatchScorer().score(source, target, default_config())

        assert result.breakdown.title == pytest.approx(0.965, abs=0.005)

    def test_identical_listings_are_combined_match(self):
        from core.audit.entries import AuditReason
        from dedup_engine import MatchScorer
        fields = dict(
            title="2019 Honda Civic EX",
            price=Decimal("20000"),
            mileage=30000,
            postal_code="M5V 3L9",
            image_hashes=[HASH],
        )
        result = MatchScorer().score(make_listing("L-1", **fields), make_listing("L-2", **fields), default_config())

        assert result.overall_score == pytest.approx(1.0)
        assert result.reason == AuditReason.COMBINED_MATCH

    def test_blank_titles_give_no_title_score(self):
        from dedup_engine import MatchScorer
        result = MatchScorer().score(
            make_listing("L-1", title="  ", price=Decimal("100")),
            make_listing("L-2", price=Decimal("100")),
            default_config(),
        )
        assert result.breakdown.title is None
        assert "title" not in result.applied_weights

    def test_incomparable_hashes_excluded(self):
        from dedup_engine.scorer import image_score
        source = make_listing("L-1", image_hashes=["ABCD"])
        target = make_listing("L-2", image_hashes=["ABCDE"])
        assert image_score(source, target) is None
        assert image_score(source, make_listing("L-3")) == 0.3
        assert image_score(make_listing("L-3"), make_listing("L-4")) == 0.5

    def test_composite_without_positive_weight(self):
        from dedup_engine import composite_score
        assert composite_score({"title": 0.9}, {"title": 0.0, "vin": 1.0}) == (0.0, {})

    def test_composite_is_weighted_mean_of_defined_scores(self):
        from dedup_engine import composite_score
        score, applied = composite_score({"title": 1.0, "price": 0.5}, {"title": 0.3, "price": 0.1, "vin": 0.6})
        assert score == pytest.approx((0.3 + 0.05) / 0.4)
        assert applied == {"title": 0.3, "price": 0.1}

    def test_image_gate(self):
        from dedup_engine import MatchScorer
        source, target = camry_pair()

        gated = MatchScorer().score(source, target, default_config(require_image_match=True))
        assert gated.image_gate_failed
        assert "image_gate_failed" in gated.breakdown_json()

        plain = MatchScorer().score(source, target, default_config())
        assert not plain.image_gate_failed


class TestClassifier:

    @pytest.mark.parametrize("score,level", [
        (None, "VeryLow"),
        (0.99, "Exact"),
        (0.90, "VeryHigh"),
        (0.85, "High"),
        (0.70, "Medium"),
        (0.55, "Low"),
        (0.10, "VeryLow"),
    ])
    def test_confidence_tiers(self, score, level):
        from dedup_engine import classify_confidence
        assert classify_confidence(score).value == level

    def test_threshold_decisions(self):
        from dedup_engine import MatchDecision, determine_decision
        assert determine_decision(0.80, 0.80, 0.70) == MatchDecision.DUPLICATE
        assert determine_decision(0.79, 0.80, 0.70) == MatchDecision.NEAR_MATCH
        assert determine_decision(0.70, 0.80, 0.70) == MatchDecision.NEAR_MATCH
        assert determine_decision(0.69, 0.80, 0.70) == MatchDecision.NEW_LISTING

    def test_failed_image_gate_caps_at_near_match(self):
        from dedup_engine import MatchDecision, determine_decision
        assert determine_decision(0.95, 0.80, 0.70, image_gate_failed=True) == MatchDecision.NEAR_MATCH

    @pytest.mark.parametrize("score,priority", [
        (0.95, 1), (0.87, 2), (0.80, 3), (0.76, 4), (0.72, 5),
    ])
    def test_review_priority(self, score, priority):
        from dedup_engine import review_priority
        assert review_priority(score) == priority


# Every subset of the scored fields, for the composite range sweep
FIELDS = ("title", "vin", "image", "price", "mileage", "location")
FIELD_SUBSETS = [
    subset
    for size in range(len(FIELDS) + 1)
    for subset in itertools.combinations(FIELDS, size)
]


class TestScoringProperties:

    def test_camry_fifty_km_apart(self):
        from dedup_engine import MatchDecision, MatchScorer, determine_decision
        source, target = camry_pair()
        # 0.45 degrees of latitude is just over 50 km
        source = source.model_copy(update={"latitude": 43.6532, "longitude": -79.3832})
        target = target.model_copy(update={"latitude": 44.1032, "longitude": -79.3832})
        config = default_config()

        result = MatchScorer().score(source, target, config)

        assert result.breakdown.location == 0.0
        assert result.overall_score == pytest.approx(0.711, abs=0.003)
        assert determine_decision(
            result.overall_score, config.overall_match_threshold, config.review_threshold
        ) == MatchDecision.NEAR_MATCH

    def test_vin_match_outweighs_conflicting_fields(self):
        from core.audit.entries import AuditReason
        from dedup_engine import MatchScorer
        vin = "1HGCM82633A123456"
        source = make_listing("L-1", vin=vin, year=2020, make="Honda", price=Decimal("30000"))
        target = make_listing("L-2", vin=vin, year=2018, make="Toyota", price=Decimal("35000"))

        result = MatchScorer().score(source, target, default_config())

        assert result.key_match
        assert result.reason == AuditReason.VIN_MATCH

    @pytest.mark.parametrize("auto,review", [(0.80, 0.70), (0.95, 0.50), (0.60, 0.60), (1.0, 0.0)])
    @pytest.mark.parametrize("gate", [False, True])
    def test_decision_is_monotonic_in_score(self, auto, review, gate):
        from dedup_engine import MatchDecision, determine_decision
        rank = {MatchDecision.NEW_LISTING: 0, MatchDecision.NEAR_MATCH: 1, MatchDecision.DUPLICATE: 2}

        ranks = [rank[determine_decision(step / 100, auto, review, gate)] for step in range(101)]

        assert ranks == sorted(ranks)

    def test_raising_a_sub_score_never_lowers_composite(self):
        from dedup_engine import composite_score
        weights = default_config().weights()
        base = {"title": 0.6, "price": 0.4, "image": 0.5, "location": 0.2}
        previous = composite_score(base, weights)[0]
        for value in (0.7, 0.8, 0.9, 1.0):
            current = composite_score(dict(base, title=value), weights)[0]
            assert current >= previous
            previous = current

    @pytest.mark.parametrize("subset", FIELD_SUBSETS, ids=lambda s: "+".join(s) or "none")
    @pytest.mark.parametrize("value", [0.0, 0.37, 1.0])
    def test_composite_in_unit_interval_for_any_fields(self, subset, value):
        from dedup_engine import composite_score
        weights = default_config().weights()

        score, applied = composite_score({name: value for name in subset}, weights)

        assert 0.0 <= score <= 1.0
        assert set(applied) == set(subset)
        if subset:
            assert score == pytest.approx(value)


class TestNonFiniteInputs:

    def test_nan_sub_score_is_undefined(self):
        from dedup_engine import composite_score
        score, applied = composite_score(
            {"title": 1.0, "location": float("nan"), "price": float("inf")},
            {"title": 0.25, "location": 0.05, "price": 0.10},
        )
        assert math.isfinite(score)
        assert score == 1.0
        assert applied == {"title": 0.25}

    def test_nan_coordinates_do_not_sink_identical_listings(self):
        from dedup_engine import MatchDecision, MatchScorer, determine_decision
        fields = dict(title="2019 Honda Civic EX", price=Decimal("20000"), longitude=-79.38)
        source = make_listing("L-1", latitude=float("nan"), **fields)
        target = make_listing("L-2", latitude=43.65, **fields)
        config = default_config()

        result = MatchScorer().score(source, target, config)

        assert result.breakdown.location == 0.5
        assert math.isfinite(result.overall_score)
        assert determine_decision(
            result.overall_score, config.overall_match_threshold, config.review_threshold
        ) == MatchDecision.DUPLICATE


class TestListingModel:

    def test_validates_from_attributes(self):
        from core.models import Listing
        row = SimpleNamespace(
            id="L-1",
            tenant_id="t-1",
            dealer_id=None,
            external_id=None,
            source_site=None,
            vin=VIN,
            title="2020 Toyota Camry LE",
            make=None,
            model=None,
            year=2020,
            price=Decimal("25000"),
            mileage=None,
            latitude=None,
            longitude=None,
            postal_code=None,
            city="Toronto",
            province=None,
            image_hashes=[HASH],
        )

        listing = Listing.model_validate(row)

        assert listing.vin == VIN
        assert listing.price == Decimal("25000")
        assert listing.image_hashes == [HASH]
