"""
Similarity Calculator Tests

Covers the pure field comparisons used by the scorer:
1. String distances (Levenshtein, Jaro-Winkler, n-gram, composite titles)
2. VIN comparison with OCR folding and partial matches
3. Price and mileage proximity
4. Location proximity (haversine, postal codes, combined signals)
5. Perceptual image-hash comparison
"""

import pytest


class TestStringSimilarity:
    """Edit-distance and set-based string comparisons."""

    def test_levenshtein_classic_example(self):
        from similarity import levenshtein_distance, levenshtein_similarity
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_levenshtein_is_case_insensitive_and_handles_none(self):
        from similarity import levenshtein_distance, levenshtein_similarity
        assert levenshtein_distance("CAMRY", "camry") == 0
        assert levenshtein_distance(None, "abc") == 3
        assert levenshtein_similarity(None, None) == 1.0

    def test_jaro_winkler_reference_value(self):
        from similarity import jaro_winkler_similarity
        assert jaro_winkler_similarity("MARTHA", "MARHTA") == pytest.approx(0.9611, abs=1e-4)

    def test_jaro_winkler_empty_inputs(self):
        from similarity import jaro_winkler_similarity
        assert jaro_winkler_similarity("", "") == 1.0
        assert jaro_winkler_similarity("abc", None) == 0.0

    def test_ngram_similarity(self):
        from similarity import ngram_similarity
        assert ngram_similarity("camry", "camry") == 1.0
        assert ngram_similarity("ab", "cd") == 0.0
        assert 0.0 < ngram_similarity("camry le", "camry se") < 1.0

    def test_ngram_rejects_non_positive_size(self):
        from similarity import ngram_similarity
        with pytest.raises(ValueError):
            ngram_similarity("abc", "abd", n=0)

    def test_vehicle_attribute_score(self):
        from similarity import vehicle_attribute_score
        assert vehicle_attribute_score([(2020, 2020), ("Toyota", "toyota"), ("Camry", None)]) == 1.0
        assert vehicle_attribute_score([(2020, 2019), ("Toyota", "Toyota")]) == 0.5
        assert vehicle_attribute_score([(None, 2020), ("", "Toyota")]) == 0.0

    def test_title_similarity_algorithms(self):
        from similarity import TitleAlgorithm, title_similarity, jaro_winkler_similarity
        a, b = "2020 Toyota Camry LE", "2020 Toyota Camry SE"

        assert title_similarity(a, a) == pytest.approx(1.0)
        assert title_similarity(a, a, attribute_score=1.0) == pytest.approx(1.0)
        assert title_similarity(a, b, TitleAlgorithm.JARO_WINKLER) == jaro_winkler_similarity(a, b)

        composite = title_similarity(a, b)
        with_attributes = title_similarity(a, b, attribute_score=1.0)
        assert with_attributes > composite


class TestVinSimilarity:
    VIN = "1HGCM82633A004352"

    def test_absent_vin_is_no_signal(self):
        from similarity import vin_similarity
        assert vin_similarity(self.VIN, None) is None
        assert vin_similarity("  ", self.VIN) is None

    def test_ocr_confusions_fold_to_exact(self):
        from similarity import vin_similarity
        assert vin_similarity(self.VIN, "1HGCM82633AOO4352") == 1.0

    def test_normalization_ignores_case_spaces_hyphens(self):
        from similarity import normalize_vin
        assert normalize_vin("1hgcm-82633 a004352") == self.VIN

    def test_matching_serial_section_scores_point_nine(self):
        from similarity import vin_similarity
        assert vin_similarity(self.VIN, "5YJSA1E2Z3A004352") == 0.9

    def test_single_typo_uses_edit_similarity(self):
        from similarity import vin_similarity
        assert vin_similarity(self.VIN, "1HGCM82633A004353") == pytest.approx(16 / 17)

    def test_unrelated_vins_score_zero(self):
        from similarity import vin_similarity
        assert vin_similarity(self.VIN, "WBA3A5C55CF256789") == 0.0


class TestNumericSimilarity:
    """Price tiers and mileage tolerances."""

    def test_price_tiers(self):
        from decimal import Decimal
        from similarity import price_tier_percent
        assert price_tier_percent(9000) == Decimal("15")
        assert price_tier_percent(25000) == Decimal("10")
        assert price_tier_percent(40000) == Decimal("7")
        assert price_tier_percent(60000) == Decimal("5")

    def test_price_similarity_within_tier(self):
        from similarity import price_similarity
        # 2.96% apart with a 10% tier
        assert price_similarity(25000, 25750) == pytest.approx(0.704, abs=1e-3)

    def test_price_beyond_tier_is_zero(self):
        from similarity import price_similarity
        assert price_similarity(60000, 66000) == 0.0

    def test_config_tolerance_widens_tier(self):
        from similarity import price_similarity
        assert price_similarity(60000, 66000, min_tolerance_percent=20) > 0.0

    def test_missing_values(self):
        from similarity import price_similarity, mileage_similarity, percentage_similarity
        assert price_similarity(None, None) == 1.0
        assert price_similarity(100, None) == 0.0
        assert mileage_similarity(None, 5000) == 0.0
        assert percentage_similarity(0, 0) == 1.0

    def test_mileage_flat_tolerance(self):
        from similarity import mileage_similarity
        assert mileage_similarity(45000, 46000) == pytest.approx(0.8)

    def test_mileage_relative_and_configured_tolerance(self):
        from similarity import mileage_similarity
        # 10% of 120k is 12k; a 20k gap is out of range
        assert mileage_similarity(100000, 120000) == 0.0
        # 30% of 120k is 36k
        assert mileage_similarity(100000, 120000, min_tolerance_percent=30) == pytest.approx(1 - 20000 / 36000)

    def test_non_finite_values_count_as_missing(self):
        from decimal import Decimal
        from similarity import mileage_similarity, percentage_similarity, price_similarity
        nan = float("nan")
        inf = float("inf")

        assert percentage_similarity(inf, 1.0) == 0.0
        assert percentage_similarity(nan, nan) == 1.0
        assert price_similarity(Decimal("NaN"), Decimal("25000")) == 0.0
        assert price_similarity(Decimal("Infinity"), None) == 1.0
        assert mileage_similarity(nan, None) == 1.0
        assert mileage_similarity(inf, 45000) == 0.0

    def test_non_finite_tolerance_is_zero(self):
        from similarity import mileage_similarity, percentage_similarity, price_similarity
        assert percentage_similarity(100, 101, float("nan")) == 0.0
        assert percentage_similarity(100, 100, float("inf")) == 1.0
        # Tier percent still applies when the configured floor is not finite
        assert price_similarity(25000, 25750, min_tolerance_percent=float("nan")) == pytest.approx(0.704, abs=1e-3)
        assert mileage_similarity(45000, 46000, min_tolerance_percent=float("inf")) == pytest.approx(0.8)


class TestLocationSimilarity:

    def test_haversine_toronto_vancouver(self):
        from similarity import haversine_km
        distance = haversine_km(43.6532, -79.3832, 49.2827, -123.1207)
        assert 3340 < distance < 3380

    def test_coordinate_similarity(self):
        from similarity import coordinate_similarity
        assert coordinate_similarity(43.65, -79.38, 43.65, -79.38) == 1.0
        assert coordinate_similarity(None, -79.38, 43.65, -79.38) == 0.5
        assert coordinate_similarity(43.6532, -79.3832, 49.2827, -123.1207, 100) == 0.0

    @pytest.mark.parametrize("a,b,expected", [
        ("M5V 3L9", "m5v3l9", 1.0),
        ("M5V 3L9", "M5V 1A1", 0.8),
        ("90210", "90211", 0.7),
        ("90210", "10001", 0.2),
        ("", "90210", 0.5),
    ])
    def test_postal_code_similarity(self, a, b, expected):
        from similarity import postal_code_similarity
        assert postal_code_similarity(a, b) == expected

    def test_combined_uses_available_signals(self):
        from similarity import LocationSignal, combined_location_similarity

        assert combined_location_similarity(LocationSignal(), LocationSignal()) == 0.5
        assert combined_location_similarity(
            LocationSignal(city="Toronto"), LocationSignal(city="toronto")
        ) == 1.0
        # Postal on one side only contributes its neutral 0.5 at weight 2
        assert combined_location_similarity(
            LocationSignal(city="Toronto", postal_code="M5V 3L9"),
            LocationSignal(city="Toronto"),
        ) == pytest.approx(2 / 3)

    def test_non_finite_coordinates_are_neutral(self):
        from similarity import coordinate_similarity
        nan = float("nan")
        assert coordinate_similarity(nan, 0, 0, 0) == 0.5
        assert coordinate_similarity(43.65, float("inf"), 43.65, -79.38) == 0.5
        # Unusable distance limit falls back to the default 50 km
        assert coordinate_similarity(43.65, -79.38, 43.65, -79.38, nan) == 1.0

    def test_combined_ignores_non_finite_coordinates(self):
        import math
        from similarity import LocationSignal, combined_location_similarity

        score = combined_location_similarity(
            LocationSignal(latitude=float("nan"), longitude=-79.38, city="Toronto"),
            LocationSignal(latitude=43.65, longitude=-79.38, city="Toronto"),
        )
        assert math.isfinite(score)
        assert score == 1.0


class TestImageHashSimilarity:

    def test_hamming_distance(self):
        from similarity import hamming_distance
        comparison = hamming_distance("abcd", "ABCE")
        assert comparison.comparable
        assert comparison.distance == 1
        assert comparison.similarity == 0.75

    def test_different_lengths_are_incomparable(self):
        from similarity import hamming_distance, hash_similarity, are_similar
        assert not hamming_distance("ABCD", "ABCDE").comparable
        assert hash_similarity("ABCD", "ABCDE") is None
        assert not are_similar("ABCD", "ABCDE")

    def test_missing_hash_scores(self):
        from similarity import hash_similarity
        assert hash_similarity(None, "") == 0.5
        assert hash_similarity("ABCD", None) == 0.3

    def test_compare_hash_sets(self):
        from similarity import compare_hash_sets
        result = compare_hash_sets(
            ["F0F0F0F0F0F0F0F0", "0000000000000000"],
            ["F0F0F0F0F0F0F0F1", "1234567890ABCDEF"],
        )
        assert result.first_count == 2
        assert result.comparable_pairs == 4
        assert result.best_similarity == pytest.approx(15 / 16)
        assert result.is_majority_match

    def test_incomparable_sets(self):
        from similarity import compare_hash_sets
        result = compare_hash_sets(["ABCD"], ["ABCDE"])
        assert not result.is_comparable
        assert result.best_similarity is None
