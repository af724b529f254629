"""Similarity Calculators - pure, stateless field comparisons.

Each calculator is total over optional inputs: a missing signal resolves to a
documented neutral value instead of raising, so absence is weaker evidence than
an active mismatch.

Usage:
    from similarity import jaro_winkler_similarity, haversine_km, price_similarity

    jaro_winkler_similarity("MARTHA", "MARHTA")          # ≈ 0.961
    haversine_km(43.6532, -79.3832, 49.2827, -123.1207)  # ≈ 3,360 km
    price_similarity(25000, 25750)                       # 10% tier
"""

from similarity.strings import (
    TitleAlgorithm,
    levenshtein_distance,
    levenshtein_similarity,
    jaro_similarity,
    jaro_winkler_similarity,
    ngram_similarity,
    vehicle_attribute_score,
    title_similarity,
    normalize_vin,
    vin_similarity,
)
from similarity.image_hash import (
    HashComparison,
    HashSetComparison,
    hamming_distance,
    hash_similarity,
    are_similar,
    compare_hash_sets,
)
from similarity.location import (
    LocationSignal,
    haversine_km,
    coordinate_similarity,
    normalize_postal_code,
    postal_code_similarity,
    combined_location_similarity,
)
from similarity.numeric import (
    percentage_similarity,
    absolute_similarity,
    price_tier_percent,
    price_similarity,
    mileage_similarity,
)

__all__ = [
    # Strings
    "TitleAlgorithm",
    "levenshtein_distance",
    "levenshtein_similarity",
    "jaro_similarity",
    "jaro_winkler_similarity",
    "ngram_similarity",
    "vehicle_attribute_score",
    "title_similarity",
    "normalize_vin",
    "vin_similarity",
    # Image hashes
    "HashComparison",
    "HashSetComparison",
    "hamming_distance",
    "hash_similarity",
    "are_similar",
    "compare_hash_sets",
    # Location
    "LocationSignal",
    "haversine_km",
    "coordinate_similarity",
    "normalize_postal_code",
    "postal_code_similarity",
    "combined_location_similarity",
    # Numeric
    "percentage_similarity",
    "absolute_similarity",
    "price_tier_percent",
    "price_similarity",
    "mileage_similarity",
]
