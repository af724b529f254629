"""Perceptual image-hash comparison.

Hashes are fixed-length strings (typically 16 hex characters for a 64-bit
pHash). Two hashes are compared position by position; hashes of different
lengths cannot be compared and produce an explicit incomparable result rather
than a numeric sentinel.
"""

import math
from dataclasses import dataclass
from typing import List, Optional


DEFAULT_MAX_HAMMING_DISTANCE = 10
MAJORITY_THRESHOLD_RATIO = 0.5

# Neutral scores when hashes are missing
BOTH_ABSENT_SCORE = 0.5
ONE_ABSENT_SCORE = 0.3


@dataclass(frozen=True)
class HashComparison:
    """Result of comparing two hashes.

    When comparable is False, distance and length are None.
    """
    comparable: bool
    distance: Optional[int] = None
    length: Optional[int] = None

    @property
    def similarity(self) -> Optional[float]:
        if not self.comparable:
            return None
        if self.length == 0:
            return 1.0
        return 1.0 - self.distance / self.length


INCOMPARABLE = HashComparison(comparable=False)


def _clean(hash_value: Optional[str]) -> str:
    return (hash_value or "").strip().upper()


def hamming_distance(hash_a: Optional[str], hash_b: Optional[str]) -> HashComparison:
    """Count differing character positions between two equal-length hashes.

    Returns:
        HashComparison; incomparable when either hash is absent or lengths differ
    """
    a = _clean(hash_a)
    b = _clean(hash_b)
    if not a or not b or len(a) != len(b):
        return INCOMPARABLE

    distance = sum(1 for x, y in zip(a, b) if x != y)
    return HashComparison(comparable=True, distance=distance, length=len(a))


def hash_similarity(hash_a: Optional[str], hash_b: Optional[str]) -> Optional[float]:
    """Similarity of two hashes.

    Returns:
        0.5 when both are absent, 0.3 when one is absent, None when the
        lengths differ, otherwise 1 - distance / length
    """
    a = _clean(hash_a)
    b = _clean(hash_b)
    if not a and not b:
        return BOTH_ABSENT_SCORE
    if not a or not b:
        return ONE_ABSENT_SCORE

    return hamming_distance(a, b).similarity


def are_similar(
    hash_a: Optional[str],
    hash_b: Optional[str],
    max_distance: int = DEFAULT_MAX_HAMMING_DISTANCE,
) -> bool:
    """True when the hashes are comparable and within max_distance."""
    comparison = hamming_distance(hash_a, hash_b)
    return comparison.comparable and comparison.distance <= max_distance


# =============================================================================
# Hash Set Comparison
# =============================================================================

@dataclass
class HashSetComparison:
    """Comparison of two listings' photo hash sets."""
    first_count: int
    second_count: int
    matching_count: int = 0
    comparable_pairs: int = 0
    best_similarity: Optional[float] = None
    average_similarity: Optional[float] = None

    @property
    def is_majority_match(self) -> bool:
        """At least half of the first set found a similar hash in the second."""
        if self.first_count == 0:
            return False
        needed = math.ceil(self.first_count * MAJORITY_THRESHOLD_RATIO)
        return self.matching_count >= needed

    @property
    def is_comparable(self) -> bool:
        return self.comparable_pairs > 0


def compare_hash_sets(
    hashes_a: List[str],
    hashes_b: List[str],
    max_distance: int = DEFAULT_MAX_HAMMING_DISTANCE,
) -> HashSetComparison:
    """Compare every hash in the first set against the second set.

    For each hash in hashes_a, the best similarity across hashes_b is kept and
    the hash counts as matching if any hash in hashes_b is within max_distance.

    Args:
        hashes_a: Hashes of the first listing
        hashes_b: Hashes of the second listing
        max_distance: Maximum Hamming distance for a match

    Returns:
        HashSetComparison with counts and similarities
    """
    first = [h for h in hashes_a if _clean(h)]
    second = [h for h in hashes_b if _clean(h)]
    result = HashSetComparison(first_count=len(first), second_count=len(second))

    if not first or not second:
        return result

    best_per_hash = []
    for hash_a in first:
        best_for_hash = None
        found_match = False
        for hash_b in second:
            comparison = hamming_distance(hash_a, hash_b)
            if not comparison.comparable:
                continue
            result.comparable_pairs += 1
            similarity = comparison.similarity
            if best_for_hash is None or similarity > best_for_hash:
                best_for_hash = similarity
            if comparison.distance <= max_distance:
                found_match = True

        if found_match:
            result.matching_count += 1
        if best_for_hash is not None:
            best_per_hash.append(best_for_hash)

    if best_per_hash:
        result.best_similarity = max(best_per_hash)
        result.average_similarity = sum(best_per_hash) / len(best_per_hash)

    return result
