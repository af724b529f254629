"""String Distance Calculators.

Edit-distance and set-based similarity for listing titles and VINs:
- Levenshtein distance/similarity (dynamic-programming matrix)
- Jaro and Jaro-Winkler similarity (transpositions + common-prefix boost)
- Character n-gram Jaccard similarity
- Composite title similarity blending the above with vehicle attributes

All comparisons are case-insensitive. None is treated as the empty string.

Examples:
    levenshtein_distance("kitten", "sitting")   → 3
    jaro_winkler_similarity("MARTHA", "MARHTA") → 0.961
    ngram_similarity("camry", "camry")          → 1.0
"""

from enum import Enum
from typing import List, Optional, Set, Tuple


WINKLER_SCALING_FACTOR = 0.1
WINKLER_MAX_PREFIX = 4

PARTIAL_VIN_LENGTH = 8

# Characters commonly misread by OCR in VIN plates
VIN_OCR_FOLDS = {"O": "0", "I": "1", "Q": "0"}


class TitleAlgorithm(str, Enum):
    """Technique used to compare listing titles."""
    COMPOSITE = "composite"
    JARO_WINKLER = "jaro_winkler"
    LEVENSHTEIN = "levenshtein"
    NGRAM = "ngram"


# =============================================================================
# Levenshtein
# =============================================================================

def levenshtein_distance(source: Optional[str], target: Optional[str]) -> int:
    """Minimum number of single-character edits turning source into target.

    Args:
        source: First string
        target: Second string

    Returns:
        Edit distance (0 when equal, ignoring case)
    """
    if not source:
        return len(target or "")
    if not target:
        return len(source)

    source = source.lower()
    target = target.lower()

    rows = len(source) + 1
    cols = len(target) + 1
    matrix = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if source[i - 1] == target[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,
                matrix[i][j - 1] + 1,
                matrix[i - 1][j - 1] + cost,
            )

    return matrix[rows - 1][cols - 1]


def levenshtein_similarity(source: Optional[str], target: Optional[str]) -> float:
    """Levenshtein distance normalized to a 0-1 similarity."""
    max_length = max(len(source or ""), len(target or ""))
    if max_length == 0:
        return 1.0

    distance = levenshtein_distance(source or "", target or "")
    return 1.0 - distance / max_length


# =============================================================================
# Jaro / Jaro-Winkler
# =============================================================================

def jaro_similarity(source: str, target: str) -> float:
    """Jaro similarity of two (already lowercased) non-empty strings."""
    match_window = max(len(source), len(target)) // 2 - 1
    if match_window < 0:
        match_window = 0

    source_matched = [False] * len(source)
    target_matched = [False] * len(target)
    matches = 0

    for i, char in enumerate(source):
        start = max(0, i - match_window)
        end = min(i + match_window + 1, len(target))
        for j in range(start, end):
            if target_matched[j] or char != target[j]:
                continue
            source_matched[i] = True
            target_matched[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, char in enumerate(source):
        if not source_matched[i]:
            continue
        while not target_matched[k]:
            k += 1
        if char != target[k]:
            transpositions += 1
        k += 1

    return (
        matches / len(source)
        + matches / len(target)
        + (matches - transpositions / 2.0) / matches
    ) / 3.0


def jaro_winkler_similarity(source: Optional[str], target: Optional[str]) -> float:
    """Jaro similarity boosted by a shared prefix of up to 4 characters.

    Returns:
        1.0 when both are empty, 0.0 when exactly one is empty
    """
    if not source and not target:
        return 1.0
    if not source or not target:
        return 0.0

    source = source.lower()
    target = target.lower()

    jaro = jaro_similarity(source, target)

    prefix_length = 0
    for i in range(min(WINKLER_MAX_PREFIX, len(source), len(target))):
        if source[i] != target[i]:
            break
        prefix_length += 1

    return jaro + prefix_length * WINKLER_SCALING_FACTOR * (1 - jaro)


# =============================================================================
# N-gram Jaccard
# =============================================================================

def get_ngrams(text: str, n: int) -> Set[str]:
    """Character shingles of length n. Text shorter than n is one shingle."""
    if len(text) < n:
        return {text}
    return {text[i:i + n] for i in range(len(text) - n + 1)}


def ngram_similarity(source: Optional[str], target: Optional[str], n: int = 2) -> float:
    """Jaccard similarity over character n-gram sets."""
    if not source and not target:
        return 1.0
    if not source or not target:
        return 0.0
    if n < 1:
        raise ValueError(f"n-gram size must be >= 1, got {n}")

    source_grams = get_ngrams(source.lower(), n)
    target_grams = get_ngrams(target.lower(), n)

    union = source_grams | target_grams
    if not union:
        return 0.0
    return len(source_grams & target_grams) / len(union)


# =============================================================================
# Vehicle Title Similarity
# =============================================================================

def vehicle_attribute_score(pairs: List[Tuple[Optional[object], Optional[object]]]) -> float:
    """Mean exact-agreement over attribute pairs present on both sides.

    Strings compare case-insensitively. Attributes missing on either side are
    skipped; returns 0.0 when nothing is comparable.

    Args:
        pairs: [(year_a, year_b), (make_a, make_b), (model_a, model_b)]
    """
    scores = []
    for left, right in pairs:
        if left is None or right is None:
            continue
        if isinstance(left, str) and isinstance(right, str):
            if not left.strip() or not right.strip():
                continue
            scores.append(1.0 if left.strip().lower() == right.strip().lower() else 0.0)
        else:
            scores.append(1.0 if left == right else 0.0)

    return sum(scores) / len(scores) if scores else 0.0


def title_similarity(
    source: Optional[str],
    target: Optional[str],
    algorithm: TitleAlgorithm = TitleAlgorithm.COMPOSITE,
    attribute_score: float = 0.0,
) -> float:
    """Compare two listing titles with the configured technique.

    The composite blend weights structured attribute agreement over raw text
    when attributes are known:
    - with attributes: 0.6 * attributes + 0.25 * Jaro-Winkler + 0.15 * trigram
    - without:         0.6 * Jaro-Winkler + 0.4 * trigram

    Args:
        source: First title
        target: Second title
        algorithm: Which technique to apply
        attribute_score: Output of vehicle_attribute_score (composite only)

    Returns:
        Similarity from 0.0 to 1.0
    """
    if algorithm == TitleAlgorithm.JARO_WINKLER:
        return jaro_winkler_similarity(source, target)
    if algorithm == TitleAlgorithm.LEVENSHTEIN:
        return levenshtein_similarity(source, target)
    if algorithm == TitleAlgorithm.NGRAM:
        return ngram_similarity(source, target, 2)

    jw = jaro_winkler_similarity(source, target)
    trigram = ngram_similarity(source, target, 3)

    if attribute_score > 0:
        return attribute_score * 0.6 + jw * 0.25 + trigram * 0.15
    return jw * 0.6 + trigram * 0.4


# =============================================================================
# VIN Comparison
# =============================================================================

def normalize_vin(vin: Optional[str]) -> str:
    """Uppercase and strip spaces/hyphens. Returns "" for blank input."""
    if not vin:
        return ""
    return vin.upper().replace(" ", "").replace("-", "").strip()


def fold_vin(vin: str) -> str:
    """Fold OCR-confusable characters (O→0, I→1, Q→0) in a normalized VIN."""
    return "".join(VIN_OCR_FOLDS.get(c, c) for c in vin)


def vin_similarity(vin_a: Optional[str], vin_b: Optional[str]) -> Optional[float]:
    """Similarity of two VINs that are not byte-for-byte equal.

    Handles truncated or OCR-damaged VINs:
    - equal after OCR folding → 1.0
    - last 8 characters equal → 0.9 (the serial section is unique)
    - Levenshtein similarity above 0.9 → that similarity
    - otherwise 0.0

    Returns:
        None when either VIN is absent (no signal)
    """
    a = normalize_vin(vin_a)
    b = normalize_vin(vin_b)
    if not a or not b:
        return None

    a = fold_vin(a)
    b = fold_vin(b)
    if a == b:
        return 1.0

    if len(a) >= PARTIAL_VIN_LENGTH and len(b) >= PARTIAL_VIN_LENGTH:
        if a[-PARTIAL_VIN_LENGTH:] == b[-PARTIAL_VIN_LENGTH:]:
            return 0.9

    similarity = levenshtein_similarity(a, b)
    return similarity if similarity > 0.9 else 0.0
