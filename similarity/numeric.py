"""Numeric proximity for price and mileage.

NaN and infinite inputs count as absent values; a non-finite tolerance counts
as zero tolerance.
"""

import math
from decimal import Decimal
from typing import Optional, Union

Number = Union[int, float, Decimal]

MILEAGE_FLAT_TOLERANCE = 5000
MILEAGE_RELATIVE_TOLERANCE = Decimal("0.1")

# (upper bound of average price, max percent difference)
PRICE_TIERS = [
    (Decimal("10000"), Decimal("15")),
    (Decimal("30000"), Decimal("10")),
    (Decimal("50000"), Decimal("7")),
]
TOP_TIER_PERCENT = Decimal("5")


def _dec(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _finite(value: Optional[Number]) -> Optional[Number]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    return value if math.isfinite(value) else None


def _tolerance(value: Number) -> Decimal:
    finite = _finite(value)
    return _dec(finite) if finite is not None else Decimal(0)


def percentage_similarity(
    value_a: Optional[Number],
    value_b: Optional[Number],
    max_difference_percent: Number = 10,
) -> float:
    """Similarity decaying linearly with percent difference from the average.

    - both absent → 1.0, one absent → 0.0
    - equal values → 1.0 (whatever the tolerance), average zero → 0.0
    - difference >= max_difference_percent → 0.0
    """
    value_a, value_b = _finite(value_a), _finite(value_b)
    if value_a is None and value_b is None:
        return 1.0
    if value_a is None or value_b is None:
        return 0.0

    a = _dec(value_a)
    b = _dec(value_b)
    max_percent = _tolerance(max_difference_percent)

    if a == b:
        return 1.0

    average = (a + b) / 2
    if average == 0 or max_percent <= 0:
        return 0.0

    percent_difference = abs(a - b) / abs(average) * 100
    if percent_difference >= max_percent:
        return 0.0

    return float(1 - percent_difference / max_percent)


def absolute_similarity(
    value_a: Optional[Number],
    value_b: Optional[Number],
    max_difference: Number,
) -> float:
    """Linear decay to 0 at an absolute difference of max_difference."""
    value_a, value_b = _finite(value_a), _finite(value_b)
    if value_a is None and value_b is None:
        return 1.0
    if value_a is None or value_b is None:
        return 0.0

    difference = abs(_dec(value_a) - _dec(value_b))
    limit = _tolerance(max_difference)
    if limit <= 0 or difference >= limit:
        return 1.0 if difference == 0 else 0.0

    return float(1 - difference / limit)


def price_tier_percent(average_price: Number) -> Decimal:
    """Allowed percent difference for a price bracket.

    Cheaper vehicles tolerate proportionally larger swings:
    <$10k → 15%, <$30k → 10%, <$50k → 7%, otherwise 5%.
    """
    average = _dec(average_price)
    for upper_bound, percent in PRICE_TIERS:
        if average < upper_bound:
            return percent
    return TOP_TIER_PERCENT


def price_similarity(
    price_a: Optional[Number],
    price_b: Optional[Number],
    min_tolerance_percent: Number = 0,
) -> float:
    """Tiered percentage similarity for asking prices.

    Args:
        price_a: First price
        price_b: Second price
        min_tolerance_percent: Floor on the tier percent (dealer/config tolerance)
    """
    price_a, price_b = _finite(price_a), _finite(price_b)
    if price_a is None and price_b is None:
        return 1.0
    if price_a is None or price_b is None:
        return 0.0

    average = (_dec(price_a) + _dec(price_b)) / 2
    max_percent = max(price_tier_percent(average), _tolerance(min_tolerance_percent))
    return percentage_similarity(price_a, price_b, max_percent)


def mileage_tolerance(mileage_a: int, mileage_b: int, min_tolerance_percent: Number = 0) -> int:
    """Larger of 5,000 units, 10% of the higher reading, or the configured percent."""
    higher = _dec(max(mileage_a, mileage_b))
    return max(
        MILEAGE_FLAT_TOLERANCE,
        int(higher * MILEAGE_RELATIVE_TOLERANCE),
        int(higher * _tolerance(min_tolerance_percent) / 100),
    )


def mileage_similarity(
    mileage_a: Optional[int],
    mileage_b: Optional[int],
    min_tolerance_percent: Number = 0,
) -> float:
    """Odometer similarity with linear decay to 0 at the tolerance."""
    mileage_a, mileage_b = _finite(mileage_a), _finite(mileage_b)
    if mileage_a is None and mileage_b is None:
        return 1.0
    if mileage_a is None or mileage_b is None:
        return 0.0

    tolerance = mileage_tolerance(mileage_a, mileage_b, min_tolerance_percent)
    return absolute_similarity(mileage_a, mileage_b, tolerance)
