"""Dealer rule applicability conditions.

A rule's condition is a tagged union discriminated on `kind`. Each variant
carries only the filters it needs:

    {"kind": "always"}
    {"kind": "price_range", "min_price": 50000}
    {"kind": "year_range", "min_year": 2018, "max_year": 2022}
    {"kind": "make_model", "make": "Toyota", "model": "Camry"}
    {"kind": "combined", "min_price": 20000, "make": "Honda"}

Range checks pass when the listing lacks the attribute; make/model filters
compare case-insensitively and only when set.
"""

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from core.models import Listing


def _price_in_range(price: Optional[Decimal], min_price: Optional[Decimal], max_price: Optional[Decimal]) -> bool:
    if price is None:
        return True
    if min_price is not None and price < min_price:
        return False
    if max_price is not None and price > max_price:
        return False
    return True


def _year_in_range(year: Optional[int], min_year: Optional[int], max_year: Optional[int]) -> bool:
    if year is None:
        return True
    if min_year is not None and year < min_year:
        return False
    if max_year is not None and year > max_year:
        return False
    return True


def _same_text(value: Optional[str], expected: Optional[str]) -> bool:
    if not expected:
        return True
    return (value or "").strip().lower() == expected.strip().lower()


def _make_model_matches(listing: Listing, make: Optional[str], model: Optional[str]) -> bool:
    return _same_text(listing.make, make) and _same_text(listing.model, model)


def _check_bounds(low, high, name: str):
    if low is not None and high is not None and low > high:
        raise ValueError(f"min_{name} must not exceed max_{name}")


class AlwaysCondition(BaseModel):
    """Applies to every listing from the dealer."""
    kind: Literal["always"] = "always"

    def matches(self, listing: Listing) -> bool:
        return True


class PriceRangeCondition(BaseModel):
    kind: Literal["price_range"] = "price_range"
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def _bounds(self):
        _check_bounds(self.min_price, self.max_price, "price")
        return self

    def matches(self, listing: Listing) -> bool:
        return _price_in_range(listing.price, self.min_price, self.max_price)


class YearRangeCondition(BaseModel):
    kind: Literal["year_range"] = "year_range"
    min_year: Optional[int] = None
    max_year: Optional[int] = None

    @model_validator(mode="after")
    def _bounds(self):
        _check_bounds(self.min_year, self.max_year, "year")
        return self

    def matches(self, listing: Listing) -> bool:
        return _year_in_range(listing.year, self.min_year, self.max_year)


class MakeModelCondition(BaseModel):
    kind: Literal["make_model"] = "make_model"
    make: Optional[str] = None
    model: Optional[str] = None

    def matches(self, listing: Listing) -> bool:
        return _make_model_matches(listing, self.make, self.model)


class CombinedCondition(BaseModel):
    """Price range, year range and make/model must all pass."""
    kind: Literal["combined"] = "combined"
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None

    @model_validator(mode="after")
    def _bounds(self):
        _check_bounds(self.min_price, self.max_price, "price")
        _check_bounds(self.min_year, self.max_year, "year")
        return self

    def matches(self, listing: Listing) -> bool:
        return (
            _price_in_range(listing.price, self.min_price, self.max_price)
            and _year_in_range(listing.year, self.min_year, self.max_year)
            and _make_model_matches(listing, self.make, self.model)
        )


RuleCondition = Annotated[
    Union[
        AlwaysCondition,
        PriceRangeCondition,
        YearRangeCondition,
        MakeModelCondition,
        CombinedCondition,
    ],
    Field(discriminator="kind"),
]

_condition_adapter = TypeAdapter(RuleCondition)


def parse_condition(data) -> RuleCondition:
    """Validate a dict (or JSON-decoded payload) into a condition variant."""
    return _condition_adapter.validate_python(data)
