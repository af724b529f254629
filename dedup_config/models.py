"""Deduplication configuration models.

DeduplicationConfig holds a tenant's default thresholds, weights, tolerances
and feature flags. DealerDeduplicationRule overrides any subset of those for
listings from one dealer that satisfy its condition. EffectiveConfig is the
field-wise merge the scorer actually uses.

Scales:
- Config thresholds are scores in [0, 1].
- Rule thresholds are operator-facing percentages in [0, 100] (e.g.
  auto_match_threshold=95) and are divided by 100 when resolved.
- Weights are non-negative fractions on both; they need not sum to 1.

Invariants are enforced at write time: construction fails with a pydantic
ValidationError, mutator methods with ConfigValidationError. Readers never
re-validate.
"""

import math
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.errors import ConfigValidationError
from dedup_config.conditions import AlwaysCondition, PriceRangeCondition, RuleCondition
from similarity.strings import TitleAlgorithm


WEIGHT_FIELDS = (
    "title_weight",
    "vin_weight",
    "image_hash_weight",
    "price_weight",
    "mileage_weight",
    "location_weight",
)

THRESHOLD_FIELDS = (
    "title_similarity_threshold",
    "image_hash_similarity_threshold",
    "overall_match_threshold",
    "review_threshold",
)


# =============================================================================
# Validation helpers
# =============================================================================

def _check_unit_interval(name: str, value: Optional[float], upper: float = 1.0) -> None:
    if value is None:
        return
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ConfigValidationError(f"{name} must be a finite number", field=name)
    if value < 0 or value > upper:
        raise ConfigValidationError(f"{name} must be between 0 and {upper:g}, got {value}", field=name)


def _check_weight(name: str, value: Optional[float]) -> None:
    if value is None:
        return
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ConfigValidationError(f"{name} must be a finite number", field=name)
    if value < 0:
        raise ConfigValidationError(f"{name} must not be negative, got {value}", field=name)


def _check_non_negative(name: str, value: Optional[float]) -> None:
    _check_weight(name, value)


def _check_ordering(review: Optional[float], auto: Optional[float], review_name: str, auto_name: str) -> None:
    if review is not None and auto is not None and review > auto:
        raise ConfigValidationError(
            f"{review_name} ({review}) must not exceed {auto_name} ({auto})",
            field=review_name,
        )


def validate_config_values(values: Dict) -> None:
    """Validate a complete set of DeduplicationConfig scoring values.

    Raises:
        ConfigValidationError: On the first invalid value
    """
    for name in THRESHOLD_FIELDS:
        _check_unit_interval(name, values[name])

    for name in WEIGHT_FIELDS:
        _check_weight(name, values[name])
    if sum(values[name] for name in WEIGHT_FIELDS) <= 0:
        raise ConfigValidationError("At least one weight must be positive", field="weights")

    _check_ordering(values["review_threshold"], values["overall_match_threshold"],
                    "review_threshold", "overall_match_threshold")

    _check_non_negative("price_tolerance_percent", values["price_tolerance_percent"])
    _check_non_negative("mileage_tolerance_percent", values["mileage_tolerance_percent"])

    max_distance = values["max_distance_km"]
    if not isinstance(max_distance, (int, float)) or not math.isfinite(max_distance) or max_distance <= 0:
        raise ConfigValidationError("max_distance_km must be a positive finite number", field="max_distance_km")


# =============================================================================
# DeduplicationConfig
# =============================================================================

class DeduplicationConfig(BaseModel):
    """Tenant-level deduplication defaults.

    Never hard-deleted; toggled inactive with set_active(False).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Config identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    name: str = Field(default="Default", description="Display name")
    is_active: bool = True

    # Thresholds (0-1)
    title_similarity_threshold: float = 0.85
    image_hash_similarity_threshold: float = 0.90
    overall_match_threshold: float = 0.80
    review_threshold: float = 0.70

    # Weights (normalized by the sum actually applied)
    title_weight: float = 0.25
    vin_weight: float = 0.30
    image_hash_weight: float = 0.20
    price_weight: float = 0.10
    mileage_weight: float = 0.10
    location_weight: float = 0.05

    # Feature flags
    require_vin_match: bool = False
    require_image_match: bool = False

    # Tolerances
    price_tolerance_percent: float = 5.0
    mileage_tolerance_percent: float = 3.0
    max_distance_km: float = 100.0

    title_algorithm: TitleAlgorithm = TitleAlgorithm.COMPOSITE

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _validate(self):
        validate_config_values(self.scoring_values())
        return self

    def scoring_values(self) -> Dict:
        """Threshold, weight, tolerance and flag fields as a dict."""
        return {
            **{name: getattr(self, name) for name in THRESHOLD_FIELDS},
            **{name: getattr(self, name) for name in WEIGHT_FIELDS},
            "require_vin_match": self.require_vin_match,
            "require_image_match": self.require_image_match,
            "price_tolerance_percent": self.price_tolerance_percent,
            "mileage_tolerance_percent": self.mileage_tolerance_percent,
            "max_distance_km": self.max_distance_km,
            "title_algorithm": self.title_algorithm,
        }

    def _apply(self, changes: Dict) -> None:
        """Validate the merged values, then assign all of them."""
        changes = {k: v for k, v in changes.items() if v is not None}
        merged = self.scoring_values()
        merged.update(changes)
        validate_config_values(merged)

        for name, value in changes.items():
            setattr(self, name, value)
        self.updated_at = datetime.utcnow()

    def update_thresholds(
        self,
        title_similarity_threshold: Optional[float] = None,
        image_hash_similarity_threshold: Optional[float] = None,
        overall_match_threshold: Optional[float] = None,
        review_threshold: Optional[float] = None,
    ) -> None:
        """Change any subset of thresholds. Unset arguments keep their value.

        Raises:
            ConfigValidationError: Out-of-range, non-finite, or review > overall
        """
        self._apply({
            "title_similarity_threshold": title_similarity_threshold,
            "image_hash_similarity_threshold": image_hash_similarity_threshold,
            "overall_match_threshold": overall_match_threshold,
            "review_threshold": review_threshold,
        })

    def update_weights(
        self,
        title_weight: Optional[float] = None,
        vin_weight: Optional[float] = None,
        image_hash_weight: Optional[float] = None,
        price_weight: Optional[float] = None,
        mileage_weight: Optional[float] = None,
        location_weight: Optional[float] = None,
    ) -> None:
        """Change any subset of weights.

        Raises:
            ConfigValidationError: Negative/non-finite weight or all weights zero
        """
        self._apply({
            "title_weight": title_weight,
            "vin_weight": vin_weight,
            "image_hash_weight": image_hash_weight,
            "price_weight": price_weight,
            "mileage_weight": mileage_weight,
            "location_weight": location_weight,
        })

    def update_tolerances(
        self,
        price_tolerance_percent: Optional[float] = None,
        mileage_tolerance_percent: Optional[float] = None,
        max_distance_km: Optional[float] = None,
    ) -> None:
        self._apply({
            "price_tolerance_percent": price_tolerance_percent,
            "mileage_tolerance_percent": mileage_tolerance_percent,
            "max_distance_km": max_distance_km,
        })

    def update_feature_flags(
        self,
        require_vin_match: Optional[bool] = None,
        require_image_match: Optional[bool] = None,
    ) -> None:
        self._apply({
            "require_vin_match": require_vin_match,
            "require_image_match": require_image_match,
        })

    def set_title_algorithm(self, algorithm: TitleAlgorithm) -> None:
        self._apply({"title_algorithm": TitleAlgorithm(algorithm)})

    def set_active(self, is_active: bool) -> None:
        self.is_active = is_active
        self.updated_at = datetime.utcnow()


# =============================================================================
# DealerDeduplicationRule
# =============================================================================

class DealerDeduplicationRule(BaseModel):
    """Per-dealer conditional override of the tenant config.

    Every override field is optional; None means "inherit from the config".
    Threshold overrides are percentages (0-100).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Rule identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    dealer_id: str = Field(..., description="Dealer the rule applies to")
    rule_name: str = Field(..., min_length=1, description="Display name")
    description: Optional[str] = None
    is_active: bool = True
    priority: int = Field(default=0, description="Higher wins")

    condition: RuleCondition = Field(default_factory=AlwaysCondition)

    # Threshold overrides, percent scale
    auto_match_threshold: Optional[float] = None
    review_threshold: Optional[float] = None
    title_similarity_threshold: Optional[float] = None
    image_hash_similarity_threshold: Optional[float] = None

    # Weight overrides, fractions
    title_weight: Optional[float] = None
    vin_weight: Optional[float] = None
    image_hash_weight: Optional[float] = None
    price_weight: Optional[float] = None
    mileage_weight: Optional[float] = None
    location_weight: Optional[float] = None

    # Tolerance overrides
    price_tolerance_percent: Optional[float] = None
    mileage_tolerance_percent: Optional[float] = None
    max_distance_km: Optional[float] = None

    # Flag overrides
    require_vin_match: Optional[bool] = None
    require_image_match: Optional[bool] = None
    title_algorithm: Optional[TitleAlgorithm] = None

    # Usage
    times_applied: int = 0
    last_applied_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _validate(self):
        self._check(self.model_dump())
        return self

    @staticmethod
    def _check(values: Dict) -> None:
        for name in ("auto_match_threshold", "review_threshold",
                     "title_similarity_threshold", "image_hash_similarity_threshold"):
            _check_unit_interval(name, values.get(name), upper=100.0)
        _check_ordering(values.get("review_threshold"), values.get("auto_match_threshold"),
                        "review_threshold", "auto_match_threshold")

        for name in WEIGHT_FIELDS:
            _check_weight(name, values.get(name))

        _check_non_negative("price_tolerance_percent", values.get("price_tolerance_percent"))
        _check_non_negative("mileage_tolerance_percent", values.get("mileage_tolerance_percent"))
        max_distance = values.get("max_distance_km")
        if max_distance is not None:
            _check_weight("max_distance_km", max_distance)
            if max_distance <= 0:
                raise ConfigValidationError("max_distance_km must be positive", field="max_distance_km")

    def _set(self, changes: Dict, updated_by: Optional[str] = None) -> None:
        """Replace the given override fields (None clears an override)."""
        merged = self.model_dump()
        merged.update(changes)
        self._check(merged)

        for name, value in changes.items():
            setattr(self, name, value)
        self._touch(updated_by)

    def _touch(self, updated_by: Optional[str] = None) -> None:
        self.updated_at = datetime.utcnow()
        if updated_by:
            self.updated_by = updated_by

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def create(
        cls,
        tenant_id: str,
        dealer_id: str,
        rule_name: str,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> "DealerDeduplicationRule":
        return cls(
            tenant_id=tenant_id,
            dealer_id=dealer_id,
            rule_name=rule_name,
            description=description,
            created_by=created_by,
        )

    @classmethod
    def strict_vin_only(cls, tenant_id: str, dealer_id: str, created_by: Optional[str] = None):
        """Listings only merge on identical VINs."""
        rule = cls.create(tenant_id, dealer_id, "Strict VIN-Only Matching",
                          "Only matches listings by exact VIN match", created_by)
        rule.require_vin_match = True
        rule.priority = 100
        return rule

    @classmethod
    def relaxed(cls, tenant_id: str, dealer_id: str, created_by: Optional[str] = None):
        """Lower thresholds for trusted dealers with clean data."""
        rule = cls.create(tenant_id, dealer_id, "Relaxed Matching",
                          "Lower thresholds for trusted dealers with good data quality", created_by)
        rule.auto_match_threshold = 75.0
        rule.review_threshold = 50.0
        rule.priority = 50
        return rule

    @classmethod
    def high_value(
        cls,
        tenant_id: str,
        dealer_id: str,
        min_price: Decimal,
        created_by: Optional[str] = None,
    ):
        """Stricter thresholds and heavier image weight above a price."""
        rule = cls.create(tenant_id, dealer_id, "High-Value Vehicle Matching",
                          f"Stricter matching for vehicles priced above ${min_price:,.0f}", created_by)
        rule.condition = PriceRangeCondition(min_price=min_price)
        rule.auto_match_threshold = 95.0
        rule.review_threshold = 80.0
        rule.image_hash_weight = 0.30
        rule.priority = 75
        return rule

    # =========================================================================
    # Setters
    # =========================================================================

    def set_thresholds(
        self,
        auto_match_threshold: Optional[float] = None,
        review_threshold: Optional[float] = None,
        title_similarity_threshold: Optional[float] = None,
        image_hash_similarity_threshold: Optional[float] = None,
        updated_by: Optional[str] = None,
    ) -> None:
        """Replace threshold overrides (percent). None clears an override.

        Raises:
            ConfigValidationError: Outside [0, 100] or review > auto
        """
        self._set({
            "auto_match_threshold": auto_match_threshold,
            "review_threshold": review_threshold,
            "title_similarity_threshold": title_similarity_threshold,
            "image_hash_similarity_threshold": image_hash_similarity_threshold,
        }, updated_by)

    def set_weights(
        self,
        title_weight: Optional[float] = None,
        vin_weight: Optional[float] = None,
        image_hash_weight: Optional[float] = None,
        price_weight: Optional[float] = None,
        mileage_weight: Optional[float] = None,
        location_weight: Optional[float] = None,
        updated_by: Optional[str] = None,
    ) -> None:
        self._set({
            "title_weight": title_weight,
            "vin_weight": vin_weight,
            "image_hash_weight": image_hash_weight,
            "price_weight": price_weight,
            "mileage_weight": mileage_weight,
            "location_weight": location_weight,
        }, updated_by)

    def set_tolerances(
        self,
        price_tolerance_percent: Optional[float] = None,
        mileage_tolerance_percent: Optional[float] = None,
        max_distance_km: Optional[float] = None,
        updated_by: Optional[str] = None,
    ) -> None:
        self._set({
            "price_tolerance_percent": price_tolerance_percent,
            "mileage_tolerance_percent": mileage_tolerance_percent,
            "max_distance_km": max_distance_km,
        }, updated_by)

    def set_flags(
        self,
        require_vin_match: Optional[bool] = None,
        require_image_match: Optional[bool] = None,
        title_algorithm: Optional[TitleAlgorithm] = None,
        updated_by: Optional[str] = None,
    ) -> None:
        self._set({
            "require_vin_match": require_vin_match,
            "require_image_match": require_image_match,
            "title_algorithm": title_algorithm,
        }, updated_by)

    def set_condition(self, condition: RuleCondition, updated_by: Optional[str] = None) -> None:
        self.condition = condition
        self._touch(updated_by)

    def set_priority(self, priority: int, updated_by: Optional[str] = None) -> None:
        self.priority = priority
        self._touch(updated_by)

    def activate(self, updated_by: Optional[str] = None) -> None:
        self.is_active = True
        self._touch(updated_by)

    def deactivate(self, updated_by: Optional[str] = None) -> None:
        self.is_active = False
        self._touch(updated_by)

    def record_application(self, applied_at: Optional[datetime] = None) -> None:
        self.times_applied += 1
        self.last_applied_at = applied_at or datetime.utcnow()

    def applies_to(self, listing) -> bool:
        """Active and the condition matches the listing."""
        return self.is_active and self.condition.matches(listing)


# =============================================================================
# EffectiveConfig
# =============================================================================

class EffectiveConfig(BaseModel):
    """Resolved scoring configuration for one candidate pair.

    All thresholds are on the 0-1 score scale.
    """
    tenant_id: str
    config_id: Optional[str] = None

    title_similarity_threshold: float
    image_hash_similarity_threshold: float
    overall_match_threshold: float
    review_threshold: float

    title_weight: float
    vin_weight: float
    image_hash_weight: float
    price_weight: float
    mileage_weight: float
    location_weight: float

    require_vin_match: bool = False
    require_image_match: bool = False

    price_tolerance_percent: float
    mileage_tolerance_percent: float
    max_distance_km: float

    title_algorithm: TitleAlgorithm = TitleAlgorithm.COMPOSITE

    applied_rule_id: Optional[str] = None
    applied_rule_name: Optional[str] = None

    @classmethod
    def from_config(cls, config: DeduplicationConfig) -> "EffectiveConfig":
        return cls(tenant_id=config.tenant_id, config_id=config.id, **config.scoring_values())

    def weights(self) -> Dict[str, float]:
        """Field name → weight, keyed by the short field names used in breakdowns."""
        return {
            "title": self.title_weight,
            "vin": self.vin_weight,
            "image": self.image_hash_weight,
            "price": self.price_weight,
            "mileage": self.mileage_weight,
            "location": self.location_weight,
        }
