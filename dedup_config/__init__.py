"""Deduplication configuration - tenant defaults, dealer rules and resolution.

Usage:
    from dedup_config import DealerRuleResolver, InMemoryConfigStore, DealerDeduplicationRule

    store = InMemoryConfigStore()
    store.save_rule(DealerDeduplicationRule.strict_vin_only("t-1", "dealer-9"))

    effective = DealerRuleResolver(store).resolve("t-1", "dealer-9", listing)
    effective.require_vin_match  # True
"""

from dedup_config.conditions import (
    AlwaysCondition,
    PriceRangeCondition,
    YearRangeCondition,
    MakeModelCondition,
    CombinedCondition,
    RuleCondition,
    parse_condition,
)
from dedup_config.models import (
    DeduplicationConfig,
    DealerDeduplicationRule,
    EffectiveConfig,
    validate_config_values,
)
from dedup_config.store import (
    ConfigStore,
    InMemoryConfigStore,
    SQLiteConfigStore,
    init_config_db,
)
from dedup_config.resolver import DealerRuleResolver, select_rule, apply_rule

__all__ = [
    # Conditions
    "AlwaysCondition",
    "PriceRangeCondition",
    "YearRangeCondition",
    "MakeModelCondition",
    "CombinedCondition",
    "RuleCondition",
    "parse_condition",
    # Models
    "DeduplicationConfig",
    "DealerDeduplicationRule",
    "EffectiveConfig",
    "validate_config_values",
    # Store
    "ConfigStore",
    "InMemoryConfigStore",
    "SQLiteConfigStore",
    "init_config_db",
    # Resolution
    "DealerRuleResolver",
    "select_rule",
    "apply_rule",
]
