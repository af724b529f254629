"""Dealer rule resolution.

Resolution flow for a listing:
1. Load the tenant's active config (exactly one, or a built-in default).
2. Collect the dealer's active rules whose condition matches the listing.
3. Pick the highest priority; ties go to the most recently created rule,
   then the lexicographically greatest id.
4. Overlay the rule's set fields onto the config, one field at a time.
5. Record the application on the rule. A rule deleted between steps 2 and 5
   is logged and the overlay kept.

A dealer without an applicable rule silently gets the tenant config.
"""

from datetime import datetime
from typing import List, Optional

from core.errors import AmbiguousConfigError, RuleNotFoundError
from core.models import Listing
from core.observability.logging import get_logger
from dedup_config.models import (
    WEIGHT_FIELDS,
    DealerDeduplicationRule,
    DeduplicationConfig,
    EffectiveConfig,
)
from dedup_config.store import ConfigStore

logger = get_logger(__name__)


# Rule field (percent) → effective field (0-1)
PERCENT_THRESHOLD_OVERRIDES = {
    "auto_match_threshold": "overall_match_threshold",
    "review_threshold": "review_threshold",
    "title_similarity_threshold": "title_similarity_threshold",
    "image_hash_similarity_threshold": "image_hash_similarity_threshold",
}

DIRECT_OVERRIDES = WEIGHT_FIELDS + (
    "price_tolerance_percent",
    "mileage_tolerance_percent",
    "max_distance_km",
    "require_vin_match",
    "require_image_match",
    "title_algorithm",
)


def select_rule(rules: List[DealerDeduplicationRule], listing: Listing) -> Optional[DealerDeduplicationRule]:
    """Highest-priority applicable rule, or None.

    Equal priorities are broken by created_at (newest first), then id.
    """
    applicable = [rule for rule in rules if rule.applies_to(listing)]
    if not applicable:
        return None
    return max(applicable, key=lambda r: (r.priority, r.created_at, r.id))


def apply_rule(base: EffectiveConfig, rule: DealerDeduplicationRule) -> EffectiveConfig:
    """Overlay a rule's set fields onto a resolved config.

    If the overlay would leave review above the auto threshold (e.g. the rule
    only raises review), review is clamped down to the auto threshold.
    """
    updates = {}

    for rule_field, target_field in PERCENT_THRESHOLD_OVERRIDES.items():
        value = getattr(rule, rule_field)
        if value is not None:
            updates[target_field] = value / 100.0

    for name in DIRECT_OVERRIDES:
        value = getattr(rule, name)
        if value is not None:
            updates[name] = value

    merged = base.model_copy(update=updates)

    if sum(merged.weights().values()) <= 0:
        logger.warning(
            f"Rule {rule.id} zeroes every weight; keeping tenant weights",
            extra_fields={"rule_id": rule.id},
        )
        merged = merged.model_copy(update={name: getattr(base, name) for name in WEIGHT_FIELDS})

    if merged.review_threshold > merged.overall_match_threshold:
        logger.warning(
            f"Rule {rule.id} leaves review threshold above auto threshold; clamping",
            extra_fields={"rule_id": rule.id},
        )
        merged = merged.model_copy(update={"review_threshold": merged.overall_match_threshold})

    return merged.model_copy(update={"applied_rule_id": rule.id, "applied_rule_name": rule.rule_name})


class DealerRuleResolver:
    """Produces the EffectiveConfig for a listing.

    Args:
        store: Configuration collaborator
        record_usage: Whether to update times_applied/last_applied_at
    """

    def __init__(self, store: ConfigStore, record_usage: bool = True):
        self.store = store
        self.record_usage = record_usage

    def get_active_config(self, tenant_id: str) -> DeduplicationConfig:
        """The tenant's single active config.

        Returns a default DeduplicationConfig when none exists.

        Raises:
            AmbiguousConfigError: More than one active config
        """
        configs = self.store.list_configs(tenant_id, active_only=True)
        if len(configs) > 1:
            raise AmbiguousConfigError(tenant_id, [c.id for c in configs])
        if not configs:
            logger.debug(f"No active config for tenant {tenant_id}; using defaults")
            return DeduplicationConfig(tenant_id=tenant_id)
        return configs[0]

    def find_rule(
        self,
        tenant_id: str,
        dealer_id: Optional[str],
        listing: Listing,
    ) -> Optional[DealerDeduplicationRule]:
        if not dealer_id:
            return None
        rules = self.store.list_rules(tenant_id, dealer_id=dealer_id, active_only=True)
        return select_rule(rules, listing)

    def resolve(
        self,
        tenant_id: str,
        dealer_id: Optional[str],
        listing: Listing,
    ) -> EffectiveConfig:
        """Effective config for scoring pairs whose source is `listing`."""
        config = self.get_active_config(tenant_id)
        effective = EffectiveConfig.from_config(config)

        rule = self.find_rule(tenant_id, dealer_id, listing)
        if rule is None:
            return effective

        effective = apply_rule(effective, rule)

        if self.record_usage:
            try:
                self.store.record_rule_application(tenant_id, rule.id, datetime.utcnow())
            except RuleNotFoundError:
                # Deleted after it was listed; the overlay still applies
                logger.warning(
                    f"Dealer rule {rule.id} disappeared before its application was recorded",
                    extra_fields={"rule_id": rule.id, "dealer_id": dealer_id},
                )

        logger.debug(
            f"Applied dealer rule '{rule.rule_name}' (priority {rule.priority})",
            extra_fields={"rule_id": rule.id, "dealer_id": dealer_id},
        )
        return effective
