"""Draw pool lifecycle, ticket allocation, rate overlay and reconciliation."""

from .engine import DrawEngine, DrawOutcome, weighted_pick
from .pool import TierSpec, create_pool, deactivate_pool, reveal_seed
from .rates import (
    EscalationPolicy,
    NeutralRateProvider,
    RateProvider,
    RateSnapshot,
    SettingsRateProvider,
    default_rate_provider,
    display_probabilities,
    get_rate_setting,
    set_profit_rate,
    set_tier_multiplier,
)
from .reconciliation import (
    ReconciliationReport,
    audit_product,
    check_invariants,
    reconcile_all,
    reconcile_product,
)

__all__ = [
    "DrawEngine",
    "DrawOutcome",
    "weighted_pick",
    "TierSpec",
    "create_pool",
    "deactivate_pool",
    "reveal_seed",
    "EscalationPolicy",
    "NeutralRateProvider",
    "RateProvider",
    "RateSnapshot",
    "SettingsRateProvider",
    "default_rate_provider",
    "display_probabilities",
    "get_rate_setting",
    "set_profit_rate",
    "set_tier_multiplier",
    "ReconciliationReport",
    "audit_product",
    "check_invariants",
    "reconcile_all",
    "reconcile_product",
]
