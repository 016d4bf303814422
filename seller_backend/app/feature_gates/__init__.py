"""Feature gating utilities coordinating entitlement enforcement."""
from .context import EntitlementContext
from .enforcement import require_entitlement
from .exceptions import FeatureGateError
from .gate import EntitlementGate, GateDecision, GatedAction, PostgresUsageReader, UsageReader
from .quota import QuotaEvaluation, assert_quota, evaluate_quota

__all__ = [
    "EntitlementContext",
    "EntitlementGate",
    "FeatureGateError",
    "GateDecision",
    "GatedAction",
    "PostgresUsageReader",
    "QuotaEvaluation",
    "UsageReader",
    "assert_quota",
    "evaluate_quota",
    "require_entitlement",
]
