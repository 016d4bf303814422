"""Convenience wrapper around a granted feature snapshot for feature gating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Union

from ..billing.models import SellerSubscription
from ..entitlements.models import FeatureBundle
from .enforcement import require_entitlement
from .quota import QuotaEvaluation, assert_quota, evaluate_quota

_QUOTA_FLAGS = {
    "listings": "listings.max",
    "photos": "photos.max",
    "boosts": "boosts.count",
}


@dataclass(frozen=True)
class EntitlementContext:
    """Facade exposing gating-centric helpers for a seller's granted bundle."""

    package_name: Optional[str]
    features: FeatureBundle

    @classmethod
    def from_subscription(cls, subscription: SellerSubscription) -> "EntitlementContext":
        features = subscription.features
        if features is None:
            # Nothing granted yet: every quota is zero and no flag is set.
            features = FeatureBundle(max_listings=0, max_photos=0)
        return cls(package_name=subscription.package_name, features=features)

    @property
    def feature_flags(self) -> Dict[str, Union[int, bool, str]]:
        return self.features.to_flags()

    def has(self, flag: str) -> bool:
        """Return whether the provided flag evaluates truthy."""

        return bool(self.feature_flags.get(flag))

    def require(self, flag: str, *, error_code: str = "entitlement_required") -> None:
        require_entitlement(self.feature_flags, flag, error_code=error_code)

    def limit(self, resource: str) -> int:
        return int(self.feature_flags[_QUOTA_FLAGS[resource]])

    def evaluate_quota(self, resource: str, *, used: int, requested: int = 1) -> QuotaEvaluation:
        return evaluate_quota(resource=resource, used=used, limit=self.limit(resource), requested=requested)

    def assert_quota(self, resource: str, *, used: int, requested: int = 1) -> QuotaEvaluation:
        """Raise when the seller's usage would exceed the granted quota."""

        return assert_quota(resource=resource, used=used, limit=self.limit(resource), requested=requested)
