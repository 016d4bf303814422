"""Per-request entitlement checks for privileged seller operations."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol

from psycopg2.extensions import connection as PgConnection

from ..billing.repository import managed_connection
from ..billing.subscriptions import SUBSCRIPTION_EXPIRED, SubscriptionStateMachine
from ..errors import SubscriptionExpired
from .context import EntitlementContext
from .exceptions import FeatureGateError
from .quota import QuotaEvaluation

logger = logging.getLogger(__name__)


class GatedAction(str, Enum):
    CREATE_LISTING = "create_listing"
    ADD_PHOTO = "add_photo"
    USE_BOOST = "use_boost"
    VIEW_ANALYTICS = "view_analytics"


class UsageReader(Protocol):
    """Current usage counts, owned by the listing service."""

    def count_active_listings(self, seller_id: str) -> int:
        ...

    def count_photos(self, seller_id: str, listing_id: str) -> int:
        ...

    def count_boosts_since(self, seller_id: str, since: datetime) -> int:
        ...


@dataclass(frozen=True)
class GateDecision:
    action: GatedAction
    allowed: bool
    reason: Optional[str] = None
    detail: Mapping[str, Any] = field(default_factory=dict)
    quota: Optional[QuotaEvaluation] = None


class EntitlementGate:
    """Combines the subscription expiry check with a quota check per action."""

    def __init__(self, subscriptions: SubscriptionStateMachine, usage_reader: UsageReader) -> None:
        self._subscriptions = subscriptions
        self._usage_reader = usage_reader

    def authorize(
        self,
        seller_id: str,
        action: GatedAction,
        *,
        listing_id: Optional[str] = None,
    ) -> GateDecision:
        action = GatedAction(action)
        if action == GatedAction.ADD_PHOTO and not listing_id:
            raise ValueError("listing_id is required for add_photo")

        enforcement = self._subscriptions.check_and_enforce(seller_id)
        if not enforcement.allowed:
            return GateDecision(action=action, allowed=False, reason=enforcement.reason)

        subscription = enforcement.subscription
        context = EntitlementContext.from_subscription(subscription)

        if action == GatedAction.VIEW_ANALYTICS:
            if context.has("analytics.enabled"):
                return GateDecision(action=action, allowed=True)
            return GateDecision(
                action=action,
                allowed=False,
                reason="entitlement_required",
                detail={"missing_entitlement": "analytics.enabled"},
            )

        if action == GatedAction.CREATE_LISTING:
            resource = "listings"
            used = self._usage_reader.count_active_listings(seller_id)
        elif action == GatedAction.ADD_PHOTO:
            resource = "photos"
            used = self._usage_reader.count_photos(seller_id, str(listing_id))
        else:
            resource = "boosts"
            used = self._usage_reader.count_boosts_since(seller_id, subscription.start_date)

        quota = context.evaluate_quota(resource, used=used)
        if quota.allowed:
            return GateDecision(action=action, allowed=True, quota=quota)
        return GateDecision(
            action=action,
            allowed=False,
            reason="quota_exceeded",
            detail={"resource": resource, "limit": quota.limit, "used": quota.used},
            quota=quota,
        )

    def require(
        self,
        seller_id: str,
        action: GatedAction,
        *,
        listing_id: Optional[str] = None,
    ) -> GateDecision:
        """Like :meth:`authorize` but raises when the action is denied."""

        decision = self.authorize(seller_id, action, listing_id=listing_id)
        if decision.allowed:
            return decision

        logger.info(
            "Entitlement gate denied action",
            extra={"seller_id": seller_id, "gated_action": decision.action.value, "gate_reason": decision.reason},
        )
        if decision.reason == SUBSCRIPTION_EXPIRED:
            raise SubscriptionExpired()
        if decision.reason == "quota_exceeded":
            raise FeatureGateError(
                code="quota_exceeded",
                message=f"Your package allows {decision.quota.limit} {decision.quota.resource}.",
                detail=decision.detail,
            )
        if decision.reason == "entitlement_required":
            raise FeatureGateError(code="entitlement_required", detail=decision.detail)
        raise FeatureGateError(
            code=decision.reason or "no_active_subscription",
            message="An active subscription is required.",
        )

    def usage_summary(self, seller_id: str) -> Dict[str, Any]:
        """Limits, current usage and remaining slots for the seller's package."""

        enforcement = self._subscriptions.check_and_enforce(seller_id)
        subscription = enforcement.subscription
        context = EntitlementContext.from_subscription(subscription)

        if subscription.has_package:
            listings_used = self._usage_reader.count_active_listings(seller_id)
            boosts_used = self._usage_reader.count_boosts_since(seller_id, subscription.start_date)
        else:
            listings_used = boosts_used = 0
        listings = context.evaluate_quota("listings", used=listings_used, requested=0)
        boosts = context.evaluate_quota("boosts", used=boosts_used, requested=0)

        return {
            "package": subscription.package_name,
            "status": subscription.status.value,
            "endDate": subscription.end_date.isoformat() if subscription.end_date else None,
            "maxListings": listings.limit,
            "currentActive": listings.used,
            "remainingSlots": listings.remaining,
            "maxPhotos": context.limit("photos"),
            "boostsTotal": boosts.limit,
            "boostsUsed": boosts.used,
            "boostsRemaining": boosts.remaining,
            "analytics": context.has("analytics.enabled"),
            "searchPlacement": context.features.search_placement.value,
            "badges": list(context.features.badges),
        }


class PostgresUsageReader:
    """Reads usage from the listing service's ``horse_listings`` table."""

    def __init__(self, *, conn: Optional[PgConnection] = None, table: str = "horse_listings") -> None:
        self._conn = conn
        self._table = table

    def _scalar(self, query: str, params: tuple) -> int:
        with managed_connection(self._conn) as (connection, _managed):
            with connection.cursor() as cursor:
                cursor.execute(query, params)
                row = cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def count_active_listings(self, seller_id: str) -> int:
        return self._scalar(
            f"SELECT COUNT(*) FROM {self._table} WHERE seller_id = %s AND listing_status = 'active'",
            (seller_id,),
        )

    def count_photos(self, seller_id: str, listing_id: str) -> int:
        return self._scalar(
            f"SELECT COALESCE(array_length(images, 1), 0) FROM {self._table} WHERE id = %s AND seller_id = %s",
            (listing_id, seller_id),
        )

    def count_boosts_since(self, seller_id: str, since: datetime) -> int:
        return self._scalar(
            f"SELECT COUNT(*) FROM {self._table} WHERE seller_id = %s AND boost_start_date >= %s",
            (seller_id, since),
        )


__all__ = [
    "EntitlementGate",
    "GateDecision",
    "GatedAction",
    "PostgresUsageReader",
    "UsageReader",
]
