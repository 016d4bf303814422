"""Seller subscription lifecycle: activation, expiry detection and downgrade."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from ..entitlements.catalog import PackageCatalog
from ..entitlements.models import Package
from ..errors import ConcurrentModification
from .events import BillingEventLogger
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    EnforcementDecision,
    EnforcementResult,
    SellerSubscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
)
from .repository import BillingRepository

logger = logging.getLogger(__name__)

NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
SUBSCRIPTION_EXPIRED = "subscription_expired"

# Returns the subscription to hand back unchanged, or ``None`` to proceed.
ActivationGuard = Callable[[SellerSubscription, datetime], Optional[SellerSubscription]]


class SubscriptionStateMachine:
    """Owns every write to a seller's subscription record.

    All writes are compare-and-swap on ``revision``. A lost race re-reads the
    record and tries again, up to ``max_attempts`` times, after which
    :class:`ConcurrentModification` is raised.
    """

    def __init__(
        self,
        repository: BillingRepository,
        catalog: PackageCatalog,
        *,
        event_logger: BillingEventLogger,
        clock: Optional[Callable[[], datetime]] = None,
        max_attempts: int = 5,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._event_logger = event_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._max_attempts = max(1, max_attempts)

    def now(self) -> datetime:
        return self._clock()

    def open_subscription(self, seller_id: str) -> SellerSubscription:
        """Create the empty record for a new seller; a no-op when it already exists."""

        empty = SellerSubscription(seller_id=seller_id, updated_at=self._clock())
        return self._repository.create_subscription(empty)

    def get_subscription(self, seller_id: str) -> SellerSubscription:
        existing = self._repository.get_subscription(seller_id)
        if existing is not None:
            return existing
        return SellerSubscription(seller_id=seller_id, updated_at=self._clock())

    def is_free_package(self, package_name: Optional[str]) -> bool:
        if package_name is None or package_name not in self._catalog:
            return False
        return self._catalog.get_package(package_name).is_free

    def activate(
        self,
        seller_id: str,
        package_name: str,
        *,
        duration_days: Optional[int] = None,
    ) -> SellerSubscription:
        package = self._catalog.get_package(package_name)
        subscription, _ = self._activate(seller_id, package, duration_days=duration_days)
        return subscription

    def activate_with_ledger(
        self,
        seller_id: str,
        package_name: str,
        transaction: Transaction,
        *,
        expected_status: Optional[TransactionStatus],
        guard: Optional[ActivationGuard] = None,
    ) -> Tuple[SellerSubscription, Optional[Transaction]]:
        """Activate and write ``transaction`` in the same commit.

        ``expected_status=None`` inserts the transaction; otherwise it is
        updated only while it still has that status, and a mismatch raises
        :class:`ConcurrentModification` for the ``"transaction"`` resource.
        When ``guard`` short-circuits, nothing is written and the returned
        transaction is ``None``.
        """

        package = self._catalog.get_package(package_name)
        return self._activate(
            seller_id,
            package,
            transaction=transaction,
            expected_status=expected_status,
            guard=guard,
        )

    def check_and_enforce(self, seller_id: str) -> EnforcementResult:
        """Allow, or expire and downgrade to the fallback package and deny."""

        lost_race = False
        for attempt in range(1, self._max_attempts + 1):
            current = self.get_subscription(seller_id)
            if not current.has_package:
                return EnforcementResult(
                    decision=EnforcementDecision.DENIED,
                    subscription=current,
                    reason=NO_ACTIVE_SUBSCRIPTION,
                )
            now = self._clock()
            if self.is_free_package(current.package_name) or not current.is_expired_at(now):
                return EnforcementResult(decision=EnforcementDecision.ALLOWED, subscription=current)
            if lost_race:
                logger.info(
                    "Subscription still expired after concurrent update",
                    extra={"seller_id": seller_id, "attempt": attempt},
                )
            try:
                downgraded = self._expire_and_downgrade(current, now)
            except ConcurrentModification:
                lost_race = True
                continue
            return EnforcementResult(
                decision=EnforcementDecision.DENIED,
                subscription=downgraded,
                reason=SUBSCRIPTION_EXPIRED,
            )
        raise ConcurrentModification("subscription", seller_id)

    def _expire_and_downgrade(self, current: SellerSubscription, now: datetime) -> SellerSubscription:
        fallback = self._catalog.fallback_package
        downgraded = self._repository.replace_subscription(
            self._granted(current, fallback, now, transaction_id=None),
            expected_revision=current.revision,
        )
        logger.info(
            "Subscription expired and downgraded",
            extra={
                "seller_id": current.seller_id,
                "previous_package": current.package_name,
                "expired_at": current.end_date.isoformat() if current.end_date else None,
            },
        )
        self._event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_DOWNGRADED,
                seller_id=current.seller_id,
                metadata={
                    "previous_package": current.package_name or "",
                    "package": fallback.name,
                    "end_date": downgraded.end_date.isoformat() if downgraded.end_date else "",
                },
                occurred_at=now,
            )
        )
        return downgraded

    def _activate(
        self,
        seller_id: str,
        package: Package,
        *,
        duration_days: Optional[int] = None,
        transaction: Optional[Transaction] = None,
        expected_status: Optional[TransactionStatus] = None,
        guard: Optional[ActivationGuard] = None,
    ) -> Tuple[SellerSubscription, Optional[Transaction]]:
        for attempt in range(1, self._max_attempts + 1):
            current = self._repository.get_subscription(seller_id) or self.open_subscription(seller_id)
            now = self._clock()
            if guard is not None:
                unchanged = guard(current, now)
                if unchanged is not None:
                    return unchanged, None

            transaction_id = transaction.transaction_id if transaction is not None else current.transaction_id
            updated = self._granted(current, package, now, transaction_id=transaction_id, duration_days=duration_days)
            try:
                if transaction is None:
                    stored = self._repository.replace_subscription(updated, expected_revision=current.revision)
                    stored_transaction = None
                else:
                    stored, stored_transaction = self._repository.commit_activation(
                        updated,
                        expected_revision=current.revision,
                        transaction=transaction,
                        transaction_expected_status=expected_status,
                    )
            except ConcurrentModification as exc:
                if exc.resource != "subscription":
                    raise
                logger.info(
                    "Subscription revision conflict; retrying activation",
                    extra={"seller_id": seller_id, "attempt": attempt},
                )
                continue

            self._event_logger.log(
                BillingAuditEvent(
                    event_type=BillingAuditEventType.SUBSCRIPTION_ACTIVATED,
                    seller_id=seller_id,
                    transaction_id=stored.transaction_id,
                    metadata={
                        "package": package.name,
                        "end_date": stored.end_date.isoformat() if stored.end_date else "",
                    },
                    occurred_at=now,
                )
            )
            return stored, stored_transaction
        raise ConcurrentModification("subscription", seller_id)

    def _granted(
        self,
        current: SellerSubscription,
        package: Package,
        now: datetime,
        *,
        transaction_id: Optional[str],
        duration_days: Optional[int] = None,
    ) -> SellerSubscription:
        days = duration_days if duration_days is not None else package.duration_days
        if days < 1:
            raise ValueError("duration_days must be >= 1")
        return current.model_copy(
            update={
                "package_name": package.name,
                "status": SubscriptionStatus.ACTIVE,
                "start_date": now,
                "end_date": now + timedelta(days=days),
                "feature_snapshot": package.features.to_dict(),
                "transaction_id": transaction_id,
                "updated_at": now,
            }
        )


__all__ = [
    "ActivationGuard",
    "NO_ACTIVE_SUBSCRIPTION",
    "SUBSCRIPTION_EXPIRED",
    "SubscriptionStateMachine",
]
