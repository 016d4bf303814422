"""Order creation for subscription packages."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..entitlements.catalog import PackageCatalog
from ..entitlements.models import Package
from ..errors import PaidSubscriptionActive
from .ledger import TransactionLedger
from .models import OrderHandle, OrderStatus, SellerSubscription
from .processor import PaymentProcessor
from .subscriptions import SubscriptionStateMachine

logger = logging.getLogger(__name__)

_RECEIPT_MAX_LENGTH = 40


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_receipt(seller_id: str, now: datetime) -> str:
    """Processor receipt ``sub_<seller>_<epoch millis>``, capped at 40 characters."""

    return f"sub_{seller_id}_{int(now.timestamp() * 1000)}"[:_RECEIPT_MAX_LENGTH]


@dataclass
class OrderService:
    """Prices orders from the catalog and starts the payment flow."""

    catalog: PackageCatalog
    processor: PaymentProcessor
    ledger: TransactionLedger
    subscriptions: SubscriptionStateMachine
    clock: Callable[[], datetime] = field(default=_utcnow)

    def create_order(self, seller_id: str, package_name: str) -> OrderHandle:
        package = self.catalog.get_package(package_name)
        if package.is_free:
            return self._activate_free(seller_id, package)

        receipt = build_receipt(seller_id, self.clock())
        order = self.processor.create_order(
            amount=package.price,
            receipt=receipt,
            notes={"seller_id": seller_id, "package": package.name},
        )
        if order.amount != package.price:
            logger.warning(
                "Processor echoed a different order amount",
                extra={
                    "seller_id": seller_id,
                    "order_ref": order.order_ref,
                    "expected_amount": package.price.amount,
                    "processor_amount": order.amount.amount,
                },
            )
        transaction = self.ledger.record_pending_purchase(
            seller_id,
            package,
            order_ref=order.order_ref,
            receipt=receipt,
        )
        logger.info(
            "Created subscription order",
            extra={"seller_id": seller_id, "package": package.name, "order_ref": order.order_ref},
        )
        return OrderHandle(
            package_name=package.name,
            amount=package.price,
            status=OrderStatus.CREATED,
            order_ref=order.order_ref,
            transaction_id=transaction.transaction_id,
        )

    def _activate_free(self, seller_id: str, package: Package) -> OrderHandle:
        def guard(current: SellerSubscription, now: datetime) -> Optional[SellerSubscription]:
            if not current.has_package or current.is_expired_at(now):
                return None
            if current.package_name == package.name:
                return current
            if not self.subscriptions.is_free_package(current.package_name):
                raise PaidSubscriptionActive()
            return None

        transaction = self.ledger.build_free_activation(seller_id, package)
        subscription, stored = self.subscriptions.activate_with_ledger(
            seller_id,
            package.name,
            transaction,
            expected_status=None,
            guard=guard,
        )
        return OrderHandle(
            package_name=package.name,
            amount=package.price,
            status=OrderStatus.ALREADY_ACTIVE,
            transaction_id=stored.transaction_id if stored is not None else subscription.transaction_id,
            subscription=subscription,
        )


__all__ = ["OrderService", "build_receipt"]
