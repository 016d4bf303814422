from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from seller_backend.app.billing import (
    OrderStatus,
    SubscriptionStatus,
    TransactionKind,
    TransactionStatus,
)
from seller_backend.app.billing.orders import build_receipt
from seller_backend.app.entitlements import Money
from seller_backend.app.errors import PaidSubscriptionActive, UnknownPackage


def test_paid_order_uses_catalog_price(services, processor, clock) -> None:
    handle = services.orders.create_order("seller-1", "Gallop")

    assert handle.status == OrderStatus.CREATED
    assert handle.amount == Money(amount=499900, currency="INR")
    assert handle.order_ref == "order_1"
    assert processor.create_calls[0]["amount"] == Money(amount=499900, currency="INR")
    assert processor.create_calls[0]["notes"] == {"seller_id": "seller-1", "package": "Gallop"}

    transaction = services.ledger.get(handle.transaction_id)
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.kind == TransactionKind.PURCHASE
    assert transaction.processor_order_ref == "order_1"
    assert transaction.receipt == f"sub_seller-1_{int(clock().timestamp() * 1000)}"


def test_paid_order_does_not_touch_subscription(services, repository) -> None:
    services.orders.create_order("seller-1", "Royal Stallion")

    assert repository.get_subscription("seller-1") is None
    assert repository.subscription_writes == 0


def test_free_order_activates_without_processor(services, processor, repository) -> None:
    handle = services.orders.create_order("seller-1", "Starter")

    assert processor.create_calls == []
    assert handle.status == OrderStatus.ALREADY_ACTIVE
    assert handle.subscription.package_name == "Starter"
    assert handle.subscription.status == SubscriptionStatus.ACTIVE

    page = services.ledger.list_for_owner("seller-1", page=1, page_size=10)
    assert page.total == 1
    entry = page.items[0]
    assert entry.kind == TransactionKind.FREE_ACTIVATION
    assert entry.status == TransactionStatus.COMPLETED
    assert entry.amount.is_zero
    assert repository.get_subscription("seller-1").transaction_id == entry.transaction_id

    assert services.subscriptions.check_and_enforce("seller-1").allowed


def test_free_order_is_idempotent_while_active(services, repository, clock) -> None:
    first = services.orders.create_order("seller-1", "Starter")
    clock.advance(days=10)
    second = services.orders.create_order("seller-1", "Starter")

    assert second.status == OrderStatus.ALREADY_ACTIVE
    assert second.subscription.end_date == first.subscription.end_date
    assert second.transaction_id == first.transaction_id
    assert services.ledger.list_for_owner("seller-1", page=1, page_size=10).total == 1
    assert repository.subscription_writes == 1


def test_free_order_rejected_while_paid_plan_active(services) -> None:
    services.subscriptions.activate("seller-1", "Gallop")

    with pytest.raises(PaidSubscriptionActive) as exc:
        services.orders.create_order("seller-1", "Starter")

    assert exc.value.status_code == 409
    assert services.subscriptions.get_subscription("seller-1").package_name == "Gallop"
    assert services.ledger.list_for_owner("seller-1", page=1, page_size=10).total == 0


def test_free_order_allowed_after_paid_plan_lapses(services, clock) -> None:
    services.subscriptions.activate("seller-1", "Trot")
    clock.advance(days=31)

    handle = services.orders.create_order("seller-1", "Starter")

    assert handle.subscription.package_name == "Starter"
    assert handle.subscription.end_date == clock() + timedelta(days=365)


def test_unknown_package_never_reaches_processor(services, processor) -> None:
    with pytest.raises(UnknownPackage):
        services.orders.create_order("seller-1", "Pony")

    assert processor.create_calls == []


def test_build_receipt_is_capped() -> None:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert build_receipt("abc", now) == "sub_abc_1704067200000"
    assert len(build_receipt("x" * 64, now)) == 40
