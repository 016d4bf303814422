from __future__ import annotations

import pytest

from seller_backend.app.billing import TransactionKind, TransactionLedger, TransactionStatus
from seller_backend.app.billing.models import can_transition
from seller_backend.app.errors import InvalidTransactionTransition, TransactionNotFound


def _completed_purchase(services, processor, seller_id: str = "seller-1"):
    handle = services.orders.create_order(seller_id, "Gallop")
    callback = processor.pay(handle.order_ref)
    return services.verifier.verify(seller_id=seller_id, package_name="Gallop", **callback).transaction


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (TransactionStatus.PENDING, TransactionStatus.COMPLETED, True),
        (TransactionStatus.PENDING, TransactionStatus.FAILED, True),
        (TransactionStatus.COMPLETED, TransactionStatus.REFUNDED, True),
        (TransactionStatus.COMPLETED, TransactionStatus.PENDING, False),
        (TransactionStatus.FAILED, TransactionStatus.COMPLETED, False),
        (TransactionStatus.REFUNDED, TransactionStatus.COMPLETED, False),
        (TransactionStatus.PENDING, TransactionStatus.REFUNDED, False),
    ],
)
def test_status_transitions(current, target, allowed) -> None:
    assert can_transition(current, target) is allowed


def test_ids_come_from_factory(repository, event_logger, clock, catalog) -> None:
    ids = iter(["txn_a", "txn_b"])
    ledger = TransactionLedger(repository, event_logger=event_logger, clock=clock, id_factory=lambda: next(ids))

    first = ledger.record_pending_purchase("seller-1", catalog.get_package("Trot"), order_ref="o1", receipt="r1")
    second = ledger.record_pending_purchase("seller-1", catalog.get_package("Trot"), order_ref="o2", receipt="r2")

    assert (first.transaction_id, second.transaction_id) == ("txn_a", "txn_b")
    assert first.amount.amount == 199900
    assert first.feature_snapshot["max_listings"] == 5


def test_mark_failed_is_terminal(services) -> None:
    handle = services.orders.create_order("seller-1", "Trot")
    pending = services.ledger.get(handle.transaction_id)

    failed = services.ledger.mark_failed(pending, "payment_failed")

    assert failed.status == TransactionStatus.FAILED
    assert failed.is_terminal
    with pytest.raises(InvalidTransactionTransition):
        services.ledger.mark_failed(failed, "again")


def test_mark_failed_after_concurrent_completion_returns_latest(services, processor) -> None:
    handle = services.orders.create_order("seller-1", "Gallop")
    stale = services.ledger.get(handle.transaction_id)
    callback = processor.pay(handle.order_ref)
    services.verifier.verify(seller_id="seller-1", package_name="Gallop", **callback)

    latest = services.ledger.mark_failed(stale, "late_failure")

    assert latest.status == TransactionStatus.COMPLETED
    assert latest.failure_reason is None


def test_refund_appends_entry_and_keeps_subscription(services, processor, repository, event_logger) -> None:
    purchase = _completed_purchase(services, processor)
    subscription = repository.get_subscription("seller-1")

    original, refund = services.ledger.refund(purchase.transaction_id, refund_ref="rfnd_1", reason="duplicate charge")

    assert original.status == TransactionStatus.REFUNDED
    assert refund.kind == TransactionKind.REFUND
    assert refund.status == TransactionStatus.COMPLETED
    assert refund.refund_of == purchase.transaction_id
    assert refund.amount == purchase.amount
    assert refund.processor_payment_ref == "rfnd_1"
    assert repository.get_subscription("seller-1") == subscription

    event = event_logger.events[-1]
    assert event.event_type.value == "transaction_refunded"
    assert event.metadata["reason"] == "duplicate charge"
    assert event.metadata["refund_transaction_id"] == refund.transaction_id


def test_refund_twice_is_rejected(services, processor) -> None:
    purchase = _completed_purchase(services, processor)
    services.ledger.refund(purchase.transaction_id, refund_ref="rfnd_1")

    with pytest.raises(InvalidTransactionTransition):
        services.ledger.refund(purchase.transaction_id, refund_ref="rfnd_2")

    assert services.ledger.list_for_owner("seller-1", page=1, page_size=10).total == 2


def test_pending_and_free_entries_cannot_be_refunded(services) -> None:
    pending = services.orders.create_order("seller-1", "Trot")
    free = services.orders.create_order("seller-2", "Starter")
    free_entry = services.ledger.list_for_owner("seller-2", page=1, page_size=1).items[0]

    with pytest.raises(InvalidTransactionTransition):
        services.ledger.refund(pending.transaction_id, refund_ref="rfnd_1")
    with pytest.raises(InvalidTransactionTransition):
        services.ledger.refund(free_entry.transaction_id, refund_ref="rfnd_2")

    assert free.status.value == "already_active"


def test_list_for_owner_is_newest_first_and_paginated(services, clock) -> None:
    created = []
    for package in ("Trot", "Gallop", "Royal Stallion"):
        created.append(services.orders.create_order("seller-1", package).transaction_id)
        clock.advance(minutes=1)
    services.orders.create_order("seller-2", "Trot")

    first = services.ledger.list_for_owner("seller-1", page=1, page_size=2)
    second = services.ledger.list_for_owner("seller-1", page=2, page_size=2)

    assert first.total == 3
    assert [txn.transaction_id for txn in first.items] == [created[2], created[1]]
    assert [txn.transaction_id for txn in second.items] == [created[0]]
    assert services.ledger.list_for_owner("seller-1", page=3, page_size=2).items == []

    with pytest.raises(ValueError):
        services.ledger.list_for_owner("seller-1", page=0, page_size=2)
    with pytest.raises(ValueError):
        services.ledger.list_for_owner("seller-1", page=1, page_size=0)


def test_get_for_owner_hides_other_sellers(services) -> None:
    handle = services.orders.create_order("seller-1", "Trot")

    assert services.ledger.get_for_owner("seller-1", handle.transaction_id).owner_id == "seller-1"
    with pytest.raises(TransactionNotFound):
        services.ledger.get_for_owner("seller-2", handle.transaction_id)
    with pytest.raises(TransactionNotFound):
        services.ledger.get("txn_missing")
