from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest

from seller_backend.app.billing import (
    BillingAuditEvent,
    InMemoryBillingRepository,
    PaymentSigner,
    ProcessorOrder,
    ProcessorPayment,
    ProcessorPaymentStatus,
)
from seller_backend.app.entitlements import Money, default_catalog
from seller_backend.app.errors import ProcessorUnavailable
from seller_backend.app.services.billing import build_billing_services
from seller_backend.billing_config import load_billing_config

TEST_SECRET = "test-payment-secret"


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


class FakeProcessor:
    name = "fake"

    def __init__(self, secret: str = TEST_SECRET) -> None:
        self.signer = PaymentSigner(secret)
        self.orders: Dict[str, ProcessorOrder] = {}
        self.payments: Dict[str, ProcessorPayment] = {}
        self.create_calls: List[dict] = []
        self.fetch_calls: List[str] = []
        self.unavailable = False
        self.on_fetch: Optional[Callable[[str], None]] = None

    def create_order(self, *, amount: Money, receipt: str, notes) -> ProcessorOrder:
        self.create_calls.append({"amount": amount, "receipt": receipt, "notes": dict(notes)})
        order = ProcessorOrder(order_ref=f"order_{len(self.orders) + 1}", amount=amount, receipt=receipt)
        self.orders[order.order_ref] = order
        return order

    def fetch_payment(self, payment_ref: str) -> ProcessorPayment:
        self.fetch_calls.append(payment_ref)
        if self.unavailable:
            raise ProcessorUnavailable()
        hook, self.on_fetch = self.on_fetch, None
        if hook is not None:
            hook(payment_ref)
        return self.payments[payment_ref]

    def pay(
        self,
        order_ref: str,
        *,
        amount: Optional[Money] = None,
        status: ProcessorPaymentStatus = ProcessorPaymentStatus.CAPTURED,
    ) -> Dict[str, str]:
        payment_ref = f"pay_{len(self.payments) + 1}"
        self.payments[payment_ref] = ProcessorPayment(
            payment_ref=payment_ref,
            order_ref=order_ref,
            amount=amount or self.orders[order_ref].amount,
            status=status,
        )
        return {
            "order_ref": order_ref,
            "payment_ref": payment_ref,
            "signature": self.signer.sign(order_ref, payment_ref),
        }


class FakeUsageReader:
    def __init__(self) -> None:
        self.active_listings: Dict[str, int] = {}
        self.photos: Dict[tuple, int] = {}
        self.boosts: Dict[str, int] = {}
        self.boost_queries: List[tuple] = []

    def count_active_listings(self, seller_id: str) -> int:
        return self.active_listings.get(seller_id, 0)

    def count_photos(self, seller_id: str, listing_id: str) -> int:
        return self.photos.get((seller_id, listing_id), 0)

    def count_boosts_since(self, seller_id: str, since: datetime) -> int:
        self.boost_queries.append((seller_id, since))
        return self.boosts.get(seller_id, 0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def event_logger() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def usage_reader() -> FakeUsageReader:
    return FakeUsageReader()


@pytest.fixture
def repository() -> InMemoryBillingRepository:
    return InMemoryBillingRepository()


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def billing_config():
    return load_billing_config({"PAYMENT_KEY_SECRET": TEST_SECRET, "BILLING_STORE": "memory"})


@pytest.fixture
def services(billing_config, catalog, repository, processor, usage_reader, event_logger, clock):
    return build_billing_services(
        billing_config,
        catalog=catalog,
        repository=repository,
        processor=processor,
        usage_reader=usage_reader,
        event_logger=event_logger,
        clock=clock,
    )
