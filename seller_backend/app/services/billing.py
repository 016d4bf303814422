"""Application wiring for the billing services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    BillingRepository,
    HttpPaymentProcessor,
    InMemoryBillingRepository,
    OrderService,
    PaymentProcessor,
    PaymentSigner,
    PaymentVerifier,
    PostgresBillingRepository,
    SandboxPaymentProcessor,
    SubscriptionStateMachine,
    TransactionLedger,
)
from ..entitlements import PackageCatalog, load_catalog
from ..feature_gates import EntitlementGate, PostgresUsageReader, UsageReader
from ...app_context import get_usage_reader
from ...billing_config import BillingConfig, load_billing_config

logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s seller=%s transaction=%s",
            event.event_type.value,
            event.seller_id,
            event.transaction_id,
            extra={
                "billing_event": event.event_type.value,
                "seller_id": event.seller_id,
                "transaction_id": event.transaction_id,
                "billing_metadata": dict(event.metadata),
                "occurred_at": event.occurred_at.isoformat(),
            },
        )


@dataclass(frozen=True)
class BillingServices:
    """Every billing collaborator, built once per process."""

    config: BillingConfig
    catalog: PackageCatalog
    repository: BillingRepository
    processor: PaymentProcessor
    ledger: TransactionLedger
    subscriptions: SubscriptionStateMachine
    orders: OrderService
    verifier: PaymentVerifier
    gate: EntitlementGate


def create_repository(config: BillingConfig) -> BillingRepository:
    if config.store_name == "memory":
        return InMemoryBillingRepository()
    if config.store_name == "postgres":
        return PostgresBillingRepository()
    raise ValueError(f"Unsupported BILLING_STORE {config.store_name!r}")


def create_payment_processor(config: BillingConfig) -> PaymentProcessor:
    if config.processor_name == "http":
        return HttpPaymentProcessor(
            base_url=config.processor_base_url,
            key_id=config.processor_key_id,
            key_secret=config.processor_key_secret,
            timeout_seconds=config.processor_timeout_seconds,
            max_attempts=config.processor_max_attempts,
            backoff_seconds=config.processor_backoff_seconds,
        )
    if config.processor_name == "sandbox":
        return SandboxPaymentProcessor(key_secret=config.processor_key_secret)
    raise ValueError(f"Unsupported PAYMENT_PROCESSOR {config.processor_name!r}")


def build_billing_services(
    config: BillingConfig,
    *,
    catalog: Optional[PackageCatalog] = None,
    repository: Optional[BillingRepository] = None,
    processor: Optional[PaymentProcessor] = None,
    usage_reader: Optional[UsageReader] = None,
    event_logger: Optional[BillingEventLogger] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> BillingServices:
    catalog = catalog or load_catalog(config.catalog_path)
    repository = repository or create_repository(config)
    processor = processor or create_payment_processor(config)
    event_logger = event_logger or LoggingBillingEventLogger()

    ledger = TransactionLedger(repository, event_logger=event_logger, clock=clock)
    subscriptions = SubscriptionStateMachine(
        repository,
        catalog,
        event_logger=event_logger,
        clock=clock,
        max_attempts=config.cas_max_attempts,
    )
    orders = OrderService(
        catalog=catalog,
        processor=processor,
        ledger=ledger,
        subscriptions=subscriptions,
        **({"clock": clock} if clock is not None else {}),
    )
    verifier = PaymentVerifier(
        catalog=catalog,
        processor=processor,
        ledger=ledger,
        subscriptions=subscriptions,
        signer=PaymentSigner(config.processor_key_secret),
        event_logger=event_logger,
    )
    gate = EntitlementGate(subscriptions, usage_reader or PostgresUsageReader())

    logger.info(
        "Billing services configured",
        extra={
            "billing_store": config.store_name,
            "payment_processor": processor.name,
            "catalog_version": catalog.version,
        },
    )
    return BillingServices(
        config=config,
        catalog=catalog,
        repository=repository,
        processor=processor,
        ledger=ledger,
        subscriptions=subscriptions,
        orders=orders,
        verifier=verifier,
        gate=gate,
    )


@lru_cache(maxsize=1)
def get_billing_services() -> BillingServices:
    return build_billing_services(load_billing_config(), usage_reader=get_usage_reader())


__all__ = [
    "BillingServices",
    "LoggingBillingEventLogger",
    "build_billing_services",
    "create_payment_processor",
    "create_repository",
    "get_billing_services",
]
