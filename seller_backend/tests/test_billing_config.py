from __future__ import annotations

import pytest

from seller_backend.app.billing import (
    BillingAuditEvent,
    BillingAuditEventType,
    HttpPaymentProcessor,
    InMemoryBillingRepository,
    PostgresBillingRepository,
    SandboxPaymentProcessor,
)
from seller_backend.app.services.billing import (
    LoggingBillingEventLogger,
    build_billing_services,
    create_payment_processor,
    create_repository,
)
from seller_backend.billing_config import load_billing_config


def test_defaults() -> None:
    config = load_billing_config({})

    assert config.processor_name == "sandbox"
    assert config.processor_base_url == "https://api.razorpay.com/v1"
    assert config.processor_timeout_seconds == 10.0
    assert config.processor_max_attempts == 3
    assert config.processor_backoff_seconds == 0.5
    assert config.store_name == "postgres"
    assert config.catalog_path is None
    assert config.cas_max_attempts == 5
    assert (config.default_page_size, config.max_page_size) == (20, 100)


def test_overrides_are_normalized() -> None:
    config = load_billing_config(
        {
            "PAYMENT_PROCESSOR": " HTTP ",
            "PAYMENT_PROCESSOR_URL": "https://processor.test/v1/",
            "PAYMENT_KEY_ID": "rzp_test",
            "PAYMENT_KEY_SECRET": "shh",
            "PAYMENT_TIMEOUT_SECONDS": "2.5",
            "PAYMENT_MAX_ATTEMPTS": "0",
            "PAYMENT_RETRY_BACKOFF": "-1",
            "BILLING_STORE": "Memory",
            "BILLING_CATALOG_PATH": "/etc/catalog.json",
            "BILLING_PAGE_SIZE": "500",
            "BILLING_MAX_PAGE_SIZE": "50",
        }
    )

    assert config.processor_name == "http"
    assert config.processor_base_url == "https://processor.test/v1"
    assert config.processor_key_secret == "shh"
    assert config.processor_timeout_seconds == 2.5
    assert config.processor_max_attempts == 1
    assert config.processor_backoff_seconds == 0.0
    assert config.store_name == "memory"
    assert config.catalog_path == "/etc/catalog.json"
    assert config.default_page_size == 50


@pytest.mark.parametrize(
    "env",
    [
        {"PAYMENT_TIMEOUT_SECONDS": "0"},
        {"PAYMENT_TIMEOUT_SECONDS": "soon"},
        {"PAYMENT_MAX_ATTEMPTS": "three"},
        {"BILLING_PAGE_SIZE": "1.5"},
    ],
)
def test_invalid_values_raise(env) -> None:
    with pytest.raises(ValueError):
        load_billing_config(env)


def test_factories_follow_config() -> None:
    memory = load_billing_config({"BILLING_STORE": "memory"})
    postgres = load_billing_config({})
    http = load_billing_config({"PAYMENT_PROCESSOR": "http", "PAYMENT_KEY_ID": "id", "PAYMENT_KEY_SECRET": "s"})

    assert isinstance(create_repository(memory), InMemoryBillingRepository)
    assert isinstance(create_repository(postgres), PostgresBillingRepository)
    assert isinstance(create_payment_processor(postgres), SandboxPaymentProcessor)
    assert isinstance(create_payment_processor(http), HttpPaymentProcessor)

    with pytest.raises(ValueError):
        create_repository(load_billing_config({"BILLING_STORE": "redis"}))
    with pytest.raises(ValueError):
        create_payment_processor(load_billing_config({"PAYMENT_PROCESSOR": "stripe"}))


def test_sandbox_services_complete_a_purchase(usage_reader, clock) -> None:
    config = load_billing_config({"BILLING_STORE": "memory", "PAYMENT_KEY_SECRET": "sandbox-secret"})
    services = build_billing_services(config, usage_reader=usage_reader, clock=clock)

    assert isinstance(services.processor, SandboxPaymentProcessor)
    handle = services.orders.create_order("seller-1", "Trot")
    callback = services.processor.capture(handle.order_ref)

    result = services.verifier.verify(
        seller_id="seller-1",
        order_ref=callback.order_ref,
        payment_ref=callback.payment_ref,
        signature=callback.signature,
        package_name="Trot",
    )

    assert result.subscription.package_name == "Trot"
    assert services.gate.authorize("seller-1", "create_listing").allowed


def test_logging_event_logger_emits_record(caplog) -> None:
    caplog.set_level("INFO", logger="billing")
    LoggingBillingEventLogger().log(
        BillingAuditEvent(event_type=BillingAuditEventType.PAYMENT_VERIFIED, seller_id="seller-1", transaction_id="txn_1")
    )

    record = caplog.records[-1]
    assert record.billing_event == "payment_verified"
    assert record.seller_id == "seller-1"
