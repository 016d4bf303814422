"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for payment processing and entitlement storage."""

    processor_name: str
    processor_base_url: str
    processor_key_id: str
    processor_key_secret: str
    processor_timeout_seconds: float
    processor_max_attempts: int
    processor_backoff_seconds: float
    store_name: str
    catalog_path: Optional[str]
    cas_max_attempts: int
    default_page_size: int
    max_page_size: int


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    processor_name = (env_mapping.get("PAYMENT_PROCESSOR") or "sandbox").strip().lower() or "sandbox"
    processor_base_url = env_mapping.get("PAYMENT_PROCESSOR_URL", "https://api.razorpay.com/v1")
    processor_key_id = env_mapping.get("PAYMENT_KEY_ID", "")
    processor_key_secret = env_mapping.get("PAYMENT_KEY_SECRET") or "dev-payment-secret"

    timeout_seconds = _to_float(env_mapping.get("PAYMENT_TIMEOUT_SECONDS"), default=10.0)
    if timeout_seconds <= 0:
        raise ValueError("PAYMENT_TIMEOUT_SECONDS must be positive")
    max_attempts = max(1, _to_int(env_mapping.get("PAYMENT_MAX_ATTEMPTS"), default=3))
    backoff_seconds = max(0.0, _to_float(env_mapping.get("PAYMENT_RETRY_BACKOFF"), default=0.5))

    store_name = (env_mapping.get("BILLING_STORE") or "postgres").strip().lower() or "postgres"
    catalog_path = env_mapping.get("BILLING_CATALOG_PATH") or None
    cas_max_attempts = max(1, _to_int(env_mapping.get("BILLING_CAS_MAX_ATTEMPTS"), default=5))

    max_page_size = max(1, _to_int(env_mapping.get("BILLING_MAX_PAGE_SIZE"), default=100))
    default_page_size = _to_int(env_mapping.get("BILLING_PAGE_SIZE"), default=20)
    default_page_size = min(max(1, default_page_size), max_page_size)

    return BillingConfig(
        processor_name=processor_name,
        processor_base_url=processor_base_url.rstrip("/"),
        processor_key_id=processor_key_id,
        processor_key_secret=processor_key_secret,
        processor_timeout_seconds=timeout_seconds,
        processor_max_attempts=max_attempts,
        processor_backoff_seconds=backoff_seconds,
        store_name=store_name,
        catalog_path=catalog_path,
        cas_max_attempts=cas_max_attempts,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
    )


__all__ = ["BillingConfig", "load_billing_config"]
