"""Payment processor integrations."""
from __future__ import annotations

import base64
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple, Type, TypeVar
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request
from uuid import uuid4

from ..entitlements.models import Money
from ..errors import ProcessorRejected, ProcessorUnavailable
from .models import ProcessorOrder, ProcessorPayment, ProcessorPaymentStatus
from .signing import PaymentSigner

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PaymentProcessor(Protocol):
    """External payment processor integration."""

    name: str

    def create_order(self, *, amount: Money, receipt: str, notes: Mapping[str, str]) -> ProcessorOrder:
        """Create an order for exactly ``amount``."""

    def fetch_payment(self, payment_ref: str) -> ProcessorPayment:
        """Look up a payment; raises ``ProcessorUnavailable`` once retries are spent."""


class TransientProcessorError(Exception):
    """Upstream failure worth retrying (network error, 5xx, unreadable body)."""


def call_with_retries(
    operation: Callable[[], T],
    *,
    attempts: int,
    backoff_seconds: float,
    retry_on: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], None] = time.sleep,
    description: str = "processor call",
) -> T:
    """Run ``operation`` with linear backoff, raising ``ProcessorUnavailable`` when exhausted."""

    attempts = max(1, attempts)
    backoff = max(0.0, backoff_seconds)

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except retry_on as exc:
            logger.warning(
                "Payment processor call failed",
                extra={
                    "processor_call": description,
                    "processor_attempt": attempt,
                    "processor_attempts": attempts,
                    "error": str(exc),
                },
            )
            if attempt >= attempts:
                raise ProcessorUnavailable() from exc
            if backoff > 0:
                sleep(backoff * attempt)
    raise ProcessorUnavailable()  # pragma: no cover - loop always returns or raises


def _money_from_payload(payload: Mapping[str, Any]) -> Money:
    return Money(amount=int(payload["amount"]), currency=str(payload["currency"]))


class HttpPaymentProcessor:
    """REST client for a Razorpay-style processor (``/orders`` and ``/payments``)."""

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        key_id: str,
        key_secret: str,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        opener: Callable[..., Any] = urllib_request.urlopen,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._opener = opener
        self._sleep = sleep
        credentials = f"{key_id}:{key_secret}".encode("utf-8")
        self._authorization = "Basic " + base64.b64encode(credentials).decode("ascii")

    def create_order(self, *, amount: Money, receipt: str, notes: Mapping[str, str]) -> ProcessorOrder:
        payload = self._request(
            "POST",
            "/orders",
            {
                "amount": amount.amount,
                "currency": amount.currency,
                "receipt": receipt,
                "notes": dict(notes),
            },
        )
        return ProcessorOrder(
            order_ref=str(payload["id"]),
            amount=_money_from_payload(payload),
            receipt=payload.get("receipt"),
            status=str(payload.get("status", "created")),
        )

    def fetch_payment(self, payment_ref: str) -> ProcessorPayment:
        payload = self._request("GET", f"/payments/{urllib_parse.quote(payment_ref, safe='')}")
        return ProcessorPayment(
            payment_ref=str(payload["id"]),
            order_ref=payload.get("order_id"),
            amount=_money_from_payload(payload),
            status=ProcessorPaymentStatus(str(payload["status"])),
        )

    def _request(self, method: str, path: str, body: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {"Authorization": self._authorization, "Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"

        def send() -> Dict[str, Any]:
            request = urllib_request.Request(url, data=data, headers=headers, method=method)
            try:
                with self._opener(request, timeout=self.timeout_seconds) as response:
                    raw = response.read()
            except urllib_error.HTTPError as exc:
                if exc.code >= 500:
                    raise TransientProcessorError(f"upstream status {exc.code}") from exc
                logger.warning(
                    "Payment processor rejected request",
                    extra={"processor_path": path, "upstream_status": exc.code},
                )
                raise ProcessorRejected(exc.code) from exc
            try:
                return json.loads(raw.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise TransientProcessorError("unreadable processor response") from exc

        return call_with_retries(
            send,
            attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            retry_on=(TransientProcessorError, urllib_error.URLError, TimeoutError, ConnectionError),
            sleep=self._sleep,
            description=f"{method} {path}",
        )


@dataclass(frozen=True)
class SandboxCallback:
    """The fields a checkout widget posts back after a sandbox payment."""

    order_ref: str
    payment_ref: str
    signature: str


class SandboxPaymentProcessor:
    """In-process processor for local development and tests."""

    name = "sandbox"

    def __init__(self, *, key_secret: str) -> None:
        self._signer = PaymentSigner(key_secret)
        self._lock = threading.Lock()
        self._orders: Dict[str, ProcessorOrder] = {}
        self._payments: Dict[str, ProcessorPayment] = {}

    def create_order(self, *, amount: Money, receipt: str, notes: Mapping[str, str]) -> ProcessorOrder:
        order = ProcessorOrder(order_ref=f"order_{uuid4().hex[:14]}", amount=amount, receipt=receipt)
        with self._lock:
            self._orders[order.order_ref] = order
        return order

    def fetch_payment(self, payment_ref: str) -> ProcessorPayment:
        with self._lock:
            payment = self._payments.get(payment_ref)
        if payment is None:
            raise ProcessorRejected(404)
        return payment

    def capture(
        self,
        order_ref: str,
        *,
        amount: Optional[Money] = None,
        status: ProcessorPaymentStatus = ProcessorPaymentStatus.CAPTURED,
    ) -> SandboxCallback:
        """Record a payment against an order and return a signed callback."""

        with self._lock:
            order = self._orders.get(order_ref)
            if order is None:
                raise ProcessorRejected(404)
            payment = ProcessorPayment(
                payment_ref=f"pay_{uuid4().hex[:14]}",
                order_ref=order_ref,
                amount=amount or order.amount,
                status=status,
            )
            self._payments[payment.payment_ref] = payment
        return SandboxCallback(
            order_ref=order_ref,
            payment_ref=payment.payment_ref,
            signature=self._signer.sign(order_ref, payment.payment_ref),
        )


__all__ = [
    "HttpPaymentProcessor",
    "PaymentProcessor",
    "SandboxCallback",
    "SandboxPaymentProcessor",
    "TransientProcessorError",
    "call_with_retries",
]
