"""Domain errors raised by the billing and entitlement services."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class BillingError(Exception):
    """Base class for errors surfaced to API callers with a stable code."""

    code = "billing_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Billing request could not be processed."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.detail = dict(detail) if detail else {}
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.detail)
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class UnknownPackage(BillingError):
    code = "unknown_package"
    default_message = "Unknown subscription package."

    def __init__(self, package_name: str) -> None:
        super().__init__(detail={"package": package_name})
        self.package_name = package_name


class PaidSubscriptionActive(BillingError):
    code = "paid_subscription_active"
    status_code = status.HTTP_409_CONFLICT
    default_message = "A paid subscription is still active."


class PaymentVerificationError(BillingError):
    """Base for failures of the payment confirmation protocol."""

    code = "payment_verification_failed"
    default_message = "Payment could not be verified."


class SignatureMismatch(PaymentVerificationError):
    """Raised for forged, replayed or unmatched confirmations.

    Every cause produces the same public payload; ``reason`` is for logs only.
    """

    def __init__(self, reason: str = "signature") -> None:
        super().__init__()
        self.reason = reason


class PriceMismatch(PaymentVerificationError):
    code = "price_mismatch"
    default_message = "Payment does not match the ordered package."


class AmountMismatch(PaymentVerificationError):
    code = "amount_mismatch"
    default_message = "Paid amount does not match the package price."


class PaymentPending(PaymentVerificationError):
    code = "payment_pending"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Payment has not been captured yet; retry shortly."


class PaymentFailed(PaymentVerificationError):
    code = "payment_failed"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Payment was declined by the processor."


class ProcessorUnavailable(BillingError):
    code = "processor_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Payment processor is unavailable; retry later."


class ProcessorRejected(BillingError):
    code = "processor_rejected"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment processor rejected the request."

    def __init__(self, upstream_status: int) -> None:
        super().__init__()
        self.upstream_status = upstream_status


class SubscriptionExpired(BillingError):
    code = "subscription_expired"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Subscription has expired. Downgraded to the Starter package."


class TransactionNotFound(BillingError):
    code = "transaction_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Transaction not found."


class InvalidTransactionTransition(BillingError):
    code = "invalid_transaction_transition"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Transaction status change is not permitted."


class ConcurrentModification(BillingError):
    """Optimistic concurrency conflict; retried internally before surfacing."""

    code = "concurrent_modification"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "The request conflicted with a concurrent update; retry."

    def __init__(self, resource: str, key: str) -> None:
        super().__init__()
        self.resource = resource
        self.key = key


__all__ = [
    "AmountMismatch",
    "BillingError",
    "ConcurrentModification",
    "InvalidTransactionTransition",
    "PaidSubscriptionActive",
    "PaymentFailed",
    "PaymentPending",
    "PaymentVerificationError",
    "PriceMismatch",
    "ProcessorRejected",
    "ProcessorUnavailable",
    "SignatureMismatch",
    "SubscriptionExpired",
    "TransactionNotFound",
    "UnknownPackage",
]
