"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..entitlements.models import FeatureBundle, Money


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, Enum):
    """Lifecycle state of a seller subscription."""

    ACTIVE = "active"
    EXPIRED = "expired"


class TransactionKind(str, Enum):
    """Monetary event categories recorded in the ledger."""

    PURCHASE = "purchase"
    FREE_ACTIVATION = "free_activation"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    """Status of a ledger entry. Transitions only move forward."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


_ALLOWED_TRANSITIONS: Mapping[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED}),
    TransactionStatus.COMPLETED: frozenset({TransactionStatus.REFUNDED}),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


class SellerSubscription(BaseModel):
    """The entitlement state owned by a single seller."""

    seller_id: str
    package_name: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.EXPIRED
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    feature_snapshot: Dict[str, Any] = Field(default_factory=dict)
    revision: int = Field(default=0, ge=0)
    transaction_id: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _check_window(self) -> "SellerSubscription":
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date and end_date must be set together")
        if self.start_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self

    @property
    def has_package(self) -> bool:
        return self.package_name is not None

    @property
    def features(self) -> Optional[FeatureBundle]:
        """Granted feature bundle rebuilt from the stored snapshot."""

        if not self.feature_snapshot:
            return None
        return FeatureBundle.from_mapping(self.feature_snapshot)

    def is_expired_at(self, now: datetime) -> bool:
        return self.end_date is not None and now > self.end_date


class Transaction(BaseModel):
    """Append-only ledger entry for a monetary event."""

    transaction_id: str
    owner_id: str
    kind: TransactionKind
    amount: Money
    status: TransactionStatus = TransactionStatus.PENDING
    package_name: str
    processor_order_ref: Optional[str] = None
    processor_payment_ref: Optional[str] = None
    signature: Optional[str] = None
    receipt: Optional[str] = None
    feature_snapshot: Dict[str, Any] = Field(default_factory=dict)
    failure_reason: Optional[str] = None
    refund_of: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.status]


class OrderStatus(str, Enum):
    CREATED = "created"
    ALREADY_ACTIVE = "already_active"


class OrderHandle(BaseModel):
    """Return value of an order request."""

    package_name: str
    amount: Money
    status: OrderStatus
    order_ref: Optional[str] = None
    transaction_id: Optional[str] = None
    subscription: Optional[SellerSubscription] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProcessorOrder(BaseModel):
    """An order as acknowledged by the payment processor."""

    order_ref: str
    amount: Money
    receipt: Optional[str] = None
    status: str = "created"

    model_config = ConfigDict(frozen=True)


class ProcessorPaymentStatus(str, Enum):
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


class ProcessorPayment(BaseModel):
    """A payment as reported by the payment processor."""

    payment_ref: str
    order_ref: Optional[str] = None
    amount: Money
    status: ProcessorPaymentStatus

    model_config = ConfigDict(frozen=True)

    @property
    def is_paid(self) -> bool:
        return self.status in {ProcessorPaymentStatus.AUTHORIZED, ProcessorPaymentStatus.CAPTURED}


class VerificationResult(BaseModel):
    """Outcome of a successful payment verification."""

    subscription: SellerSubscription
    transaction: Transaction
    replayed: bool = False

    model_config = ConfigDict(frozen=True)


class EnforcementDecision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


class EnforcementResult(BaseModel):
    """Outcome of an expiry check for a seller."""

    decision: EnforcementDecision
    subscription: SellerSubscription
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def allowed(self) -> bool:
        return self.decision == EnforcementDecision.ALLOWED


class TransactionPage(BaseModel):
    items: List[Transaction]
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    total: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_DOWNGRADED = "subscription_downgraded"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    TRANSACTION_REFUNDED = "transaction_refunded"


class BillingAuditEvent(BaseModel):
    """Structured billing audit event."""

    event_type: BillingAuditEventType
    seller_id: Optional[str] = None
    transaction_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)
