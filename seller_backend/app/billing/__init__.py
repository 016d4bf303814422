"""Billing domain package: orders, payment verification, ledger and subscriptions."""

from .events import BillingEventLogger
from .ledger import TransactionLedger
from .memory import InMemoryBillingRepository
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    EnforcementDecision,
    EnforcementResult,
    OrderHandle,
    OrderStatus,
    ProcessorOrder,
    ProcessorPayment,
    ProcessorPaymentStatus,
    SellerSubscription,
    SubscriptionStatus,
    Transaction,
    TransactionKind,
    TransactionPage,
    TransactionStatus,
    VerificationResult,
)
from .orders import OrderService
from .processor import (
    HttpPaymentProcessor,
    PaymentProcessor,
    SandboxCallback,
    SandboxPaymentProcessor,
)
from .repository import BillingRepository, PostgresBillingRepository
from .signing import PaymentSigner
from .subscriptions import SubscriptionStateMachine
from .verification import PaymentVerifier

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingRepository",
    "EnforcementDecision",
    "EnforcementResult",
    "HttpPaymentProcessor",
    "InMemoryBillingRepository",
    "OrderHandle",
    "OrderService",
    "OrderStatus",
    "PaymentProcessor",
    "PaymentSigner",
    "PaymentVerifier",
    "PostgresBillingRepository",
    "ProcessorOrder",
    "ProcessorPayment",
    "ProcessorPaymentStatus",
    "SandboxCallback",
    "SandboxPaymentProcessor",
    "SellerSubscription",
    "SubscriptionStateMachine",
    "SubscriptionStatus",
    "Transaction",
    "TransactionKind",
    "TransactionLedger",
    "TransactionPage",
    "TransactionStatus",
    "VerificationResult",
]
