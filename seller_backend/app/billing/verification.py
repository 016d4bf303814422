"""Verification of processor payment callbacks."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..entitlements.catalog import PackageCatalog
from ..errors import (
    AmountMismatch,
    ConcurrentModification,
    PaymentFailed,
    PaymentPending,
    PaymentVerificationError,
    PriceMismatch,
    ProcessorUnavailable,
    SignatureMismatch,
)
from .events import BillingEventLogger
from .ledger import TransactionLedger
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    ProcessorPaymentStatus,
    Transaction,
    TransactionKind,
    TransactionStatus,
    VerificationResult,
)
from .processor import PaymentProcessor
from .signing import PaymentSigner
from .subscriptions import SubscriptionStateMachine

logger = logging.getLogger(__name__)


@dataclass
class PaymentVerifier:
    """Confirms a processor callback and activates the paid subscription.

    Checks run in a fixed order: signature, order ownership, idempotent replay,
    package, processor payment state, then amount against the catalog price.
    Only when all pass is the transaction completed, atomically with the
    activation.
    """

    catalog: PackageCatalog
    processor: PaymentProcessor
    ledger: TransactionLedger
    subscriptions: SubscriptionStateMachine
    signer: PaymentSigner
    event_logger: BillingEventLogger

    def verify(
        self,
        *,
        seller_id: str,
        order_ref: str,
        payment_ref: str,
        signature: str,
        package_name: str,
    ) -> VerificationResult:
        try:
            return self._verify(
                seller_id=seller_id,
                order_ref=order_ref,
                payment_ref=payment_ref,
                signature=signature,
                package_name=package_name,
            )
        except PaymentVerificationError as exc:
            reason = getattr(exc, "reason", exc.code)
            logger.warning(
                "Payment verification rejected",
                extra={"seller_id": seller_id, "order_ref": order_ref, "rejection_reason": reason},
            )
            self.event_logger.log(
                BillingAuditEvent(
                    event_type=BillingAuditEventType.PAYMENT_REJECTED,
                    seller_id=seller_id,
                    metadata={"order_ref": order_ref, "payment_ref": payment_ref, "reason": reason},
                )
            )
            raise

    def _verify(
        self,
        *,
        seller_id: str,
        order_ref: str,
        payment_ref: str,
        signature: str,
        package_name: str,
    ) -> VerificationResult:
        if not self.signer.verify(order_ref, payment_ref, signature):
            raise SignatureMismatch("signature")

        transaction = self.ledger.find_by_order_ref(order_ref)
        if (
            transaction is None
            or transaction.owner_id != seller_id
            or transaction.kind != TransactionKind.PURCHASE
        ):
            raise SignatureMismatch("unknown_order")

        if transaction.status == TransactionStatus.COMPLETED:
            if transaction.processor_payment_ref == payment_ref:
                return self._replayed(seller_id, transaction)
            raise SignatureMismatch("payment_ref_mismatch")
        if transaction.status != TransactionStatus.PENDING:
            raise SignatureMismatch(f"transaction_{transaction.status.value}")

        if package_name != transaction.package_name:
            self.ledger.mark_failed(transaction, "package_mismatch")
            raise PriceMismatch()
        package = self.catalog.get_package(transaction.package_name)

        try:
            payment = self.processor.fetch_payment(payment_ref)
        except ProcessorUnavailable:
            logger.warning(
                "Payment lookup unavailable; transaction left pending",
                extra={"seller_id": seller_id, "transaction_id": transaction.transaction_id},
            )
            raise

        if payment.order_ref != order_ref:
            raise SignatureMismatch("payment_order_mismatch")
        if payment.status == ProcessorPaymentStatus.CREATED:
            raise PaymentPending()
        if not payment.is_paid:
            self.ledger.mark_failed(transaction, f"payment_{payment.status.value}")
            raise PaymentFailed()
        if payment.amount != package.price:
            self.ledger.mark_failed(transaction, "amount_mismatch")
            raise AmountMismatch(
                detail={"expected": package.price.amount, "currency": package.price.currency}
            )

        completed = self.ledger.build_completion(
            transaction,
            payment_ref=payment_ref,
            signature=signature,
            feature_snapshot=package.features.to_dict(),
        )
        try:
            subscription, stored = self.subscriptions.activate_with_ledger(
                seller_id,
                package.name,
                completed,
                expected_status=TransactionStatus.PENDING,
            )
        except ConcurrentModification as exc:
            if exc.resource != "transaction":
                raise
            latest = self.ledger.get(transaction.transaction_id)
            if latest.status == TransactionStatus.COMPLETED and latest.processor_payment_ref == payment_ref:
                return self._replayed(seller_id, latest)
            raise SignatureMismatch("concurrent_verification") from exc

        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PAYMENT_VERIFIED,
                seller_id=seller_id,
                transaction_id=transaction.transaction_id,
                metadata={
                    "order_ref": order_ref,
                    "payment_ref": payment_ref,
                    "package": package.name,
                    "amount": str(package.price),
                },
            )
        )
        return VerificationResult(subscription=subscription, transaction=stored, replayed=False)

    def _replayed(self, seller_id: str, transaction: Transaction) -> VerificationResult:
        logger.info(
            "Payment verification replayed",
            extra={"seller_id": seller_id, "transaction_id": transaction.transaction_id},
        )
        return VerificationResult(
            subscription=self.subscriptions.get_subscription(seller_id),
            transaction=transaction,
            replayed=True,
        )


__all__ = ["PaymentVerifier"]
