"""Append-only record of monetary events."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import uuid4

from ..entitlements.models import Package
from ..errors import ConcurrentModification, InvalidTransactionTransition, TransactionNotFound
from .events import BillingEventLogger
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    Transaction,
    TransactionKind,
    TransactionPage,
    TransactionStatus,
    can_transition,
)
from .repository import BillingRepository

logger = logging.getLogger(__name__)


def _new_transaction_id() -> str:
    return f"txn_{uuid4().hex}"


class TransactionLedger:
    """Creates ledger entries and moves them through their allowed statuses.

    Entries are never deleted. Status only moves ``pending -> completed|failed``
    and ``completed -> refunded``; every status write is a compare-and-swap on
    the previous status.
    """

    def __init__(
        self,
        repository: BillingRepository,
        *,
        event_logger: BillingEventLogger,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Callable[[], str] = _new_transaction_id,
    ) -> None:
        self._repository = repository
        self._event_logger = event_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory

    def record_pending_purchase(
        self,
        owner_id: str,
        package: Package,
        *,
        order_ref: str,
        receipt: str,
    ) -> Transaction:
        now = self._clock()
        transaction = Transaction(
            transaction_id=self._id_factory(),
            owner_id=owner_id,
            kind=TransactionKind.PURCHASE,
            amount=package.price,
            status=TransactionStatus.PENDING,
            package_name=package.name,
            processor_order_ref=order_ref,
            receipt=receipt,
            feature_snapshot=package.features.to_dict(),
            created_at=now,
            updated_at=now,
        )
        return self._repository.insert_transaction(transaction)

    def build_free_activation(self, owner_id: str, package: Package) -> Transaction:
        """Return an unsaved completed entry, committed together with the activation."""

        now = self._clock()
        return Transaction(
            transaction_id=self._id_factory(),
            owner_id=owner_id,
            kind=TransactionKind.FREE_ACTIVATION,
            amount=package.price,
            status=TransactionStatus.COMPLETED,
            package_name=package.name,
            feature_snapshot=package.features.to_dict(),
            created_at=now,
            updated_at=now,
        )

    def build_completion(
        self,
        transaction: Transaction,
        *,
        payment_ref: str,
        signature: str,
        feature_snapshot: Dict[str, Any],
    ) -> Transaction:
        """Return ``transaction`` moved to completed; the caller commits it."""

        return self._transition(
            transaction,
            TransactionStatus.COMPLETED,
            processor_payment_ref=payment_ref,
            signature=signature,
            feature_snapshot=dict(feature_snapshot),
        )

    def mark_failed(self, transaction: Transaction, reason: str) -> Transaction:
        failed = self._transition(transaction, TransactionStatus.FAILED, failure_reason=reason)
        try:
            return self._repository.update_transaction(failed, expected_status=transaction.status)
        except ConcurrentModification:
            logger.info(
                "Transaction changed before it could be marked failed",
                extra={"transaction_id": transaction.transaction_id, "failure_reason": reason},
            )
            return self.get(transaction.transaction_id)

    def refund(self, transaction_id: str, *, refund_ref: str, reason: str = "") -> Tuple[Transaction, Transaction]:
        """Mark a completed purchase refunded and append the matching refund entry."""

        original = self.get(transaction_id)
        if original.kind != TransactionKind.PURCHASE:
            raise InvalidTransactionTransition(f"{original.kind.value} transactions cannot be refunded")

        refunded = self._transition(original, TransactionStatus.REFUNDED)
        now = refunded.updated_at
        refund_entry = Transaction(
            transaction_id=self._id_factory(),
            owner_id=original.owner_id,
            kind=TransactionKind.REFUND,
            amount=original.amount,
            status=TransactionStatus.COMPLETED,
            package_name=original.package_name,
            processor_order_ref=None,
            processor_payment_ref=refund_ref,
            feature_snapshot=dict(original.feature_snapshot),
            refund_of=original.transaction_id,
            created_at=now,
            updated_at=now,
        )
        try:
            stored_original, stored_refund = self._repository.record_refund(refunded, refund_entry)
        except ConcurrentModification as exc:
            raise InvalidTransactionTransition("Transaction is no longer refundable") from exc

        self._event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.TRANSACTION_REFUNDED,
                seller_id=original.owner_id,
                transaction_id=original.transaction_id,
                metadata={
                    "refund_transaction_id": stored_refund.transaction_id,
                    "refund_ref": refund_ref,
                    "amount": str(original.amount),
                    "reason": reason,
                },
                occurred_at=now,
            )
        )
        return stored_original, stored_refund

    def get(self, transaction_id: str) -> Transaction:
        transaction = self._repository.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound()
        return transaction

    def get_for_owner(self, owner_id: str, transaction_id: str) -> Transaction:
        transaction = self._repository.get_transaction(transaction_id)
        if transaction is None or transaction.owner_id != owner_id:
            raise TransactionNotFound()
        return transaction

    def find_by_order_ref(self, order_ref: str) -> Optional[Transaction]:
        return self._repository.get_transaction_by_order_ref(order_ref)

    def list_for_owner(self, owner_id: str, *, page: int, page_size: int) -> TransactionPage:
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        items = self._repository.list_transactions(owner_id, offset=(page - 1) * page_size, limit=page_size)
        total = self._repository.count_transactions(owner_id)
        return TransactionPage(items=list(items), page=page, page_size=page_size, total=total)

    def _transition(self, transaction: Transaction, target: TransactionStatus, **changes: Any) -> Transaction:
        if not can_transition(transaction.status, target):
            raise InvalidTransactionTransition(
                f"Cannot move transaction from {transaction.status.value} to {target.value}"
            )
        return transaction.model_copy(update={"status": target, "updated_at": self._clock(), **changes})


__all__ = ["TransactionLedger"]
