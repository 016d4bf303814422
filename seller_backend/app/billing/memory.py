"""In-memory billing repository for tests and local development."""
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from ..errors import ConcurrentModification
from .models import SellerSubscription, Transaction, TransactionStatus


class InMemoryBillingRepository:
    """Lock-protected store honouring the same compare-and-swap rules as Postgres."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, SellerSubscription] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._order_index: Dict[str, str] = {}
        self.subscription_writes = 0

    def get_subscription(self, seller_id: str) -> Optional[SellerSubscription]:
        with self._lock:
            return self._subscriptions.get(seller_id)

    def create_subscription(self, subscription: SellerSubscription) -> SellerSubscription:
        with self._lock:
            return self._subscriptions.setdefault(subscription.seller_id, subscription)

    def replace_subscription(
        self,
        subscription: SellerSubscription,
        *,
        expected_revision: int,
    ) -> SellerSubscription:
        with self._lock:
            return self._replace_subscription(subscription, expected_revision)

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        with self._lock:
            return self._insert_transaction(transaction)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return self._transactions.get(transaction_id)

    def get_transaction_by_order_ref(self, order_ref: str) -> Optional[Transaction]:
        with self._lock:
            transaction_id = self._order_index.get(order_ref)
            return self._transactions.get(transaction_id) if transaction_id else None

    def update_transaction(
        self,
        transaction: Transaction,
        *,
        expected_status: TransactionStatus,
    ) -> Transaction:
        with self._lock:
            self._check_transaction_status(transaction.transaction_id, expected_status)
            self._transactions[transaction.transaction_id] = transaction
            return transaction

    def commit_activation(
        self,
        subscription: SellerSubscription,
        *,
        expected_revision: int,
        transaction: Transaction,
        transaction_expected_status: Optional[TransactionStatus],
    ) -> Tuple[SellerSubscription, Transaction]:
        with self._lock:
            # Validate both writes before applying either.
            self._check_revision(subscription.seller_id, expected_revision)
            if transaction_expected_status is None:
                if transaction.transaction_id in self._transactions:
                    raise ValueError(f"duplicate transaction {transaction.transaction_id}")
            else:
                self._check_transaction_status(transaction.transaction_id, transaction_expected_status)

            if transaction_expected_status is None:
                stored_transaction = self._insert_transaction(transaction)
            else:
                self._transactions[transaction.transaction_id] = transaction
                stored_transaction = transaction
            stored_subscription = self._replace_subscription(subscription, expected_revision)
            return stored_subscription, stored_transaction

    def record_refund(
        self,
        original: Transaction,
        refund: Transaction,
    ) -> Tuple[Transaction, Transaction]:
        with self._lock:
            self._check_transaction_status(original.transaction_id, TransactionStatus.COMPLETED)
            if refund.transaction_id in self._transactions:
                raise ValueError(f"duplicate transaction {refund.transaction_id}")
            self._transactions[original.transaction_id] = original
            return original, self._insert_transaction(refund)

    def list_transactions(self, owner_id: str, *, offset: int, limit: int) -> List[Transaction]:
        with self._lock:
            owned = [txn for txn in self._transactions.values() if txn.owner_id == owner_id]
        owned.sort(key=lambda txn: (txn.created_at, txn.transaction_id), reverse=True)
        return owned[offset : offset + limit]

    def count_transactions(self, owner_id: str) -> int:
        with self._lock:
            return sum(1 for txn in self._transactions.values() if txn.owner_id == owner_id)

    def _check_revision(self, seller_id: str, expected_revision: int) -> None:
        current = self._subscriptions.get(seller_id)
        if current is None or current.revision != expected_revision:
            raise ConcurrentModification("subscription", seller_id)

    def _check_transaction_status(self, transaction_id: str, expected_status: TransactionStatus) -> None:
        current = self._transactions.get(transaction_id)
        if current is None or current.status != expected_status:
            raise ConcurrentModification("transaction", transaction_id)

    def _replace_subscription(self, subscription: SellerSubscription, expected_revision: int) -> SellerSubscription:
        self._check_revision(subscription.seller_id, expected_revision)
        stored = subscription.model_copy(update={"revision": expected_revision + 1})
        self._subscriptions[subscription.seller_id] = stored
        self.subscription_writes += 1
        return stored

    def _insert_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.transaction_id in self._transactions:
            raise ValueError(f"duplicate transaction {transaction.transaction_id}")
        if transaction.processor_order_ref:
            if transaction.processor_order_ref in self._order_index:
                raise ValueError(f"duplicate order reference {transaction.processor_order_ref}")
            self._order_index[transaction.processor_order_ref] = transaction.transaction_id
        self._transactions[transaction.transaction_id] = transaction
        return transaction


__all__ = ["InMemoryBillingRepository"]
