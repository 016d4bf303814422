"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, List, Optional, Protocol, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..entitlements.models import Money
from ..errors import ConcurrentModification
from .models import (
    SellerSubscription,
    SubscriptionStatus,
    Transaction,
    TransactionKind,
    TransactionStatus,
)
from ...app_context import get_conn


class BillingRepository(Protocol):
    """Persistence operations required by the billing services.

    Compare-and-swap misses raise :class:`ConcurrentModification` with
    ``resource`` set to ``"subscription"`` or ``"transaction"``.
    """

    def get_subscription(self, seller_id: str) -> Optional[SellerSubscription]:
        ...

    def create_subscription(self, subscription: SellerSubscription) -> SellerSubscription:
        """Insert the record unless one exists; return the stored record."""

    def replace_subscription(
        self,
        subscription: SellerSubscription,
        *,
        expected_revision: int,
    ) -> SellerSubscription:
        ...

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        ...

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        ...

    def get_transaction_by_order_ref(self, order_ref: str) -> Optional[Transaction]:
        ...

    def update_transaction(
        self,
        transaction: Transaction,
        *,
        expected_status: TransactionStatus,
    ) -> Transaction:
        ...

    def commit_activation(
        self,
        subscription: SellerSubscription,
        *,
        expected_revision: int,
        transaction: Transaction,
        transaction_expected_status: Optional[TransactionStatus],
    ) -> Tuple[SellerSubscription, Transaction]:
        """Write the subscription and its ledger entry in one unit of work.

        ``transaction_expected_status=None`` inserts the transaction, any other
        value updates it only while it still holds that status.
        """

    def record_refund(
        self,
        original: Transaction,
        refund: Transaction,
    ) -> Tuple[Transaction, Transaction]:
        ...

    def list_transactions(self, owner_id: str, *, offset: int, limit: int) -> List[Transaction]:
        ...

    def count_transactions(self, owner_id: str) -> int:
        ...


SCHEMA_STATEMENTS: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS seller_subscriptions (
        seller_id TEXT PRIMARY KEY,
        package_name TEXT,
        status TEXT NOT NULL,
        start_date TIMESTAMPTZ,
        end_date TIMESTAMPTZ,
        feature_snapshot JSONB NOT NULL DEFAULT '{}'::jsonb,
        revision INTEGER NOT NULL DEFAULT 0,
        transaction_id TEXT,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CHECK (end_date IS NULL OR end_date >= start_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS billing_transactions (
        transaction_id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        amount BIGINT NOT NULL CHECK (amount >= 0),
        currency CHAR(3) NOT NULL,
        status TEXT NOT NULL,
        package_name TEXT NOT NULL,
        processor_order_ref TEXT UNIQUE,
        processor_payment_ref TEXT,
        signature TEXT,
        receipt TEXT,
        feature_snapshot JSONB NOT NULL DEFAULT '{}'::jsonb,
        failure_reason TEXT,
        refund_of TEXT REFERENCES billing_transactions (transaction_id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS billing_transactions_owner_created_idx
        ON billing_transactions (owner_id, created_at DESC)
    """,
)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_subscription(row: dict) -> SellerSubscription:
    return SellerSubscription(
        seller_id=row["seller_id"],
        package_name=row.get("package_name"),
        status=SubscriptionStatus(row["status"]),
        start_date=row.get("start_date"),
        end_date=row.get("end_date"),
        feature_snapshot=row.get("feature_snapshot") or {},
        revision=int(row["revision"]),
        transaction_id=row.get("transaction_id"),
        updated_at=row["updated_at"],
    )


def _row_to_transaction(row: dict) -> Transaction:
    return Transaction(
        transaction_id=row["transaction_id"],
        owner_id=row["owner_id"],
        kind=TransactionKind(row["kind"]),
        amount=Money(amount=int(row["amount"]), currency=row["currency"].strip()),
        status=TransactionStatus(row["status"]),
        package_name=row["package_name"],
        processor_order_ref=row.get("processor_order_ref"),
        processor_payment_ref=row.get("processor_payment_ref"),
        signature=row.get("signature"),
        receipt=row.get("receipt"),
        feature_snapshot=row.get("feature_snapshot") or {},
        failure_reason=row.get("failure_reason"),
        refund_of=row.get("refund_of"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _subscription_params(subscription: SellerSubscription) -> dict:
    return {
        "seller_id": subscription.seller_id,
        "package_name": subscription.package_name,
        "status": subscription.status.value,
        "start_date": subscription.start_date,
        "end_date": subscription.end_date,
        "feature_snapshot": psycopg2.extras.Json(subscription.feature_snapshot),
        "revision": subscription.revision,
        "transaction_id": subscription.transaction_id,
        "updated_at": subscription.updated_at,
    }


def _transaction_params(transaction: Transaction) -> dict:
    return {
        "transaction_id": transaction.transaction_id,
        "owner_id": transaction.owner_id,
        "kind": transaction.kind.value,
        "amount": transaction.amount.amount,
        "currency": transaction.amount.currency,
        "status": transaction.status.value,
        "package_name": transaction.package_name,
        "processor_order_ref": transaction.processor_order_ref,
        "processor_payment_ref": transaction.processor_payment_ref,
        "signature": transaction.signature,
        "receipt": transaction.receipt,
        "feature_snapshot": psycopg2.extras.Json(transaction.feature_snapshot),
        "failure_reason": transaction.failure_reason,
        "refund_of": transaction.refund_of,
        "created_at": transaction.created_at,
        "updated_at": transaction.updated_at,
    }


_INSERT_TRANSACTION_SQL = """
    INSERT INTO billing_transactions (
        transaction_id,
        owner_id,
        kind,
        amount,
        currency,
        status,
        package_name,
        processor_order_ref,
        processor_payment_ref,
        signature,
        receipt,
        feature_snapshot,
        failure_reason,
        refund_of,
        created_at,
        updated_at
    )
    VALUES (%(transaction_id)s, %(owner_id)s, %(kind)s, %(amount)s, %(currency)s,
            %(status)s, %(package_name)s, %(processor_order_ref)s,
            %(processor_payment_ref)s, %(signature)s, %(receipt)s,
            %(feature_snapshot)s, %(failure_reason)s, %(refund_of)s,
            %(created_at)s, %(updated_at)s)
    RETURNING *
"""

_UPDATE_TRANSACTION_SQL = """
    UPDATE billing_transactions
    SET status = %(status)s,
        processor_payment_ref = %(processor_payment_ref)s,
        signature = %(signature)s,
        feature_snapshot = %(feature_snapshot)s,
        failure_reason = %(failure_reason)s,
        updated_at = %(updated_at)s
    WHERE transaction_id = %(transaction_id)s AND status = %(expected_status)s
    RETURNING *
"""

_REPLACE_SUBSCRIPTION_SQL = """
    UPDATE seller_subscriptions
    SET package_name = %(package_name)s,
        status = %(status)s,
        start_date = %(start_date)s,
        end_date = %(end_date)s,
        feature_snapshot = %(feature_snapshot)s,
        revision = revision + 1,
        transaction_id = %(transaction_id)s,
        updated_at = %(updated_at)s
    WHERE seller_id = %(seller_id)s AND revision = %(expected_revision)s
    RETURNING *
"""


class PostgresBillingRepository:
    """Concrete repository persisting billing models in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    @contextmanager
    def _unit_of_work(self) -> Iterable[PgCursor]:
        """Cursor whose statements succeed or fail together.

        Caller-owned connections are not committed here, so a savepoint
        undoes partial writes when a later statement fails.
        """

        with self._cursor() as cursor:
            if self._conn is None:
                yield cursor
                return
            cursor.execute("SAVEPOINT billing_unit_of_work")
            try:
                yield cursor
            except Exception:
                cursor.execute("ROLLBACK TO SAVEPOINT billing_unit_of_work")
                raise
            cursor.execute("RELEASE SAVEPOINT billing_unit_of_work")

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)

    def get_subscription(self, seller_id: str) -> Optional[SellerSubscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM seller_subscriptions
                WHERE seller_id = %s
                LIMIT 1
                """,
                (seller_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def create_subscription(self, subscription: SellerSubscription) -> SellerSubscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO seller_subscriptions (
                    seller_id,
                    package_name,
                    status,
                    start_date,
                    end_date,
                    feature_snapshot,
                    revision,
                    transaction_id,
                    updated_at
                )
                VALUES (%(seller_id)s, %(package_name)s, %(status)s, %(start_date)s,
                        %(end_date)s, %(feature_snapshot)s, %(revision)s,
                        %(transaction_id)s, %(updated_at)s)
                ON CONFLICT (seller_id) DO NOTHING
                """,
                _subscription_params(subscription),
            )
            cursor.execute(
                "SELECT * FROM seller_subscriptions WHERE seller_id = %s",
                (subscription.seller_id,),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def replace_subscription(
        self,
        subscription: SellerSubscription,
        *,
        expected_revision: int,
    ) -> SellerSubscription:
        with self._cursor() as cursor:
            return self._replace_subscription(cursor, subscription, expected_revision)

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        with self._cursor() as cursor:
            cursor.execute(_INSERT_TRANSACTION_SQL, _transaction_params(transaction))
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist transaction")
            return _row_to_transaction(row)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_transactions
                WHERE transaction_id = %s
                LIMIT 1
                """,
                (transaction_id,),
            )
            row = cursor.fetchone()
            return _row_to_transaction(row) if row else None

    def get_transaction_by_order_ref(self, order_ref: str) -> Optional[Transaction]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_transactions
                WHERE processor_order_ref = %s
                LIMIT 1
                """,
                (order_ref,),
            )
            row = cursor.fetchone()
            return _row_to_transaction(row) if row else None

    def update_transaction(
        self,
        transaction: Transaction,
        *,
        expected_status: TransactionStatus,
    ) -> Transaction:
        with self._cursor() as cursor:
            return self._update_transaction(cursor, transaction, expected_status)

    def commit_activation(
        self,
        subscription: SellerSubscription,
        *,
        expected_revision: int,
        transaction: Transaction,
        transaction_expected_status: Optional[TransactionStatus],
    ) -> Tuple[SellerSubscription, Transaction]:
        with self._unit_of_work() as cursor:
            if transaction_expected_status is None:
                cursor.execute(_INSERT_TRANSACTION_SQL, _transaction_params(transaction))
                row = cursor.fetchone()
                if not row:
                    raise RuntimeError("Failed to persist transaction")
                stored_transaction = _row_to_transaction(row)
            else:
                stored_transaction = self._update_transaction(cursor, transaction, transaction_expected_status)
            stored_subscription = self._replace_subscription(cursor, subscription, expected_revision)
            return stored_subscription, stored_transaction

    def record_refund(
        self,
        original: Transaction,
        refund: Transaction,
    ) -> Tuple[Transaction, Transaction]:
        with self._unit_of_work() as cursor:
            updated = self._update_transaction(cursor, original, TransactionStatus.COMPLETED)
            cursor.execute(_INSERT_TRANSACTION_SQL, _transaction_params(refund))
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist refund")
            return updated, _row_to_transaction(row)

    def list_transactions(self, owner_id: str, *, offset: int, limit: int) -> List[Transaction]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_transactions
                WHERE owner_id = %s
                ORDER BY created_at DESC, transaction_id DESC
                OFFSET %s
                LIMIT %s
                """,
                (owner_id, offset, limit),
            )
            rows = cursor.fetchall() or []
            return [_row_to_transaction(row) for row in rows]

    def count_transactions(self, owner_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS total FROM billing_transactions WHERE owner_id = %s",
                (owner_id,),
            )
            row = cursor.fetchone()
            return int(row["total"]) if row else 0

    def _replace_subscription(
        self,
        cursor: PgCursor,
        subscription: SellerSubscription,
        expected_revision: int,
    ) -> SellerSubscription:
        params = _subscription_params(subscription)
        params["expected_revision"] = expected_revision
        cursor.execute(_REPLACE_SUBSCRIPTION_SQL, params)
        row = cursor.fetchone()
        if not row:
            raise ConcurrentModification("subscription", subscription.seller_id)
        return _row_to_subscription(row)

    def _update_transaction(
        self,
        cursor: PgCursor,
        transaction: Transaction,
        expected_status: TransactionStatus,
    ) -> Transaction:
        params = _transaction_params(transaction)
        params["expected_status"] = expected_status.value
        cursor.execute(_UPDATE_TRANSACTION_SQL, params)
        row = cursor.fetchone()
        if not row:
            raise ConcurrentModification("transaction", transaction.transaction_id)
        return _row_to_transaction(row)


__all__ = [
    "BillingRepository",
    "PostgresBillingRepository",
    "SCHEMA_STATEMENTS",
    "managed_connection",
]
