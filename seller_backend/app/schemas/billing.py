"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import OrderHandle, SellerSubscription, Transaction, TransactionPage, VerificationResult


class OrderRequest(BaseModel):
    package_name: str = Field(alias="packageName", min_length=1, max_length=64)

    # Any client-sent amount or currency is dropped; prices come from the catalog.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PaymentVerificationRequest(BaseModel):
    order_ref: str = Field(alias="orderRef", min_length=1, max_length=128)
    payment_ref: str = Field(alias="paymentRef", min_length=1, max_length=128)
    signature: str = Field(min_length=1, max_length=256)
    package_name: str = Field(alias="packageName", min_length=1, max_length=64)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SubscriptionResponse(BaseModel):
    seller_id: str = Field(alias="sellerId")
    package_name: Optional[str] = Field(alias="packageName", default=None)
    status: str
    start_date: Optional[datetime] = Field(alias="startDate", default=None)
    end_date: Optional[datetime] = Field(alias="endDate", default=None)
    features: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: SellerSubscription) -> "SubscriptionResponse":
        return cls(
            seller_id=subscription.seller_id,
            package_name=subscription.package_name,
            status=subscription.status.value,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            features=dict(subscription.feature_snapshot),
        )


class TransactionResponse(BaseModel):
    transaction_id: str = Field(alias="transactionId")
    kind: str
    status: str
    package_name: str = Field(alias="packageName")
    amount: int
    currency: str
    display_amount: str = Field(alias="displayAmount")
    order_ref: Optional[str] = Field(alias="orderRef", default=None)
    payment_ref: Optional[str] = Field(alias="paymentRef", default=None)
    receipt: Optional[str] = None
    refund_of: Optional[str] = Field(alias="refundOf", default=None)
    features: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionResponse":
        return cls(
            transaction_id=transaction.transaction_id,
            kind=transaction.kind.value,
            status=transaction.status.value,
            package_name=transaction.package_name,
            amount=transaction.amount.amount,
            currency=transaction.amount.currency,
            display_amount=transaction.amount.display(),
            order_ref=transaction.processor_order_ref,
            payment_ref=transaction.processor_payment_ref,
            receipt=transaction.receipt,
            refund_of=transaction.refund_of,
            features=dict(transaction.feature_snapshot),
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )


class OrderResponse(BaseModel):
    order_ref: Optional[str] = Field(alias="orderRef", default=None)
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)
    amount: int
    currency: str
    package_name: str = Field(alias="packageName")
    status: str
    subscription: Optional[SubscriptionResponse] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_handle(cls, handle: OrderHandle) -> "OrderResponse":
        return cls(
            order_ref=handle.order_ref,
            transaction_id=handle.transaction_id,
            amount=handle.amount.amount,
            currency=handle.amount.currency,
            package_name=handle.package_name,
            status=handle.status.value,
            subscription=(
                SubscriptionResponse.from_subscription(handle.subscription) if handle.subscription else None
            ),
        )


class PaymentVerificationResponse(BaseModel):
    subscription: SubscriptionResponse
    transaction: TransactionResponse
    replayed: bool

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: VerificationResult) -> "PaymentVerificationResponse":
        return cls(
            subscription=SubscriptionResponse.from_subscription(result.subscription),
            transaction=TransactionResponse.from_transaction(result.transaction),
            replayed=result.replayed,
        )


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    page: int
    page_size: int = Field(alias="pageSize")
    total: int

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_page(cls, page: TransactionPage) -> "TransactionListResponse":
        return cls(
            items=[TransactionResponse.from_transaction(item) for item in page.items],
            page=page.page,
            page_size=page.page_size,
            total=page.total,
        )


class UsageSummaryResponse(BaseModel):
    package: Optional[str] = None
    status: str
    end_date: Optional[str] = Field(alias="endDate", default=None)
    max_listings: int = Field(alias="maxListings")
    current_active: int = Field(alias="currentActive")
    remaining_slots: int = Field(alias="remainingSlots")
    max_photos: int = Field(alias="maxPhotos")
    boosts_total: int = Field(alias="boostsTotal")
    boosts_used: int = Field(alias="boostsUsed")
    boosts_remaining: int = Field(alias="boostsRemaining")
    analytics: bool
    search_placement: str = Field(alias="searchPlacement")
    badges: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)
