"""API routes exposing billing functionality."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, status

from ..errors import BillingError
from ..schemas.billing import (
    OrderRequest,
    OrderResponse,
    PaymentVerificationRequest,
    PaymentVerificationResponse,
    SubscriptionResponse,
    TransactionListResponse,
    TransactionResponse,
    UsageSummaryResponse,
)
from ..services.billing import get_billing_services
from ...app_context import get_current_user

logger = logging.getLogger(__name__)


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return get_current_user(session_token=session_token)


def _http_error(exc: BillingError) -> HTTPException:
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning("Billing request failed", extra={"billing_error": exc.code})
    return exc.to_http_exception()


router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.get("/packages")
def list_packages() -> Dict[str, Dict[str, Any]]:
    return get_billing_services().catalog.price_table()


@router.post("/orders", response_model=OrderResponse)
def create_order(
    payload: OrderRequest,
    *,
    current_user=Depends(_get_current_user),
) -> OrderResponse:
    services = get_billing_services()
    try:
        handle = services.orders.create_order(str(current_user.id), payload.package_name)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return OrderResponse.from_handle(handle)


@router.post("/payments/verify", response_model=PaymentVerificationResponse)
def verify_payment(
    payload: PaymentVerificationRequest,
    *,
    current_user=Depends(_get_current_user),
) -> PaymentVerificationResponse:
    services = get_billing_services()
    try:
        result = services.verifier.verify(
            seller_id=str(current_user.id),
            order_ref=payload.order_ref,
            payment_ref=payload.payment_ref,
            signature=payload.signature,
            package_name=payload.package_name,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return PaymentVerificationResponse.from_result(result)


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, alias="pageSize", ge=1),
    *,
    current_user=Depends(_get_current_user),
) -> TransactionListResponse:
    services = get_billing_services()
    size = min(page_size or services.config.default_page_size, services.config.max_page_size)
    result = services.ledger.list_for_owner(str(current_user.id), page=page, page_size=size)
    return TransactionListResponse.from_page(result)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> TransactionResponse:
    services = get_billing_services()
    try:
        transaction = services.ledger.get_for_owner(str(current_user.id), transaction_id)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return TransactionResponse.from_transaction(transaction)


@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription(
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionResponse:
    services = get_billing_services()
    subscription = services.subscriptions.get_subscription(str(current_user.id))
    return SubscriptionResponse.from_subscription(subscription)


@router.get("/entitlements/limits", response_model=UsageSummaryResponse)
def get_entitlement_limits(
    *,
    current_user=Depends(_get_current_user),
) -> UsageSummaryResponse:
    services = get_billing_services()
    try:
        summary = services.gate.usage_summary(str(current_user.id))
    except BillingError as exc:
        raise _http_error(exc) from exc
    return UsageSummaryResponse(**summary)
