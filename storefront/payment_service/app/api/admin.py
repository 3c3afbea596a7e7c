"""Operator endpoints for order status and payment auditing."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import CurrentUser, get_notifier, get_store, require_admin
from ..exceptions import StorefrontError
from ..notifications import OrderNotifier
from ..repository import PaymentStore
from ..schemas import (
    OrderResponse,
    OrderStatusUpdate,
    PaymentEventResponse,
    PaymentListResponse,
    PaymentResponse,
)
from .errors import http_error

router = APIRouter(prefix="/admin", tags=["admin"])


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    admin: CurrentUser = Depends(require_admin),
    store: PaymentStore = Depends(get_store),
    notifier: OrderNotifier = Depends(get_notifier),
) -> OrderResponse:
    try:
        change = await store.update_order_status(order_id, payload.status)
    except StorefrontError as exc:
        raise http_error(exc) from exc
    await notifier.order_status_changed(change.order, previous_status=change.previous_status, actor_id=admin.id)
    return OrderResponse.model_validate(change.order)


@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: int | None = Query(default=None, alias="userId"),
    status_filter: str | None = Query(default=None, alias="status"),
    _: CurrentUser = Depends(require_admin),
    store: PaymentStore = Depends(get_store),
) -> PaymentListResponse:
    payments, total = await store.list_payments(user_id=user_id, status=status_filter, limit=limit, offset=offset)
    items = [PaymentResponse.model_validate(payment) for payment in payments]
    return PaymentListResponse(items=items, total=total)


@router.get("/payments/{transaction_id}/events", response_model=list[PaymentEventResponse])
async def get_payment_events(
    transaction_id: str,
    _: CurrentUser = Depends(require_admin),
    store: PaymentStore = Depends(get_store),
) -> list[PaymentEventResponse]:
    payment = await store.get_payment_by_transaction_id(transaction_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    events = await store.list_payment_events(transaction_id)
    return [PaymentEventResponse.model_validate(event) for event in events]
