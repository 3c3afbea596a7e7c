"""Customer-facing order endpoints: checkout, order history and delay reports."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..dependencies import (
    CurrentUser,
    get_checkout_service,
    get_current_user,
    get_delay_report_service,
    get_store,
)
from ..exceptions import StorefrontError
from ..repository import PaymentStore
from ..schemas import (
    CheckoutRequest,
    CheckoutResponse,
    DelayReportResponse,
    LegacyOrderCreate,
    LegacyOrderResponse,
    OrderListResponse,
    OrderResponse,
)
from ..services import CartLine, CheckoutService, DelayReportService
from .errors import http_error

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutResponse:
    lines = [
        CartLine(service_id=item.service_id, quantity=item.quantity, link=item.link, price=item.price)
        for item in payload.items
    ]
    try:
        result = await service.checkout(
            user.id,
            lines,
            payment_method=payload.payment_method,
            referral_code=payload.referral_code,
        )
    except StorefrontError as exc:
        raise http_error(exc) from exc
    return CheckoutResponse(
        data=[OrderResponse.model_validate(order) for order in result.orders],
        transaction_id=result.transaction_id,
    )


@router.post("", response_model=LegacyOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: LegacyOrderCreate,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
) -> LegacyOrderResponse:
    """Single-item order; a one-line checkout with the same payment lifecycle."""

    line = CartLine(service_id=payload.service_id, quantity=payload.quantity, link=payload.link, price=payload.price)
    try:
        result = await service.checkout(
            user.id,
            [line],
            payment_method=payload.payment_method,
            referral_code=payload.referral_code,
        )
    except StorefrontError as exc:
        raise http_error(exc) from exc
    return LegacyOrderResponse(
        data=OrderResponse.model_validate(result.orders[0]),
        transaction_id=result.transaction_id,
    )


@router.get("/my", response_model=OrderListResponse)
async def my_orders(
    user: CurrentUser = Depends(get_current_user),
    store: PaymentStore = Depends(get_store),
) -> OrderListResponse:
    orders = await store.list_orders(user_id=user.id, status=None)
    return OrderListResponse(data=[OrderResponse.model_validate(order) for order in orders])


@router.post("/{order_id}/report-delay", response_model=DelayReportResponse)
async def report_delay(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: DelayReportService = Depends(get_delay_report_service),
) -> DelayReportResponse:
    try:
        order = await service.report(user.id, order_id)
    except StorefrontError as exc:
        raise http_error(exc) from exc
    return DelayReportResponse(message="Delay reported successfully", data=OrderResponse.model_validate(order))
