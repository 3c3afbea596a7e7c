"""Payment gateway hand-off, capture and verification endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse

from ..constants import PROVIDER_PAYPAL
from ..dependencies import CurrentUser, get_current_user, get_settlement_service
from ..exceptions import StorefrontError
from ..gateways import GatewayError
from ..schemas import (
    CaptureRequest,
    CreateIntentRequest,
    PaymentDetailsResponse,
    PaymentStatusResponse,
    VerifyRequest,
)
from ..services import SettlementService
from .errors import http_error

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{provider}/create")
async def create_payment_intent(
    provider: str,
    payload: CreateIntentRequest,
    user: CurrentUser = Depends(get_current_user),
    settlement: SettlementService = Depends(get_settlement_service),
) -> dict[str, Any]:
    try:
        result = await settlement.create_intent(user.id, payload.transaction_id, provider)
    except (StorefrontError, GatewayError) as exc:
        raise http_error(exc) from exc

    if result.provider == PROVIDER_PAYPAL:
        # The PayPal JS SDK drives approval itself; it only needs the order id.
        return {
            "success": True,
            "orderId": result.intent.provider_transaction_id,
            "transactionId": result.transaction_id,
        }
    return {
        "success": True,
        "redirectUrl": result.intent.redirect_url,
        "transactionId": result.transaction_id,
    }


@router.post("/paypal/capture", response_model=PaymentStatusResponse)
async def capture_paypal_order(
    payload: CaptureRequest,
    user: CurrentUser = Depends(get_current_user),
    settlement: SettlementService = Depends(get_settlement_service),
) -> PaymentStatusResponse:
    try:
        outcome = await settlement.capture_paypal(user.id, payload.order_id)
    except (StorefrontError, GatewayError) as exc:
        raise http_error(exc) from exc
    return PaymentStatusResponse(success=True, status=outcome.status)


@router.post("/payoneer/verify", response_model=PaymentStatusResponse)
async def verify_payoneer_payment(
    payload: VerifyRequest,
    user: CurrentUser = Depends(get_current_user),
    settlement: SettlementService = Depends(get_settlement_service),
) -> PaymentStatusResponse:
    outcome = await settlement.verify_status(user.id, payload.transaction_id)
    return PaymentStatusResponse(success=outcome.status == "paid", status=outcome.status)


@router.get("/payoneer/details/{transaction_id}", response_model=PaymentDetailsResponse)
async def payoneer_payment_details(
    transaction_id: str,
    settlement: SettlementService = Depends(get_settlement_service),
) -> PaymentDetailsResponse:
    try:
        payment = await settlement.payment_details(transaction_id)
    except StorefrontError as exc:
        raise http_error(exc) from exc
    return PaymentDetailsResponse.model_validate(payment)


@router.get("/payoneer/callback", status_code=status.HTTP_302_FOUND)
async def payoneer_callback(
    tx_id: str | None = Query(default=None, alias="txId"),
    ref_id: str | None = Query(default=None, alias="refId"),
    callback_status: str | None = Query(default=None, alias="status"),
    settlement: SettlementService = Depends(get_settlement_service),
) -> RedirectResponse:
    target = await settlement.handle_payoneer_callback(tx_id, ref_id, callback_status)
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
