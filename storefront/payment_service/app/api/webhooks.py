"""Provider webhook receiver."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..dependencies import get_webhook_handler
from ..webhooks import InvalidWebhook, PayPalWebhookHandler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/paypal", status_code=status.HTTP_200_OK)
async def paypal_webhook(
    request: Request,
    handler: PayPalWebhookHandler = Depends(get_webhook_handler),
) -> dict[str, str]:
    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed webhook body") from exc

    try:
        outcome = await handler.handle(request.headers, body)
    except InvalidWebhook as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"status": "received", "outcome": outcome}
