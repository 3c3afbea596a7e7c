"""Dependency helpers for the payment service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header, HTTPException, Request, status

from .notifications import OrderNotifier
from .repository import PaymentStore
from .services import CheckoutService, DelayReportService, SettlementService
from .webhooks import PayPalWebhookHandler


@dataclass(slots=True)
class CurrentUser:
    id: int
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_current_user(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    role: str | None = Header(default=None, alias="X-User-Role"),
) -> CurrentUser:
    if user_id is None or not user_id.strip().isdigit() or int(user_id) <= 0:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return CurrentUser(id=int(user_id), role=(role or "user").strip().lower())


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def _state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return value


def get_store(request: Request) -> PaymentStore:
    return _state(request, "payment_store")


def get_notifier(request: Request) -> OrderNotifier:
    return _state(request, "order_notifier")


def get_checkout_service(request: Request) -> CheckoutService:
    return _state(request, "checkout_service")


def get_settlement_service(request: Request) -> SettlementService:
    return _state(request, "settlement_service")


def get_delay_report_service(request: Request) -> DelayReportService:
    return _state(request, "delay_report_service")


def get_webhook_handler(request: Request) -> PayPalWebhookHandler:
    return _state(request, "paypal_webhook_handler")
