"""Pydantic schemas for the storefront payment service."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

from .constants import OPERATOR_ORDER_STATUSES


class CheckoutItem(BaseModel):
    service_id: PositiveInt = Field(alias="serviceId")
    quantity: PositiveInt
    link: str = Field(min_length=1, max_length=2048)
    # Accepted for compatibility with older clients; totals ignore it.
    price: Any = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("link")
    @classmethod
    def _strip_link(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "link must be non-empty"
            raise ValueError(msg)
        return cleaned


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(min_length=1)
    payment_method: str = Field(alias="paymentMethod", min_length=1, max_length=32)
    referral_code: str | None = Field(default=None, alias="referralCode", max_length=64)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("payment_method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        return value.strip().lower()


class LegacyOrderCreate(CheckoutItem):
    payment_method: str = Field(default="paypal", alias="paymentMethod", min_length=1, max_length=32)
    referral_code: str | None = Field(default=None, alias="referralCode", max_length=64)

    @field_validator("payment_method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        return value.strip().lower()


class OrderResponse(BaseModel):
    id: PositiveInt
    user_id: int = Field(alias="userId")
    service_id: int = Field(alias="serviceId")
    status: str
    total_amount: int = Field(alias="totalAmount")
    currency: str
    transaction_id: str | None = Field(default=None, alias="transactionId")
    details: dict[str, Any] | None = None
    affiliate_id: int | None = Field(default=None, alias="affiliateId")
    commission_amount: int | None = Field(default=None, alias="commissionAmount")
    commission_status: str | None = Field(default=None, alias="commissionStatus")
    last_notify_at: datetime | None = Field(default=None, alias="lastNotifyAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CheckoutResponse(BaseModel):
    data: list[OrderResponse]
    transaction_id: str = Field(alias="transactionId")

    model_config = ConfigDict(populate_by_name=True)


class DelayReportResponse(BaseModel):
    message: str
    data: OrderResponse


class LegacyOrderResponse(BaseModel):
    data: OrderResponse
    transaction_id: str = Field(alias="transactionId")

    model_config = ConfigDict(populate_by_name=True)


class OrderListResponse(BaseModel):
    data: list[OrderResponse]


class OrderStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def _operator_status(cls, value: str) -> str:
        if value not in OPERATOR_ORDER_STATUSES:
            msg = f"status must be one of {', '.join(OPERATOR_ORDER_STATUSES)}"
            raise ValueError(msg)
        return value


class ServiceResponse(BaseModel):
    id: PositiveInt
    name: str
    category: str
    price: int
    duration: str | None = None
    is_active: bool = Field(alias="isActive")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class PaymentResponse(BaseModel):
    id: PositiveInt
    user_id: int = Field(alias="userId")
    order_id: int | None = Field(default=None, alias="orderId")
    amount: int
    currency: str
    method: str
    status: str
    transaction_id: str = Field(alias="transactionId")
    provider_reference: str | None = Field(default=None, alias="providerReference")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    total: int


class PaymentEventResponse(BaseModel):
    type: str
    payload: str
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CreateIntentRequest(BaseModel):
    transaction_id: str = Field(alias="transactionId", min_length=1, max_length=64)

    model_config = ConfigDict(populate_by_name=True)


class CaptureRequest(BaseModel):
    order_id: str = Field(alias="orderId", min_length=1, max_length=128)

    model_config = ConfigDict(populate_by_name=True)


class VerifyRequest(BaseModel):
    transaction_id: str = Field(alias="transactionId", min_length=1, max_length=64)

    model_config = ConfigDict(populate_by_name=True)


class PaymentStatusResponse(BaseModel):
    success: bool
    status: str


class PaymentDetailsResponse(BaseModel):
    amount: int
    currency: str
    transaction_id: str = Field(alias="transactionId")
    status: str

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
