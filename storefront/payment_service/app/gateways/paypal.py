"""PayPal Orders v2 gateway backed by the live HTTP API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from storefront.common import StorefrontSettings

from ..constants import PROVIDER_PAYPAL
from ..pricing import to_major_units
from .base import (
    CaptureResult,
    GatewayAuthFailed,
    GatewayDisabled,
    GatewayRequestFailed,
    PaymentIntent,
    observe_call,
)

logger = logging.getLogger(__name__)

LIVE_BASE_URL = "https://api-m.paypal.com"
SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"

VERIFIED_ORDER_STATUSES = frozenset({"COMPLETED", "APPROVED"})

WEBHOOK_HEADER_FIELDS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
    "transmission_sig": "paypal-transmission-sig",
}


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


class PayPalGateway:
    """Thin authenticated wrapper over the PayPal REST API.

    A bearer token is requested for every operation and never cached across
    calls. Token failures raise :class:`GatewayAuthFailed`; every other
    transport or HTTP failure raises :class:`GatewayRequestFailed` so callers
    leave local payment state untouched.
    """

    provider = PROVIDER_PAYPAL

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        enabled: bool,
        client_id: str | None,
        secret_key: str | None,
        webhook_id: str | None = None,
        mode: str = "sandbox",
        allow_unverified_webhooks: bool = False,
    ) -> None:
        self._client = client
        self.enabled = enabled
        self._client_id = client_id or ""
        self._secret_key = secret_key or ""
        self._webhook_id = webhook_id or ""
        self._allow_unverified = allow_unverified_webhooks
        self.base_url = LIVE_BASE_URL if mode.strip().lower() == "live" else SANDBOX_BASE_URL
        if enabled and not self._webhook_id:
            logger.error(
                "PayPal webhook id is not configured; webhook notifications will be %s",
                "accepted WITHOUT verification" if allow_unverified_webhooks else "rejected",
            )

    @classmethod
    def from_settings(cls, settings: StorefrontSettings, client: httpx.AsyncClient) -> PayPalGateway:
        return cls(
            client,
            enabled=settings.paypal_enabled,
            client_id=settings.paypal_client_id,
            secret_key=settings.paypal_secret_key,
            webhook_id=settings.paypal_webhook_id,
            mode=settings.paypal_mode,
            allow_unverified_webhooks=settings.paypal_webhook_allow_unverified,
        )

    def _ensure_enabled(self) -> None:
        if not self.enabled:
            raise GatewayDisabled(self.provider, "PayPal is disabled")
        if not self._client_id or not self._secret_key:
            raise GatewayDisabled(self.provider, "PayPal credentials are not configured")

    async def _access_token(self) -> str:
        self._ensure_enabled()
        try:
            response = await self._client.post(
                f"{self.base_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._secret_key),
            )
        except httpx.HTTPError as exc:
            logger.error("PayPal auth request failed: %s", type(exc).__name__)
            raise GatewayAuthFailed(self.provider, "PayPal authentication failed") from exc

        if response.status_code >= 400:
            logger.error("PayPal auth failed: %s - %s", response.status_code, response.text)
            raise GatewayAuthFailed(self.provider, "PayPal authentication failed")

        token = response.json().get("access_token")
        if not token:
            logger.error("PayPal auth response did not include an access token")
            raise GatewayAuthFailed(self.provider, "PayPal authentication failed")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        token = await self._access_token()
        request_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            request_headers.update(headers)
        try:
            return await self._client.request(method, f"{self.base_url}{path}", json=json, headers=request_headers)
        except httpx.TimeoutException as exc:
            logger.error("PayPal %s timed out", operation)
            raise GatewayRequestFailed(self.provider, f"PayPal {operation} timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("PayPal %s network error: %s", operation, type(exc).__name__)
            raise GatewayRequestFailed(self.provider, f"PayPal {operation} failed") from exc

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        correlation_id: str,
        payer: Mapping[str, Any] | None = None,
    ) -> PaymentIntent:
        with observe_call(self.provider, "create_intent", transaction_id=correlation_id):
            payload = {
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        # Both ids carry the internal transaction id: capture
                        # reads reference_id, webhooks read custom_id.
                        "reference_id": correlation_id,
                        "custom_id": correlation_id,
                        "amount": {
                            "currency_code": currency.upper(),
                            "value": to_major_units(amount),
                        },
                    }
                ],
            }
            response = await self._request("POST", "/v2/checkout/orders", operation="create order", json=payload)
            if response.status_code >= 400:
                logger.error("PayPal create order failed: %s - %s", response.status_code, response.text)
                raise GatewayRequestFailed(
                    self.provider, "PayPal create order failed", status_code=response.status_code
                )

            data = response.json()
            approve_link = next(
                (link.get("href", "") for link in data.get("links", []) if link.get("rel") == "approve"),
                "",
            )
            return PaymentIntent(
                redirect_url=approve_link,
                provider_transaction_id=data["id"],
                data={"provider": self.provider, "orderId": data["id"]},
            )

    async def get_order_details(self, provider_order_id: str) -> dict[str, Any]:
        with observe_call(self.provider, "order_details"):
            response = await self._request(
                "GET", f"/v2/checkout/orders/{provider_order_id}", operation="order details"
            )
            if response.status_code >= 400:
                logger.error("PayPal order details failed: %s - %s", response.status_code, response.text)
                raise GatewayRequestFailed(
                    self.provider, "Failed to fetch PayPal order details", status_code=response.status_code
                )
            return response.json()

    async def verify_payment(self, provider_transaction_id: str) -> bool:
        try:
            details = await self.get_order_details(provider_transaction_id)
        except GatewayRequestFailed:
            return False
        return details.get("status") in VERIFIED_ORDER_STATUSES

    async def capture_order(self, provider_order_id: str) -> CaptureResult:
        with observe_call(self.provider, "capture"):
            response = await self._request(
                "POST",
                f"/v2/checkout/orders/{provider_order_id}/capture",
                operation="capture",
                json={},
                headers={"Prefer": "return=representation"},
            )
            try:
                data = response.json()
            except ValueError:
                data = {}
            ok = response.status_code < 400
            if not ok:
                logger.error("PayPal capture failed: %s - %s", response.status_code, response.text)
            return CaptureResult(ok=ok, provider_status=data.get("status"), raw=data)

    async def verify_webhook_signature(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool:
        if not self._webhook_id:
            if self._allow_unverified:
                logger.warning("PayPal webhook id missing; accepting event WITHOUT signature verification")
                return True
            logger.error("PayPal webhook id missing; rejecting unverifiable webhook event")
            return False

        lowered = _lower_keys(headers)
        payload: dict[str, Any] = {"webhook_id": self._webhook_id}
        for field_name, header_name in WEBHOOK_HEADER_FIELDS.items():
            payload[field_name] = lowered.get(header_name)
        payload["webhook_event"] = event

        with observe_call(self.provider, "verify_webhook"):
            try:
                response = await self._request(
                    "POST",
                    "/v1/notifications/verify-webhook-signature",
                    operation="verify webhook",
                    json=payload,
                )
            except (GatewayAuthFailed, GatewayRequestFailed, GatewayDisabled):
                logger.error("PayPal webhook verification could not be completed")
                return False

        if response.status_code >= 400:
            logger.error("PayPal webhook verification API failed: %s", response.status_code)
            return False
        return response.json().get("verification_status") == "SUCCESS"
