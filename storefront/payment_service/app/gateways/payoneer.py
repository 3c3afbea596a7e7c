"""Redirect-based Payoneer gateway with a mock/sandbox checkout page."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from storefront.common import StorefrontSettings

from ..constants import PROVIDER_PAYONEER
from .base import GatewayDisabled, PaymentIntent, observe_call

logger = logging.getLogger(__name__)

MOCK_TRANSACTION_PREFIX = "pay_tx_"


class PayoneerGateway:
    """Payoneer checkout adapter.

    In ``mock`` mode intents redirect to the storefront's own mock checkout
    page and any id carrying :data:`MOCK_TRANSACTION_PREFIX` verifies, so the
    full checkout can run without live credentials. Initiation never fails in
    mock mode, even when the provider is disabled.
    """

    provider = PROVIDER_PAYONEER

    def __init__(
        self,
        *,
        enabled: bool,
        mode: str = "mock",
        env: str = "sandbox",
        frontend_url: str = "http://localhost:5000",
        checkout_url: str = "https://checkout.payoneer.com/stubs/payment",
    ) -> None:
        self.enabled = enabled
        self.mode = mode
        self.env = env
        self._frontend_url = frontend_url.rstrip("/")
        self._checkout_url = checkout_url

    @classmethod
    def from_settings(cls, settings: StorefrontSettings) -> PayoneerGateway:
        return cls(
            enabled=settings.payoneer_enabled,
            mode=settings.payoneer_mode,
            env=settings.payoneer_env,
            frontend_url=settings.frontend_url,
            checkout_url=settings.payoneer_checkout_url,
        )

    @property
    def is_mock(self) -> bool:
        return self.mode == "mock"

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        correlation_id: str,
        payer: Mapping[str, Any] | None = None,
    ) -> PaymentIntent:
        with observe_call(self.provider, "create_intent", transaction_id=correlation_id):
            if not self.enabled and not self.is_mock:
                raise GatewayDisabled(self.provider, "Payoneer is disabled")

            logger.info("Creating Payoneer intent for %s: %s minor units %s", correlation_id, amount, currency)
            provider_transaction_id = f"{MOCK_TRANSACTION_PREFIX}{correlation_id}_{int(time.time() * 1000)}"

            if self.is_mock:
                query = urlencode({"txId": provider_transaction_id, "refId": correlation_id, "amount": amount})
                redirect_url = f"{self._frontend_url}/mock-payoneer/checkout?{query}"
            else:
                redirect_url = f"{self._checkout_url}?{urlencode({'id': provider_transaction_id})}"

            return PaymentIntent(
                redirect_url=redirect_url,
                provider_transaction_id=provider_transaction_id,
                data={"provider": self.provider, "env": self.env, "mode": self.mode},
            )

    async def verify_payment(self, provider_transaction_id: str) -> bool:
        with observe_call(self.provider, "verify"):
            if not self.is_mock:
                logger.error(
                    "Payoneer live verification is not configured; rejecting transaction %s",
                    provider_transaction_id,
                )
                return False
            return provider_transaction_id.startswith(MOCK_TRANSACTION_PREFIX)
