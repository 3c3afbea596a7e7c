"""Gateway contract shared by every payment provider adapter."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Protocol

from storefront.common.tracing import gateway_span

from ..metrics import GATEWAY_LATENCY_SECONDS, GATEWAY_REQUESTS_TOTAL


class GatewayError(Exception):
    """Base class for provider failures. Messages never carry raw provider payloads."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(message)


class GatewayDisabled(GatewayError):
    """Provider is switched off (or unconfigured) and not running in mock mode."""


class GatewayAuthFailed(GatewayError):
    """OAuth token could not be obtained; distinct from a payment failure."""


class GatewayRequestFailed(GatewayError):
    """Network failure, timeout or non-2xx response from the provider."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(provider, message)


@dataclass(slots=True)
class PaymentIntent:
    redirect_url: str
    provider_transaction_id: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CaptureResult:
    ok: bool
    provider_status: str | None
    raw: dict[str, Any]


class PaymentGateway(Protocol):
    provider: str

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        correlation_id: str,
        payer: Mapping[str, Any] | None = None,
    ) -> PaymentIntent: ...

    async def verify_payment(self, provider_transaction_id: str) -> bool: ...


class PayPalLikeGateway(PaymentGateway, Protocol):
    async def capture_order(self, provider_order_id: str) -> CaptureResult: ...

    async def get_order_details(self, provider_order_id: str) -> dict[str, Any]: ...

    async def verify_webhook_signature(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool: ...


@contextmanager
def observe_call(provider: str, operation: str, **attributes: str | int | None) -> Iterator[None]:
    """Record latency, outcome and a tracing span for one gateway operation."""

    start = perf_counter()
    outcome = "ok"
    with gateway_span(provider, operation, **attributes):
        try:
            yield
        except GatewayAuthFailed:
            outcome = "auth_failed"
            raise
        except GatewayDisabled:
            outcome = "disabled"
            raise
        except GatewayError:
            outcome = "error"
            raise
        finally:
            GATEWAY_REQUESTS_TOTAL.labels(provider=provider, operation=operation, outcome=outcome).inc()
            GATEWAY_LATENCY_SECONDS.labels(provider=provider, operation=operation).observe(
                perf_counter() - start
            )
