"""Shared fakes and helpers for payment service tests."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
from fastapi import FastAPI
from prometheus_client import REGISTRY

from storefront.common import (
    EventBus,
    EventConsumer,
    EventProducer,
    StorefrontSettings,
    create_schema,
    dispose_engines,
    get_session_factory,
)
from storefront.payment_service.app.events import REALTIME_TOPICS, RealtimeEventPublisher
from storefront.payment_service.app.gateways import PayoneerGateway, PayPalGateway
from storefront.payment_service.app.guards import IntentGuard
from storefront.payment_service.app.memory_store import InMemoryPaymentStore
from storefront.payment_service.app.notifications import InMemoryNotificationProvider, OrderNotifier
from storefront.payment_service.app.models import Base
from storefront.payment_service.app.repository import PaymentStore, SqlPaymentStore
from storefront.payment_service.app.services import CheckoutService, SettlementService
from storefront.payment_service.app.webhooks import PayPalWebhookHandler


class PayPalStub:
    """Scriptable stand-in for the PayPal REST API, served through MockTransport."""

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self.token_status = 200
        self.capture_status = "COMPLETED"
        self.capture_http_status = 201
        self.verification_status = "SUCCESS"
        self.calls: list[tuple[str, str]] = []
        self.created_payloads: list[dict[str, Any]] = []
        self.verify_payloads: list[dict[str, Any]] = []
        self._sequence = 0

    def add_order(
        self,
        order_id: str,
        *,
        transaction_id: str | None,
        value: str,
        currency: str = "USD",
        status: str = "APPROVED",
    ) -> None:
        unit: dict[str, Any] = {"amount": {"currency_code": currency, "value": value}}
        if transaction_id is not None:
            unit["reference_id"] = transaction_id
            unit["custom_id"] = transaction_id
        self.orders[order_id] = {"id": order_id, "status": status, "purchase_units": [unit]}

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for call_method, path in self.calls if call_method == method and path.endswith(suffix))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))

        if path == "/v1/oauth2/token":
            if self.token_status >= 400:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "token-123", "token_type": "Bearer"})

        if path == "/v1/notifications/verify-webhook-signature":
            self.verify_payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"verification_status": self.verification_status})

        if path == "/v2/checkout/orders" and request.method == "POST":
            body = json.loads(request.content)
            self.created_payloads.append(body)
            self._sequence += 1
            order_id = f"PAYPAL-ORDER-{self._sequence}"
            self.orders[order_id] = {
                "id": order_id,
                "status": "CREATED",
                "purchase_units": body["purchase_units"],
            }
            return httpx.Response(
                201,
                json={
                    "id": order_id,
                    "status": "CREATED",
                    "links": [
                        {"rel": "self", "href": f"https://api.test/v2/checkout/orders/{order_id}"},
                        {"rel": "approve", "href": f"https://paypal.test/checkoutnow?token={order_id}"},
                    ],
                },
            )

        parts = path.split("/")
        if len(parts) >= 5 and parts[1:4] == ["v2", "checkout", "orders"]:
            order = self.orders.get(parts[4])
            if order is None:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
            if request.method == "POST" and path.endswith("/capture"):
                if self.capture_http_status >= 400:
                    return httpx.Response(
                        self.capture_http_status,
                        json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "INSTRUMENT_DECLINED"}]},
                    )
                order["status"] = self.capture_status
                return httpx.Response(self.capture_http_status, json=dict(order))
            if request.method == "GET":
                return httpx.Response(200, json=dict(order))

        return httpx.Response(404, json={"name": "NOT_FOUND"})


def make_paypal_gateway(
    stub: PayPalStub, *, webhook_id: str | None = "WH-TEST", allow_unverified: bool = False
) -> PayPalGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return PayPalGateway(
        client,
        enabled=True,
        client_id="client-id",
        secret_key="secret",
        webhook_id=webhook_id,
        allow_unverified_webhooks=allow_unverified,
    )


@asynccontextmanager
async def open_store(kind: str, tmp_path) -> AsyncIterator[PaymentStore]:
    """Yield an empty store of the given kind (``memory`` or ``sql``)."""

    if kind == "memory":
        yield InMemoryPaymentStore()
        return
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'store.db'}"
    await create_schema(database_url, Base.metadata)
    try:
        yield SqlPaymentStore(get_session_factory(database_url))
    finally:
        await dispose_engines()


@dataclass
class Harness:
    store: PaymentStore
    checkout: CheckoutService
    settlement: SettlementService
    webhooks: PayPalWebhookHandler
    provider: InMemoryNotificationProvider
    paypal: PayPalStub
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)


async def build_harness(store: PaymentStore | None = None, stub: PayPalStub | None = None) -> Harness:
    store = store or InMemoryPaymentStore()
    stub = stub or PayPalStub()
    paypal = make_paypal_gateway(stub)

    bus = EventBus()
    events: list[tuple[str, dict[str, Any]]] = []

    async def _collect(topic: str, message: dict[str, Any]) -> None:
        events.append((topic, message))

    await EventConsumer(bus, REALTIME_TOPICS, _collect).start()
    producer = EventProducer(bus)
    await producer.connect()

    provider = InMemoryNotificationProvider()
    notifier = OrderNotifier(provider, RealtimeEventPublisher(producer))
    settlement = SettlementService(
        store,
        gateways={"paypal": paypal, "payoneer": PayoneerGateway(enabled=False, mode="mock")},
        notifier=notifier,
        guard=IntentGuard(None),
        frontend_url="http://frontend.test",
    )
    return Harness(
        store=store,
        checkout=CheckoutService(store),
        settlement=settlement,
        webhooks=PayPalWebhookHandler(paypal, store, settlement),
        provider=provider,
        paypal=stub,
        events=events,
    )


def make_settings(tmp_path, *, backend: str = "sql", **overrides: Any) -> StorefrontSettings:
    values: dict[str, Any] = {
        "app_name": "Storefront Payment Test",
        "enable_metrics": False,
        "enable_tracing": False,
        "storage_backend": backend,
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        "frontend_url": "http://frontend.test",
    }
    values.update(overrides)
    return StorefrontSettings(**values)


def install_paypal(app: FastAPI, gateway: PayPalGateway) -> None:
    app.state.settlement_service.gateways["paypal"] = gateway
    app.state.paypal_webhook_handler.gateway = gateway


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    async with app.router.lifespan_context(app):
        yield


@asynccontextmanager
async def api_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def user_headers(user_id: int = 1, *, admin: bool = False) -> dict[str, str]:
    headers = {"X-User-Id": str(user_id)}
    if admin:
        headers["X-User-Role"] = "admin"
    return headers


def webhook_event(event_type: str, transaction_id: str | None, **resource: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"id": "WH-EVT-1", "event_type": event_type, "resource": {"id": "CAPTURE-1", **resource}}
    if transaction_id is not None:
        body["resource"]["custom_id"] = transaction_id
    return body


WEBHOOK_HEADERS = {
    "PAYPAL-TRANSMISSION-ID": "tx-1",
    "PAYPAL-TRANSMISSION-TIME": "2024-01-01T00:00:00Z",
    "PAYPAL-CERT-URL": "https://api.paypal.com/cert.pem",
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-TRANSMISSION-SIG": "signature",
}


class MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline
