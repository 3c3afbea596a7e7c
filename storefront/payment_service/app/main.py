from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from storefront.common import (
    DEFAULT_APP_NAME,
    EventBus,
    EventProducer,
    StorefrontSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    get_settings,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)

from .api.admin import router as admin_router
from .api.catalog import router as catalog_router
from .api.health import router as health_router
from .api.orders import router as orders_router
from .api.payments import router as payments_router
from .api.webhooks import router as webhooks_router
from .constants import PROVIDER_PAYONEER, PROVIDER_PAYPAL
from .events import RealtimeEventPublisher
from .gateways import PayoneerGateway, PayPalGateway
from .guards import IntentGuard
from .memory_store import InMemoryPaymentStore
from .models import Base
from .notifications import InMemoryNotificationProvider, OrderNotifier
from .repository import PaymentStore, SqlPaymentStore
from .services import CheckoutService, DelayReportService, SettlementService
from .webhooks import PayPalWebhookHandler

SERVICE_NAME = "Storefront Payment Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./storefront_payments.db"


def create_app(settings: StorefrontSettings | None = None) -> FastAPI:
    """Create the storefront payment FastAPI application."""

    resolved_settings = settings or get_settings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    use_sql = resolved_settings.storage_backend == "sql"
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL) if use_sql else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client: httpx.AsyncClient | None = None
        producer: EventProducer | None = None
        redis_client = resolve_redis(resolved_settings)
        try:
            store: PaymentStore
            if database_url is not None:
                await create_schema(database_url, Base.metadata)
                store = SqlPaymentStore(get_session_factory(database_url))
            else:
                store = InMemoryPaymentStore()

            http_client = httpx.AsyncClient(timeout=resolved_settings.gateway_timeout_seconds)
            paypal = PayPalGateway.from_settings(resolved_settings, http_client)
            payoneer = PayoneerGateway.from_settings(resolved_settings)

            event_bus = EventBus()
            producer = EventProducer(event_bus, servers=resolved_settings.event_bus_servers)
            await producer.connect()
            notification_provider = InMemoryNotificationProvider()
            notifier = OrderNotifier(notification_provider, RealtimeEventPublisher(producer))

            settlement = SettlementService(
                store,
                gateways={PROVIDER_PAYPAL: paypal, PROVIDER_PAYONEER: payoneer},
                notifier=notifier,
                guard=IntentGuard(redis_client, ttl_seconds=resolved_settings.intent_guard_ttl_seconds),
                frontend_url=resolved_settings.frontend_url,
            )

            app.state.payment_store = store
            app.state.http_client = http_client
            app.state.gateways = settlement.gateways
            app.state.event_bus = event_bus
            app.state.event_producer = producer
            app.state.notification_provider = notification_provider
            app.state.order_notifier = notifier
            app.state.checkout_service = CheckoutService(
                store,
                currency=resolved_settings.default_currency,
                tax_rate_percent=resolved_settings.tax_rate_percent,
            )
            app.state.settlement_service = settlement
            app.state.delay_report_service = DelayReportService(store, notifier)
            app.state.paypal_webhook_handler = PayPalWebhookHandler(paypal, store, settlement)
            yield
        finally:
            for name in (
                "payment_store",
                "http_client",
                "gateways",
                "event_bus",
                "event_producer",
                "notification_provider",
                "order_notifier",
                "checkout_service",
                "settlement_service",
                "delay_report_service",
                "paypal_webhook_handler",
            ):
                setattr(app.state, name, None)
            if producer is not None:
                await producer.close()
            if http_client is not None:
                await http_client.aclose()
            if database_url is not None:
                await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(catalog_router)
    app.include_router(orders_router)
    app.include_router(payments_router)
    app.include_router(webhooks_router)
    app.include_router(admin_router)
    return app


app = create_app()
