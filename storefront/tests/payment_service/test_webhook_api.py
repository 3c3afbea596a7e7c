import pytest
from fastapi import FastAPI

from storefront.payment_service.app.main import create_app
from payment_helpers import (
    WEBHOOK_HEADERS,
    MetricTracker,
    PayPalStub,
    api_client,
    install_paypal,
    lifespan,
    make_paypal_gateway,
    make_settings,
    user_headers,
    webhook_event,
)


async def _pending_transaction(app: FastAPI, *, affiliate: bool = False) -> str:
    store = app.state.payment_store
    service = await store.create_service(name="YouTube Views", price=1000)
    payload = {
        "items": [{"serviceId": service.id, "quantity": 1500, "link": "https://yt.test/v"}],
        "paymentMethod": "paypal",
    }
    if affiliate:
        await store.create_affiliate(user_id=99, referral_code="REF", commission_rate=20)
        payload["referralCode"] = "REF"
    async with api_client(app) as client:
        response = await client.post("/orders/checkout", json=payload, headers=user_headers(1))
    assert response.status_code == 201
    return response.json()["transactionId"]


@pytest.mark.asyncio
async def test_completed_webhook_settles_payment(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))
    stub = PayPalStub()

    async with lifespan(app):
        install_paypal(app, make_paypal_gateway(stub))
        transaction_id = await _pending_transaction(app)
        settled = MetricTracker(
            "storefront_webhook_events_total",
            {"provider": "paypal", "event_type": "PAYMENT.CAPTURE.COMPLETED", "outcome": "settled"},
        )

        async with api_client(app) as client:
            response = await client.post(
                "/webhooks/paypal",
                json=webhook_event("PAYMENT.CAPTURE.COMPLETED", transaction_id),
                headers=WEBHOOK_HEADERS,
            )

        assert response.status_code == 200
        assert response.json() == {"status": "received", "outcome": "settled"}
        assert settled.delta() == 1
        payment = await app.state.payment_store.get_payment_by_transaction_id(transaction_id)
        assert payment.status == "paid"
        orders = await app.state.payment_store.get_orders_by_transaction_id(transaction_id)
        assert [order.status for order in orders] == ["processing"]

        verification = stub.verify_payloads[0]
        assert verification["webhook_id"] == "WH-TEST"
        assert verification["transmission_id"] == "tx-1"
        assert verification["transmission_sig"] == "signature"
        assert verification["webhook_event"]["event_type"] == "PAYMENT.CAPTURE.COMPLETED"


@pytest.mark.asyncio
async def test_webhook_for_unknown_payment_is_acknowledged(tmp_path, caplog: pytest.LogCaptureFixture) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        install_paypal(app, make_paypal_gateway(PayPalStub()))
        transaction_id = await _pending_transaction(app)

        async with api_client(app) as client:
            with caplog.at_level("ERROR"):
                unknown = await client.post(
                    "/webhooks/paypal",
                    json=webhook_event("PAYMENT.CAPTURE.COMPLETED", "TXN-1-doesnotexist"),
                    headers=WEBHOOK_HEADERS,
                )
            no_reference = await client.post(
                "/webhooks/paypal",
                json=webhook_event("PAYMENT.CAPTURE.COMPLETED", None),
                headers=WEBHOOK_HEADERS,
            )
            unrecognised = await client.post(
                "/webhooks/paypal",
                json=webhook_event("CHECKOUT.ORDER.APPROVED", transaction_id),
                headers=WEBHOOK_HEADERS,
            )

        assert unknown.status_code == 200
        assert unknown.json()["outcome"] == "payment_not_found"
        assert any("unknown payment" in record.getMessage() for record in caplog.records)
        assert no_reference.status_code == 200
        assert no_reference.json()["outcome"] == "missing_reference"
        assert unrecognised.status_code == 200
        assert unrecognised.json()["outcome"] == "ignored"

        payment = await app.state.payment_store.get_payment_by_transaction_id(transaction_id)
        assert payment.status == "pending"
        assert app.state.notification_provider.sent == []


@pytest.mark.asyncio
async def test_invalid_signature_is_rejected_without_writes(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))
    stub = PayPalStub()
    stub.verification_status = "FAILURE"

    async with lifespan(app):
        install_paypal(app, make_paypal_gateway(stub))
        transaction_id = await _pending_transaction(app)

        async with api_client(app) as client:
            forged = await client.post(
                "/webhooks/paypal",
                json=webhook_event("PAYMENT.CAPTURE.COMPLETED", transaction_id),
                headers=WEBHOOK_HEADERS,
            )
            malformed = await client.post(
                "/webhooks/paypal",
                content=b"{not json",
                headers={**WEBHOOK_HEADERS, "content-type": "application/json"},
            )

        assert forged.status_code == 400
        assert malformed.status_code == 400
        payment = await app.state.payment_store.get_payment_by_transaction_id(transaction_id)
        assert payment.status == "pending"
        events = await app.state.payment_store.list_payment_events(transaction_id)
        assert [event.type for event in events] == ["created"]


@pytest.mark.asyncio
async def test_webhook_without_configured_webhook_id_fails_closed(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))
    stub = PayPalStub()

    async with lifespan(app):
        install_paypal(app, make_paypal_gateway(stub, webhook_id=None))
        transaction_id = await _pending_transaction(app)

        async with api_client(app) as client:
            response = await client.post(
                "/webhooks/paypal",
                json=webhook_event("PAYMENT.CAPTURE.COMPLETED", transaction_id),
                headers=WEBHOOK_HEADERS,
            )

        assert response.status_code == 400
        assert stub.verify_payloads == []
        payment = await app.state.payment_store.get_payment_by_transaction_id(transaction_id)
        assert payment.status == "pending"


@pytest.mark.asyncio
async def test_denied_webhook_fails_payment_and_reopens_orders(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        install_paypal(app, make_paypal_gateway(PayPalStub()))
        transaction_id = await _pending_transaction(app)

        async with api_client(app) as client:
            response = await client.post(
                "/webhooks/paypal",
                json=webhook_event("PAYMENT.CAPTURE.DENIED", transaction_id),
                headers=WEBHOOK_HEADERS,
            )
            late_completion = await client.post(
                "/webhooks/paypal",
                json=webhook_event("PAYMENT.CAPTURE.COMPLETED", transaction_id),
                headers=WEBHOOK_HEADERS,
            )

        assert response.status_code == 200
        assert response.json()["outcome"] == "failed"
        assert late_completion.status_code == 200
        assert late_completion.json()["outcome"] == "ignored"

        store = app.state.payment_store
        payment = await store.get_payment_by_transaction_id(transaction_id)
        assert payment.status == "failed"
        orders = await store.get_orders_by_transaction_id(transaction_id)
        assert [order.status for order in orders] == ["pending_payment"]
        assert app.state.notification_provider.sent == []


@pytest.mark.asyncio
async def test_refund_webhook_cancels_orders_and_commissions(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        install_paypal(app, make_paypal_gateway(PayPalStub()))
        transaction_id = await _pending_transaction(app, affiliate=True)
        await app.state.settlement_service.settle(transaction_id, source="capture")
        sent_before = len(app.state.notification_provider.sent)

        refund = {
            "id": "WH-EVT-9",
            "event_type": "PAYMENT.CAPTURE.REFUNDED",
            "resource": {"id": "REFUND-1", "amount": {"value": "15.00", "details": {"custom_id": transaction_id}}},
        }
        async with api_client(app) as client:
            first = await client.post("/webhooks/paypal", json=refund, headers=WEBHOOK_HEADERS)
            replay = await client.post("/webhooks/paypal", json=refund, headers=WEBHOOK_HEADERS)

        assert first.json()["outcome"] == "refunded"
        assert replay.status_code == 200
        assert replay.json()["outcome"] == "ignored"

        store = app.state.payment_store
        payment = await store.get_payment_by_transaction_id(transaction_id)
        assert payment.status == "refunded"
        orders = await store.get_orders_by_transaction_id(transaction_id)
        assert [(order.status, order.commission_status) for order in orders] == [("cancelled", "cancelled")]
        status_updates = app.state.notification_provider.sent[sent_before:]
        assert [notification.subject for notification in status_updates] == ["notifications.orderStatusTitle"]


@pytest.mark.asyncio
async def test_capture_then_webhook_settles_exactly_once(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))
    stub = PayPalStub()

    async with lifespan(app):
        install_paypal(app, make_paypal_gateway(stub))
        transaction_id = await _pending_transaction(app)
        stub.add_order("ORDER-1", transaction_id=transaction_id, value="15.00")

        async with api_client(app) as client:
            capture = await client.post("/payments/paypal/capture", json={"orderId": "ORDER-1"}, headers=user_headers(1))
            webhook = await client.post(
                "/webhooks/paypal",
                json=webhook_event("PAYMENT.CAPTURE.COMPLETED", transaction_id),
                headers=WEBHOOK_HEADERS,
            )

        assert capture.status_code == 200
        assert webhook.status_code == 200
        assert webhook.json()["outcome"] == "already_settled"
        assert len(app.state.notification_provider.sent) == 2
        events = await app.state.payment_store.list_payment_events(transaction_id)
        assert [event.type for event in events] == ["created", "paid"]
        assert [event.payload for event in events] == ["pending", "capture"]
