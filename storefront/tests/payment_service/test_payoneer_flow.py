from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI

from storefront.payment_service.app.gateways import GatewayDisabled, PayoneerGateway
from storefront.payment_service.app.main import create_app
from payment_helpers import api_client, lifespan, make_settings, user_headers


@pytest.mark.asyncio
async def test_mock_gateway_builds_frontend_redirect_even_when_disabled() -> None:
    gateway = PayoneerGateway(enabled=False, mode="mock", frontend_url="http://frontend.test/")

    intent = await gateway.create_payment_intent(1500, "USD", "TXN-1-a")

    assert intent.provider_transaction_id.startswith("pay_tx_TXN-1-a_")
    redirect = urlparse(intent.redirect_url)
    assert f"{redirect.scheme}://{redirect.netloc}{redirect.path}" == "http://frontend.test/mock-payoneer/checkout"
    query = parse_qs(redirect.query)
    assert query == {"txId": [intent.provider_transaction_id], "refId": ["TXN-1-a"], "amount": ["1500"]}
    assert await gateway.verify_payment(intent.provider_transaction_id) is True
    assert await gateway.verify_payment("forged-id") is False


@pytest.mark.asyncio
async def test_live_gateway_uses_checkout_url_and_fails_verification_closed() -> None:
    gateway = PayoneerGateway(enabled=True, mode="live", checkout_url="https://payoneer.test/pay")

    intent = await gateway.create_payment_intent(1500, "USD", "TXN-1-a")

    assert intent.redirect_url.startswith("https://payoneer.test/pay?id=pay_tx_TXN-1-a_")
    assert await gateway.verify_payment(intent.provider_transaction_id) is False

    with pytest.raises(GatewayDisabled):
        await PayoneerGateway(enabled=False, mode="live").create_payment_intent(1500, "USD", "TXN-1-a")


async def _payoneer_checkout(app: FastAPI, user_id: int = 1) -> tuple[str, str]:
    store = app.state.payment_store
    service = await store.create_service(name="Spotify Plays", price=2000)
    async with api_client(app) as client:
        checkout = await client.post(
            "/orders/checkout",
            json={
                "items": [{"serviceId": service.id, "quantity": 1000, "link": "https://spotify.test/t"}],
                "paymentMethod": "payoneer",
            },
            headers=user_headers(user_id),
        )
        transaction_id = checkout.json()["transactionId"]
        intent = await client.post(
            "/payments/payoneer/create", json={"transactionId": transaction_id}, headers=user_headers(user_id)
        )
    assert intent.status_code == 200
    body = intent.json()
    assert body["success"] is True
    assert body["transactionId"] == transaction_id
    tx_id = parse_qs(urlparse(body["redirectUrl"]).query)["txId"][0]
    return transaction_id, tx_id


@pytest.mark.asyncio
async def test_callback_success_settles_and_redirects(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        transaction_id, tx_id = await _payoneer_checkout(app)

        async with api_client(app) as client:
            details = await client.get(f"/payments/payoneer/details/{transaction_id}")
            callback = await client.get(
                "/payments/payoneer/callback",
                params={"txId": tx_id, "refId": transaction_id, "status": "success"},
            )
            repeat = await client.get(
                "/payments/payoneer/callback",
                params={"txId": tx_id, "refId": transaction_id, "status": "success"},
            )
            verify = await client.post(
                "/payments/payoneer/verify", json={"transactionId": transaction_id}, headers=user_headers(1)
            )

        assert details.json() == {"amount": 2000, "currency": "USD", "transactionId": transaction_id, "status": "pending"}
        assert callback.status_code == 302
        assert callback.headers["location"] == f"http://frontend.test/payment/success?transactionId={transaction_id}"
        assert repeat.headers["location"] == callback.headers["location"]
        assert verify.json() == {"success": True, "status": "paid"}

        store = app.state.payment_store
        orders = await store.get_orders_by_transaction_id(transaction_id)
        assert [order.status for order in orders] == ["processing"]
        assert len(app.state.notification_provider.sent) == 2
        events = await store.list_payment_events(transaction_id)
        assert [(event.type, event.payload) for event in events] == [
            ("created", "pending"),
            ("provider_linked", tx_id),
            ("paid", "callback"),
        ]


@pytest.mark.asyncio
async def test_callback_failures_redirect_with_reason(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        transaction_id, tx_id = await _payoneer_checkout(app)

        async with api_client(app) as client:
            cancelled = await client.get(
                "/payments/payoneer/callback",
                params={"txId": tx_id, "refId": transaction_id, "status": "cancelled"},
            )
            forged = await client.get(
                "/payments/payoneer/callback",
                params={"txId": "forged", "refId": transaction_id, "status": "success"},
            )
            mismatched = await client.get(
                "/payments/payoneer/callback",
                params={"txId": "pay_tx_other_1", "refId": transaction_id, "status": "success"},
            )
            missing = await client.get(
                "/payments/payoneer/callback",
                params={"txId": tx_id, "refId": "TXN-0-unknown", "status": "success"},
            )

        assert cancelled.headers["location"] == (
            f"http://frontend.test/payment/failed?status=cancelled&transactionId={transaction_id}"
        )
        assert forged.headers["location"] == (
            f"http://frontend.test/payment/failed?error=verification_failed&transactionId={transaction_id}"
        )
        assert "error=verification_failed" in mismatched.headers["location"]
        assert missing.headers["location"] == (
            "http://frontend.test/payment/failed?error=record_missing&transactionId=TXN-0-unknown"
        )
        payment = await app.state.payment_store.get_payment_by_transaction_id(transaction_id)
        assert payment.status == "pending"


@pytest.mark.asyncio
async def test_callback_for_failed_payment_is_not_payable(tmp_path) -> None:
    app = create_app(make_settings(tmp_path, backend="memory"))

    async with lifespan(app):
        transaction_id, tx_id = await _payoneer_checkout(app)
        await app.state.settlement_service.fail(transaction_id, source="test")

        async with api_client(app) as client:
            callback = await client.get(
                "/payments/payoneer/callback",
                params={"txId": tx_id, "refId": transaction_id, "status": "success"},
            )
            verify = await client.post(
                "/payments/payoneer/verify", json={"transactionId": transaction_id}, headers=user_headers(1)
            )
            stranger = await client.post(
                "/payments/payoneer/verify", json={"transactionId": transaction_id}, headers=user_headers(2)
            )
            details = await client.get("/payments/payoneer/details/TXN-0-unknown")

        assert "error=not_payable" in callback.headers["location"]
        assert verify.json() == {"success": False, "status": "failed"}
        assert stranger.json() == {"success": False, "status": "not_found"}
        assert details.status_code == 404
