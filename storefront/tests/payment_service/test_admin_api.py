import pytest
from fastapi import FastAPI

from storefront.payment_service.app.main import create_app
from payment_helpers import api_client, lifespan, make_settings, user_headers


async def _referred_checkout(app: FastAPI) -> dict:
    store = app.state.payment_store
    service = await store.create_service(name="Instagram Likes", price=1000)
    await store.create_affiliate(user_id=77, referral_code="PARTNER", commission_rate=5)
    async with api_client(app) as client:
        response = await client.post(
            "/orders/checkout",
            json={
                "items": [{"serviceId": service.id, "quantity": 2000, "link": "https://ig.test/p"}],
                "paymentMethod": "paypal",
                "referralCode": "PARTNER",
            },
            headers=user_headers(5),
        )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(tmp_path) -> None:
    app = create_app(make_settings(tmp_path, backend="memory"))

    async with lifespan(app):
        async with api_client(app) as client:
            customer = await client.get("/admin/payments", headers=user_headers(5))
            anonymous = await client.get("/admin/payments")
            update = await client.patch(
                "/admin/orders/1/status", json={"status": "completed"}, headers=user_headers(5)
            )

    assert customer.status_code == 403
    assert anonymous.status_code == 401
    assert update.status_code == 403


@pytest.mark.asyncio
async def test_completing_unpaid_order_keeps_commission_pending(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        checkout = await _referred_checkout(app)
        order_id = checkout["data"][0]["id"]
        assert checkout["data"][0]["commissionAmount"] == 100

        async with api_client(app) as client:
            response = await client.patch(
                f"/admin/orders/{order_id}/status",
                json={"status": "completed"},
                headers=user_headers(1, admin=True),
            )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["commissionStatus"] == "pending"


@pytest.mark.asyncio
async def test_completing_paid_order_approves_commission_and_notifies(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        checkout = await _referred_checkout(app)
        order_id = checkout["data"][0]["id"]
        await app.state.settlement_service.settle(checkout["transactionId"], source="capture")
        provider = app.state.notification_provider
        sent_before = len(provider.sent)

        async with api_client(app) as client:
            completed = await client.patch(
                f"/admin/orders/{order_id}/status",
                json={"status": "completed"},
                headers=user_headers(1, admin=True),
            )
            invalid = await client.patch(
                f"/admin/orders/{order_id}/status",
                json={"status": "pending_payment"},
                headers=user_headers(1, admin=True),
            )
            missing = await client.patch(
                "/admin/orders/9999/status", json={"status": "completed"}, headers=user_headers(1, admin=True)
            )

        assert completed.json()["commissionStatus"] == "approved"
        assert invalid.status_code == 400
        assert missing.status_code == 404

        status_notes = provider.sent[sent_before:]
        assert [note.recipient for note in status_notes] == ["user:5"]
        assert '"status":"statusLabels.completed"' in status_notes[0].body


@pytest.mark.asyncio
async def test_admin_payment_list_and_audit_trail(tmp_path) -> None:
    app = create_app(make_settings(tmp_path))

    async with lifespan(app):
        checkout = await _referred_checkout(app)
        transaction_id = checkout["transactionId"]
        await app.state.settlement_service.settle(transaction_id, source="webhook")

        async with api_client(app) as client:
            listing = await client.get(
                "/admin/payments", params={"status": "paid"}, headers=user_headers(1, admin=True)
            )
            audit = await client.get(
                f"/admin/payments/{transaction_id}/events", headers=user_headers(1, admin=True)
            )
            unknown = await client.get("/admin/payments/TXN-0-none/events", headers=user_headers(1, admin=True))

    body = listing.json()
    assert body["total"] == 1
    assert body["items"][0]["transactionId"] == transaction_id
    assert body["items"][0]["amount"] == 2000
    assert body["items"][0]["status"] == "paid"
    assert [entry["type"] for entry in audit.json()] == ["created", "paid"]
    assert audit.json()[1]["payload"] == "webhook"
    assert unknown.status_code == 404
