import asyncio

import pytest

from storefront.payment_service.app.exceptions import PaymentRecordMissing
from storefront.payment_service.app.services import CartLine
from payment_helpers import WEBHOOK_HEADERS, build_harness, open_store, webhook_event


async def _pending(harness, quantities=(1000, 2000)) -> str:
    service = await harness.store.create_service(name="Instagram Followers", price=500)
    result = await harness.checkout.checkout(
        1,
        [CartLine(service_id=service.id, quantity=quantity, link="https://ig.test") for quantity in quantities],
        payment_method="paypal",
    )
    return result.transaction_id


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["memory", "sql"])
async def test_capture_and_webhook_racing_settle_exactly_once(kind: str, tmp_path) -> None:
    async with open_store(kind, tmp_path) as store:
        harness = await build_harness(store)
        transaction_id = await _pending(harness)
        harness.paypal.add_order("ORDER-RACE", transaction_id=transaction_id, value="15.00")

        capture, webhook = await asyncio.gather(
            harness.settlement.capture_paypal(1, "ORDER-RACE"),
            harness.webhooks.handle(WEBHOOK_HEADERS, webhook_event("PAYMENT.CAPTURE.COMPLETED", transaction_id)),
        )

        assert capture.status == "paid"
        assert webhook in {"settled", "already_settled"}
        winners = int(capture.applied) + int(webhook == "settled")
        assert winners == 1

        created_events = [message for topic, message in harness.events if topic == "order.created.v1"]
        assert sorted(message["order"]["id"] for message in created_events) == sorted(
            order.id for order in await harness.store.get_orders_by_transaction_id(transaction_id)
        )
        user_notifications = harness.provider.for_recipient("user:1")
        assert len(user_notifications) == 2
        assert [topic for topic, _ in harness.events].count("payment.updated.v1") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["memory", "sql"])
async def test_many_concurrent_settlements_fan_out_once(kind: str, tmp_path) -> None:
    async with open_store(kind, tmp_path) as store:
        harness = await build_harness(store)
        transaction_id = await _pending(harness, quantities=(1000,))

        outcomes = await asyncio.gather(
            *(harness.settlement.settle(transaction_id, source="capture") for _ in range(10))
        )

        assert sum(outcome.applied for outcome in outcomes) == 1
        assert {outcome.status for outcome in outcomes} == {"paid"}
        assert len(harness.provider.for_recipient("admins")) == 1
        events = await harness.store.list_payment_events(transaction_id)
        assert [event.type for event in events] == ["created", "paid"]


@pytest.mark.asyncio
async def test_settle_unknown_transaction_raises_record_missing() -> None:
    harness = await build_harness()

    with pytest.raises(PaymentRecordMissing):
        await harness.settlement.settle("TXN-0-missing", source="capture")


@pytest.mark.asyncio
async def test_notification_failures_do_not_undo_settlement() -> None:
    harness = await build_harness()
    transaction_id = await _pending(harness, quantities=(1000,))

    class _BrokenProvider:
        async def send(self, **_: object) -> None:
            raise RuntimeError("provider down")

    harness.settlement.notifier.provider = _BrokenProvider()

    outcome = await harness.settlement.settle(transaction_id, source="webhook")

    assert outcome.applied is True
    payment = await harness.store.get_payment_by_transaction_id(transaction_id)
    assert payment.status == "paid"
    # Realtime events still go out when the inbox provider fails.
    assert [topic for topic, _ in harness.events] == ["order.created.v1", "payment.updated.v1"]
