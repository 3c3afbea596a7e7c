"""Realtime event publishing for order and payment changes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from storefront.common import EventProducer

from .models import Order

ORDER_CREATED_TOPIC = "order.created.v1"
ORDER_STATUS_CHANGED_TOPIC = "order.status.changed.v1"
PAYMENT_UPDATED_TOPIC = "payment.updated.v1"
REALTIME_TOPICS = (ORDER_CREATED_TOPIC, ORDER_STATUS_CHANGED_TOPIC, PAYMENT_UPDATED_TOPIC)


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat()


def serialize_order_event(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "userId": order.user_id,
        "serviceId": order.service_id,
        "status": order.status,
        "totalAmount": order.total_amount,
        "currency": order.currency,
        "transactionId": order.transaction_id,
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
    }


class RealtimeEventPublisher:
    """Publishes order and payment lifecycle events for dashboards."""

    def __init__(self, producer: EventProducer | None) -> None:
        self._producer = producer

    async def _emit(self, topic: str, payload: dict[str, Any]) -> None:
        if self._producer is None:
            return
        envelope = {
            "eventType": topic,
            "occurredAt": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        await self._producer.send(topic, envelope)

    async def order_created(self, order: Order) -> None:
        await self._emit(ORDER_CREATED_TOPIC, {"order": serialize_order_event(order)})

    async def order_status_changed(self, order: Order, *, previous_status: str) -> None:
        await self._emit(
            ORDER_STATUS_CHANGED_TOPIC,
            {
                "order": serialize_order_event(order),
                "previousStatus": previous_status,
                "status": order.status,
            },
        )

    async def payments_updated(self, *, transaction_id: str, status: str) -> None:
        await self._emit(PAYMENT_UPDATED_TOPIC, {"transactionId": transaction_id, "status": status})
