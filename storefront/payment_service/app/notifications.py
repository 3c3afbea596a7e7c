"""Notification fan-out triggered by settlement and operator actions."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Any, List, Protocol

from .events import RealtimeEventPublisher
from .metrics import NOTIFICATION_FANOUT_TOTAL
from .models import Order
from .pricing import format_amount

logger = logging.getLogger(__name__)

ADMINS_RECIPIENT = "admins"
IN_APP_CHANNEL = "in_app"


class NotificationProvider(Protocol):
    async def send(
        self,
        *,
        recipient: str,
        channel: str,
        subject: str | None,
        body: str,
        metadata: dict[str, Any] | None,
    ) -> None: ...


@dataclass(slots=True)
class SentNotification:
    recipient: str
    channel: str
    subject: str | None
    body: str
    metadata: dict[str, Any] | None


class InMemoryNotificationProvider:
    """Simple provider storing sent notifications for inspection during tests."""

    def __init__(self) -> None:
        self.sent: List[SentNotification] = []

    async def send(
        self,
        *,
        recipient: str,
        channel: str,
        subject: str | None,
        body: str,
        metadata: dict[str, Any] | None,
    ) -> None:
        self.sent.append(
            SentNotification(
                recipient=recipient,
                channel=channel,
                subject=subject,
                body=body,
                metadata=metadata,
            )
        )

    def for_recipient(self, recipient: str) -> list[SentNotification]:
        return [notification for notification in self.sent if notification.recipient == recipient]


def user_recipient(user_id: int) -> str:
    return f"user:{user_id}"


def _message(key: str, **params: Any) -> str:
    return json.dumps({"key": key, "params": params}, separators=(",", ":"))


class OrderNotifier:
    """Fans out user/admin notifications and realtime events.

    Every delivery is best effort: a failure is logged and counted but never
    raised, because by the time the notifier runs the payment transition has
    already been committed.
    """

    def __init__(
        self,
        provider: NotificationProvider | None = None,
        publisher: RealtimeEventPublisher | None = None,
    ) -> None:
        self.provider = provider
        self.publisher = publisher

    async def _deliver(self, kind: str, call: Awaitable[None]) -> None:
        try:
            await call
        except Exception:
            NOTIFICATION_FANOUT_TOTAL.labels(kind=kind, outcome="failed").inc()
            logger.exception("Notification fan-out failed (%s)", kind)
            return
        NOTIFICATION_FANOUT_TOTAL.labels(kind=kind, outcome="sent").inc()

    async def _send(self, *, recipient: str, subject: str, body: str, order: Order) -> None:
        if self.provider is None:
            return
        await self.provider.send(
            recipient=recipient,
            channel=IN_APP_CHANNEL,
            subject=subject,
            body=body,
            metadata={"orderId": order.id, "transactionId": order.transaction_id},
        )

    async def order_created(self, order: Order) -> None:
        await self._deliver(
            "order_created_user",
            self._send(
                recipient=user_recipient(order.user_id),
                subject="notifications.orderCreatedTitle",
                body=_message("notifications.orderCreatedMessage", orderId=order.id),
                order=order,
            ),
        )
        await self._deliver(
            "order_created_admin",
            self._send(
                recipient=ADMINS_RECIPIENT,
                subject="notifications.newOrderAdminTitle",
                body=_message(
                    "notifications.newOrderAdminMessage",
                    orderId=order.id,
                    amount=format_amount(order.total_amount, order.currency),
                ),
                order=order,
            ),
        )
        if self.publisher is not None:
            await self._deliver("order_created_event", self.publisher.order_created(order))

    async def order_status_changed(
        self, order: Order, *, previous_status: str, actor_id: int | None = None
    ) -> None:
        if order.status == previous_status:
            return
        # Operators changing their own orders do not notify themselves.
        if actor_id is None or actor_id != order.user_id:
            await self._deliver(
                "order_status_user",
                self._send(
                    recipient=user_recipient(order.user_id),
                    subject="notifications.orderStatusTitle",
                    body=_message(
                        "notifications.orderStatusMessage",
                        orderId=order.id,
                        status=f"statusLabels.{order.status}",
                    ),
                    order=order,
                ),
            )
        if self.publisher is not None:
            await self._deliver(
                "order_status_event",
                self.publisher.order_status_changed(order, previous_status=previous_status),
            )

    async def order_delayed(self, order: Order) -> None:
        """Tell operators a customer is chasing an overdue order."""

        await self._deliver(
            "order_delayed_admin",
            self._send(
                recipient=ADMINS_RECIPIENT,
                subject="notifications.orderDelayedTitle",
                body=_message(
                    "notifications.orderDelayedMessage",
                    orderId=order.id,
                    serviceId=order.service_id,
                    userName=f"User #{order.user_id}",
                ),
                order=order,
            ),
        )

    async def payments_updated(self, *, transaction_id: str, status: str) -> None:
        if self.publisher is not None:
            await self._deliver(
                "payment_updated_event",
                self.publisher.payments_updated(transaction_id=transaction_id, status=status),
            )

    async def payment_settled(self, transaction_id: str, orders: Sequence[Order]) -> None:
        for order in orders:
            await self.order_created(order)
        await self.payments_updated(transaction_id=transaction_id, status="paid")
