"""In-memory PaymentStore used for tests and local demos."""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Sequence
from copy import deepcopy
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy import inspect

from .constants import CANCELLABLE_COMMISSION_STATUSES, COMMISSION_CANCELLED, ORDER_CANCELLED, SETTLED_PAYMENT_STATUSES
from .delays import as_utc, delay_report_refusal, estimated_delivery_window
from .exceptions import DelayReportRejected, OrderNotFound
from .models import Affiliate, Order, Payment, PaymentEvent, Service
from .repository import (
    CheckoutRecord,
    OrderDraft,
    OrderStatusChange,
    PaymentDraft,
    TransitionResult,
    commission_after,
)

_Model = TypeVar("_Model", Service, Affiliate, Payment, PaymentEvent, Order)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _detach(instance: _Model) -> _Model:
    """Return a transient copy so callers never mutate stored rows."""

    mapper = inspect(type(instance))
    values = {attr.key: deepcopy(getattr(instance, attr.key)) for attr in mapper.column_attrs}
    return type(instance)(**values)


class InMemoryPaymentStore:
    """Dictionary-backed store with the same transition semantics as the SQL one.

    Every mutating call runs under a single :class:`asyncio.Lock`, which plays
    the role of the database transaction and of the conditional update.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._services: dict[int, Service] = {}
        self._affiliates: dict[int, Affiliate] = {}
        self._payments: dict[str, Payment] = {}
        self._events: list[PaymentEvent] = []
        self._orders: dict[int, Order] = {}
        self._ids: dict[str, int] = {}

    def _next_id(self, table: str) -> int:
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    def _add_event(self, payment: Payment, event_type: str, payload: str) -> None:
        self._events.append(
            PaymentEvent(
                id=self._next_id("payment_events"),
                payment_id=payment.id,
                type=event_type,
                payload=payload,
                created_at=_now(),
            )
        )

    def _orders_for(self, transaction_id: str) -> list[Order]:
        return sorted(
            (order for order in self._orders.values() if order.transaction_id == transaction_id),
            key=lambda order: order.id,
        )

    async def create_service(
        self,
        *,
        name: str,
        price: int,
        category: str = "Other Services",
        is_active: bool = True,
        duration: str | None = None,
    ) -> Service:
        async with self._lock:
            now = _now()
            service = Service(
                id=self._next_id("services"),
                name=name,
                category=category,
                price=price,
                is_active=is_active,
                duration=duration,
                created_at=now,
                updated_at=now,
            )
            self._services[service.id] = service
            return _detach(service)

    async def get_service(self, service_id: int) -> Service | None:
        service = self._services.get(service_id)
        return _detach(service) if service is not None else None

    async def list_services(self, *, active_only: bool = True) -> list[Service]:
        services = sorted(self._services.values(), key=lambda s: (s.category, s.id))
        return [_detach(service) for service in services if service.is_active or not active_only]

    async def create_affiliate(
        self, *, user_id: int, referral_code: str, commission_rate: float = 10.0, is_active: bool = True
    ) -> Affiliate:
        async with self._lock:
            if any(existing.referral_code == referral_code for existing in self._affiliates.values()):
                raise ValueError(f"Referral code {referral_code!r} already exists")
            affiliate = Affiliate(
                id=self._next_id("affiliates"),
                user_id=user_id,
                referral_code=referral_code,
                commission_rate=commission_rate,
                is_active=is_active,
                created_at=_now(),
            )
            self._affiliates[affiliate.id] = affiliate
            return _detach(affiliate)

    async def get_affiliate_by_code(self, referral_code: str) -> Affiliate | None:
        for affiliate in self._affiliates.values():
            if affiliate.referral_code == referral_code:
                return _detach(affiliate)
        return None

    async def create_checkout(self, payment: PaymentDraft, orders: Sequence[OrderDraft]) -> CheckoutRecord:
        async with self._lock:
            if payment.transaction_id in self._payments:
                raise ValueError(f"Transaction {payment.transaction_id} already exists")
            now = _now()
            created_orders: list[Order] = []
            for draft in orders:
                created_orders.append(
                    Order(
                        id=self._next_id("orders"),
                        user_id=draft.user_id,
                        service_id=draft.service_id,
                        status=draft.status,
                        total_amount=draft.total_amount,
                        currency=draft.currency,
                        transaction_id=draft.transaction_id,
                        details=deepcopy(draft.details),
                        affiliate_id=draft.affiliate_id,
                        commission_amount=draft.commission_amount,
                        commission_status=draft.commission_status,
                        last_notify_at=None,
                        created_at=now,
                        updated_at=now,
                    )
                )
            record = Payment(
                id=self._next_id("payments"),
                user_id=payment.user_id,
                order_id=created_orders[0].id if len(created_orders) == 1 else None,
                amount=payment.amount,
                currency=payment.currency,
                method=payment.method,
                status=payment.status,
                transaction_id=payment.transaction_id,
                provider_reference=None,
                created_at=now,
                updated_at=now,
            )
            for order in created_orders:
                self._orders[order.id] = order
            self._payments[record.transaction_id] = record
            self._add_event(record, "created", payment.status)
            return CheckoutRecord(payment=_detach(record), orders=[_detach(order) for order in created_orders])

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        payment = self._payments.get(transaction_id)
        return _detach(payment) if payment is not None else None

    async def list_payments(
        self, *, user_id: int | None, status: str | None, limit: int, offset: int
    ) -> tuple[list[Payment], int]:
        matches = [
            payment
            for payment in self._payments.values()
            if (user_id is None or payment.user_id == user_id) and (status is None or payment.status == status)
        ]
        matches.sort(key=lambda payment: (payment.created_at, payment.id), reverse=True)
        return [_detach(payment) for payment in matches[offset : offset + limit]], len(matches)

    async def list_payment_events(self, transaction_id: str) -> list[PaymentEvent]:
        payment = self._payments.get(transaction_id)
        if payment is None:
            return []
        return [_detach(event) for event in self._events if event.payment_id == payment.id]

    async def attach_provider_reference(self, transaction_id: str, reference: str) -> Payment | None:
        async with self._lock:
            payment = self._payments.get(transaction_id)
            if payment is None:
                return None
            payment.provider_reference = reference
            payment.updated_at = _now()
            self._add_event(payment, "provider_linked", reference)
            return _detach(payment)

    async def get_order(self, order_id: int) -> Order | None:
        order = self._orders.get(order_id)
        return _detach(order) if order is not None else None

    async def get_orders_by_transaction_id(self, transaction_id: str) -> list[Order]:
        return [_detach(order) for order in self._orders_for(transaction_id)]

    async def list_orders(self, *, user_id: int | None, status: str | None) -> list[Order]:
        matches = [
            order
            for order in self._orders.values()
            if (user_id is None or order.user_id == user_id) and (status is None or order.status == status)
        ]
        matches.sort(key=lambda order: (order.created_at, order.id), reverse=True)
        return [_detach(order) for order in matches]

    async def transition_transaction(
        self,
        transaction_id: str,
        *,
        from_statuses: Collection[str],
        to_status: str,
        order_status: str,
        source: str,
    ) -> TransitionResult:
        async with self._lock:
            payment = self._payments.get(transaction_id)
            applied = payment is not None and payment.status in from_statuses
            if applied:
                now = _now()
                payment.status = to_status
                payment.updated_at = now
                for order in self._orders_for(transaction_id):
                    order.status = order_status
                    order.updated_at = now
                    if (
                        order_status == ORDER_CANCELLED
                        and order.affiliate_id is not None
                        and order.commission_status in CANCELLABLE_COMMISSION_STATUSES
                    ):
                        order.commission_status = COMMISSION_CANCELLED
                self._add_event(payment, to_status, source)
            return TransitionResult(
                applied=applied,
                payment=_detach(payment) if payment is not None else None,
                orders=[_detach(order) for order in self._orders_for(transaction_id)],
            )

    async def update_order_status(self, order_id: int, status: str) -> OrderStatusChange:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            payment = self._payments.get(order.transaction_id) if order.transaction_id else None
            previous = order.status
            order.commission_status = commission_after(
                affiliate_id=order.affiliate_id,
                commission_status=order.commission_status,
                new_status=status,
                payment_settled=payment is not None and payment.status in SETTLED_PAYMENT_STATUSES,
            )
            order.status = status
            order.updated_at = _now()
            return OrderStatusChange(order=_detach(order), previous_status=previous)

    async def record_delay_report(self, order_id: int, user_id: int, now: datetime) -> Order:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.user_id != user_id:
                raise OrderNotFound(order_id)
            service = self._services.get(order.service_id)
            refusal = delay_report_refusal(
                order,
                delivery_window=estimated_delivery_window(service.duration if service is not None else None),
                now=now,
            )
            if refusal is not None:
                raise DelayReportRejected(order_id, refusal)
            order.last_notify_at = as_utc(now)
            order.updated_at = _now()
            return _detach(order)
