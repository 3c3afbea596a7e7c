"""Payment/Order store: the only writer of payment and order status."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.common import unit_of_work

from .constants import (
    CANCELLABLE_COMMISSION_STATUSES,
    COMMISSION_APPROVED,
    COMMISSION_CANCELLED,
    COMMISSION_PENDING,
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    SETTLED_PAYMENT_STATUSES,
)
from .delays import COOLDOWN_ACTIVE, DELAY_REPORT_COOLDOWN, as_utc, delay_report_refusal, estimated_delivery_window
from .exceptions import DelayReportRejected, OrderNotFound
from .models import Affiliate, Order, Payment, PaymentEvent, Service


@dataclass(slots=True)
class OrderDraft:
    user_id: int
    service_id: int
    status: str
    total_amount: int
    currency: str
    transaction_id: str
    details: dict[str, Any]
    affiliate_id: int | None = None
    commission_amount: int | None = None
    commission_status: str | None = None


@dataclass(slots=True)
class PaymentDraft:
    user_id: int
    amount: int
    currency: str
    method: str
    status: str
    transaction_id: str


@dataclass(slots=True)
class CheckoutRecord:
    payment: Payment
    orders: list[Order]


@dataclass(slots=True)
class TransitionResult:
    """Outcome of a conditional payment transition.

    ``applied`` is True only for the single caller whose update moved the
    payment out of one of the expected source statuses.
    """

    applied: bool
    payment: Payment | None
    orders: list[Order] = field(default_factory=list)


@dataclass(slots=True)
class OrderStatusChange:
    order: Order
    previous_status: str


def commission_after(
    *,
    affiliate_id: int | None,
    commission_status: str | None,
    new_status: str,
    payment_settled: bool,
) -> str | None:
    """Commission status implied by moving an order to ``new_status``.

    Commissions only move forward: completed orders approve a pending
    commission (once the money has actually been collected), cancelled orders
    cancel a commission that has not been paid out yet.
    """

    if affiliate_id is None:
        return commission_status
    if new_status == ORDER_COMPLETED and commission_status == COMMISSION_PENDING and payment_settled:
        return COMMISSION_APPROVED
    if new_status == ORDER_CANCELLED and commission_status in CANCELLABLE_COMMISSION_STATUSES:
        return COMMISSION_CANCELLED
    return commission_status


class PaymentStore(Protocol):
    async def create_service(
        self, *, name: str, price: int, category: str = ..., is_active: bool = ..., duration: str | None = ...
    ) -> Service: ...

    async def get_service(self, service_id: int) -> Service | None: ...

    async def list_services(self, *, active_only: bool = True) -> list[Service]: ...

    async def create_affiliate(
        self, *, user_id: int, referral_code: str, commission_rate: float = ..., is_active: bool = ...
    ) -> Affiliate: ...

    async def get_affiliate_by_code(self, referral_code: str) -> Affiliate | None: ...

    async def create_checkout(self, payment: PaymentDraft, orders: Sequence[OrderDraft]) -> CheckoutRecord: ...

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None: ...

    async def list_payments(
        self, *, user_id: int | None, status: str | None, limit: int, offset: int
    ) -> tuple[list[Payment], int]: ...

    async def list_payment_events(self, transaction_id: str) -> list[PaymentEvent]: ...

    async def attach_provider_reference(self, transaction_id: str, reference: str) -> Payment | None: ...

    async def get_order(self, order_id: int) -> Order | None: ...

    async def get_orders_by_transaction_id(self, transaction_id: str) -> list[Order]: ...

    async def list_orders(self, *, user_id: int | None, status: str | None) -> list[Order]: ...

    async def transition_transaction(
        self,
        transaction_id: str,
        *,
        from_statuses: Collection[str],
        to_status: str,
        order_status: str,
        source: str,
    ) -> TransitionResult: ...

    async def update_order_status(self, order_id: int, status: str) -> OrderStatusChange: ...

    async def record_delay_report(self, order_id: int, user_id: int, now: datetime) -> Order: ...


class PaymentRepository:
    """Query helpers bound to one AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_orders_by_transaction_id(self, transaction_id: str) -> list[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.transaction_id == transaction_id)
            .order_by(Order.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def add_event(self, payment: Payment, *, event_type: str, payload: str) -> PaymentEvent:
        event = PaymentEvent(payment_id=payment.id, type=event_type, payload=payload)
        self.session.add(event)
        await self.session.flush()
        return event

    async def conditional_payment_update(
        self, transaction_id: str, *, from_statuses: Collection[str], to_status: str
    ) -> bool:
        result = await self.session.execute(
            update(Payment)
            .where(Payment.transaction_id == transaction_id, Payment.status.in_(tuple(from_statuses)))
            .values(status=to_status, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_orders_for_transaction(self, transaction_id: str, *, status: str) -> None:
        await self.session.execute(
            update(Order)
            .where(Order.transaction_id == transaction_id)
            .values(status=status, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if status == ORDER_CANCELLED:
            await self.session.execute(
                update(Order)
                .where(
                    Order.transaction_id == transaction_id,
                    Order.affiliate_id.is_not(None),
                    Order.commission_status.in_(tuple(CANCELLABLE_COMMISSION_STATUSES)),
                )
                .values(commission_status=COMMISSION_CANCELLED)
                .execution_options(synchronize_session=False)
            )


class SqlPaymentStore:
    """SQLAlchemy-backed store; every public call is one transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_service(
        self,
        *,
        name: str,
        price: int,
        category: str = "Other Services",
        is_active: bool = True,
        duration: str | None = None,
    ) -> Service:
        async with unit_of_work(self._session_factory) as session:
            service = Service(name=name, price=price, category=category, is_active=is_active, duration=duration)
            session.add(service)
            await session.flush()
            await session.refresh(service)
            return service

    async def get_service(self, service_id: int) -> Service | None:
        async with unit_of_work(self._session_factory) as session:
            return await session.get(Service, service_id)

    async def list_services(self, *, active_only: bool = True) -> list[Service]:
        async with unit_of_work(self._session_factory) as session:
            query: Select[tuple[Service]] = select(Service).order_by(Service.category, Service.id)
            if active_only:
                query = query.where(Service.is_active.is_(True))
            result = await session.execute(query)
            return list(result.scalars())

    async def create_affiliate(
        self, *, user_id: int, referral_code: str, commission_rate: float = 10.0, is_active: bool = True
    ) -> Affiliate:
        async with unit_of_work(self._session_factory) as session:
            affiliate = Affiliate(
                user_id=user_id,
                referral_code=referral_code,
                commission_rate=commission_rate,
                is_active=is_active,
            )
            session.add(affiliate)
            await session.flush()
            await session.refresh(affiliate)
            return affiliate

    async def get_affiliate_by_code(self, referral_code: str) -> Affiliate | None:
        async with unit_of_work(self._session_factory) as session:
            result = await session.execute(select(Affiliate).where(Affiliate.referral_code == referral_code))
            return result.scalar_one_or_none()

    async def create_checkout(self, payment: PaymentDraft, orders: Sequence[OrderDraft]) -> CheckoutRecord:
        async with unit_of_work(self._session_factory) as session:
            created_orders = [
                Order(
                    user_id=draft.user_id,
                    service_id=draft.service_id,
                    status=draft.status,
                    total_amount=draft.total_amount,
                    currency=draft.currency,
                    transaction_id=draft.transaction_id,
                    details=draft.details,
                    affiliate_id=draft.affiliate_id,
                    commission_amount=draft.commission_amount,
                    commission_status=draft.commission_status,
                )
                for draft in orders
            ]
            session.add_all(created_orders)
            await session.flush()

            record = Payment(
                user_id=payment.user_id,
                order_id=created_orders[0].id if len(created_orders) == 1 else None,
                amount=payment.amount,
                currency=payment.currency,
                method=payment.method,
                status=payment.status,
                transaction_id=payment.transaction_id,
            )
            session.add(record)
            await session.flush()

            repository = PaymentRepository(session)
            await repository.add_event(record, event_type="created", payload=payment.status)
            for entity in (*created_orders, record):
                await session.refresh(entity)
            return CheckoutRecord(payment=record, orders=created_orders)

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment | None:
        async with unit_of_work(self._session_factory) as session:
            return await PaymentRepository(session).get_payment_by_transaction_id(transaction_id)

    async def list_payments(
        self, *, user_id: int | None, status: str | None, limit: int, offset: int
    ) -> tuple[list[Payment], int]:
        filters = []
        if user_id is not None:
            filters.append(Payment.user_id == user_id)
        if status is not None:
            filters.append(Payment.status == status)

        base: Select[tuple[Payment]] = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc())
        count: Select[tuple[int]] = select(func.count(Payment.id))
        if filters:
            combined = and_(*filters)
            base = base.where(combined)
            count = count.where(combined)

        async with unit_of_work(self._session_factory) as session:
            total = (await session.execute(count)).scalar_one()
            result = await session.execute(base.offset(offset).limit(limit))
            return list(result.scalars()), total

    async def list_payment_events(self, transaction_id: str) -> list[PaymentEvent]:
        async with unit_of_work(self._session_factory) as session:
            result = await session.execute(
                select(PaymentEvent)
                .join(Payment, PaymentEvent.payment_id == Payment.id)
                .where(Payment.transaction_id == transaction_id)
                .order_by(PaymentEvent.id)
            )
            return list(result.scalars())

    async def attach_provider_reference(self, transaction_id: str, reference: str) -> Payment | None:
        async with unit_of_work(self._session_factory) as session:
            repository = PaymentRepository(session)
            payment = await repository.get_payment_by_transaction_id(transaction_id)
            if payment is None:
                return None
            payment.provider_reference = reference
            await repository.add_event(payment, event_type="provider_linked", payload=reference)
            await session.flush()
            await session.refresh(payment)
            return payment

    async def get_order(self, order_id: int) -> Order | None:
        async with unit_of_work(self._session_factory) as session:
            return await session.get(Order, order_id)

    async def get_orders_by_transaction_id(self, transaction_id: str) -> list[Order]:
        async with unit_of_work(self._session_factory) as session:
            return await PaymentRepository(session).get_orders_by_transaction_id(transaction_id)

    async def list_orders(self, *, user_id: int | None, status: str | None) -> list[Order]:
        query: Select[tuple[Order]] = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
        if status is not None:
            query = query.where(Order.status == status)
        async with unit_of_work(self._session_factory) as session:
            result = await session.execute(query)
            return list(result.scalars())

    async def transition_transaction(
        self,
        transaction_id: str,
        *,
        from_statuses: Collection[str],
        to_status: str,
        order_status: str,
        source: str,
    ) -> TransitionResult:
        async with unit_of_work(self._session_factory) as session:
            repository = PaymentRepository(session)
            applied = await repository.conditional_payment_update(
                transaction_id, from_statuses=from_statuses, to_status=to_status
            )
            if applied:
                await repository.update_orders_for_transaction(transaction_id, status=order_status)
            payment = await repository.get_payment_by_transaction_id(transaction_id)
            if applied and payment is not None:
                await repository.add_event(payment, event_type=to_status, payload=source)
            orders = await repository.get_orders_by_transaction_id(transaction_id)
            return TransitionResult(applied=applied, payment=payment, orders=orders)

    async def update_order_status(self, order_id: int, status: str) -> OrderStatusChange:
        async with unit_of_work(self._session_factory) as session:
            result = await session.execute(
                select(Order).where(Order.id == order_id).with_for_update()
            )
            order = result.scalar_one_or_none()
            if order is None:
                raise OrderNotFound(order_id)

            payment_settled = False
            if order.transaction_id:
                payment = await PaymentRepository(session).get_payment_by_transaction_id(order.transaction_id)
                payment_settled = payment is not None and payment.status in SETTLED_PAYMENT_STATUSES

            previous = order.status
            order.commission_status = commission_after(
                affiliate_id=order.affiliate_id,
                commission_status=order.commission_status,
                new_status=status,
                payment_settled=payment_settled,
            )
            order.status = status
            order.updated_at = datetime.now(timezone.utc)
            await session.flush()
            await session.refresh(order)
            return OrderStatusChange(order=order, previous_status=previous)

    async def record_delay_report(self, order_id: int, user_id: int, now: datetime) -> Order:
        """Stamp ``last_notify_at`` if the customer may report ``order_id`` as delayed."""

        now = as_utc(now)
        async with unit_of_work(self._session_factory) as session:
            row = (
                await session.execute(
                    select(Order, Service.duration)
                    .join(Service, Order.service_id == Service.id)
                    .where(Order.id == order_id)
                )
            ).one_or_none()
            if row is None or row[0].user_id != user_id:
                raise OrderNotFound(order_id)
            order, duration = row
            refusal = delay_report_refusal(order, delivery_window=estimated_delivery_window(duration), now=now)
            if refusal is not None:
                raise DelayReportRejected(order_id, refusal)

            # Conditional write: of two concurrent reports only one passes the cooldown.
            stamped = await session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    or_(Order.last_notify_at.is_(None), Order.last_notify_at <= now - DELAY_REPORT_COOLDOWN),
                )
                .values(last_notify_at=now, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if stamped.rowcount != 1:
                raise DelayReportRejected(order_id, COOLDOWN_ACTIVE)
            await session.refresh(order)
            return order
