"""Checkout and settlement orchestration for the storefront."""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, cast
from urllib.parse import urlencode

from storefront.common import bind_transaction_id

from .constants import (
    CHECKOUT_ORDER_STATUS,
    COMMISSION_NONE,
    COMMISSION_PENDING,
    ORDER_CANCELLED,
    ORDER_PENDING_PAYMENT,
    ORDER_PROCESSING,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    PROVIDER_PAYONEER,
    PROVIDER_PAYPAL,
    SETTLED_PAYMENT_STATUSES,
)
from .exceptions import (
    AmountMismatch,
    CaptureFailed,
    DelayReportRejected,
    EmptyCart,
    InvalidLineAmount,
    OrderNotFound,
    PaymentAlreadyCompleted,
    PaymentNotFound,
    PaymentNotPayable,
    PaymentRecordMissing,
    ServiceNotFound,
    ServiceUnavailable,
    UnsupportedProvider,
)
from .gateways import GatewayError, PaymentGateway, PaymentIntent, PayPalLikeGateway
from .guards import IntentGuard
from .metrics import (
    CHECKOUT_AMOUNT_MINOR_UNITS,
    CHECKOUTS_TOTAL,
    DELAY_REPORTS_TOTAL,
    SETTLEMENTS_TOTAL,
    normalise_settlement_outcome,
)
from .models import Affiliate, Order, Payment
from .notifications import OrderNotifier
from .pricing import apply_percentage, commission_for, is_valid_amount, line_amount, normalize_amount
from .repository import OrderDraft, PaymentDraft, PaymentStore, TransitionResult

logger = logging.getLogger(__name__)


def generate_transaction_id() -> str:
    return f"TXN-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _record_settlement(source: str, outcome: str) -> None:
    SETTLEMENTS_TOTAL.labels(source=source, outcome=normalise_settlement_outcome(outcome)).inc()


@dataclass(slots=True)
class CartLine:
    service_id: int
    quantity: int
    link: str
    # Client-submitted price; kept for the audit trail, never used for totals.
    price: Any = None


@dataclass(slots=True)
class CheckoutResult:
    transaction_id: str
    payment: Payment
    orders: list[Order] = field(default_factory=list)


@dataclass(slots=True)
class IntentResult:
    provider: str
    transaction_id: str
    intent: PaymentIntent


@dataclass(slots=True)
class SettlementOutcome:
    transaction_id: str
    status: str
    applied: bool = False


class CheckoutService:
    """Turns a cart into one pending Payment and its Orders.

    Prices always come from the catalog: the ``price`` a client submits with
    a line is ignored. Every line is validated before anything is written, so
    a single bad line leaves no Orders and no Payment behind.
    """

    def __init__(
        self,
        store: PaymentStore,
        *,
        currency: str = "USD",
        tax_rate_percent: float = 0.0,
        transaction_id_factory: Callable[[], str] = generate_transaction_id,
    ) -> None:
        self.store = store
        self.currency = currency.upper()
        self.tax_rate_percent = tax_rate_percent
        self._new_transaction_id = transaction_id_factory

    async def _resolve_affiliate(self, referral_code: str | None, user_id: int) -> Affiliate | None:
        if not referral_code:
            return None
        affiliate = await self.store.get_affiliate_by_code(referral_code.strip())
        if affiliate is None or not affiliate.is_active:
            logger.info("Ignoring unknown or inactive referral code %s", referral_code)
            return None
        if affiliate.user_id == user_id:
            logger.info("Ignoring self-referral for user %s", user_id)
            return None
        return affiliate

    async def checkout(
        self,
        user_id: int,
        lines: Sequence[CartLine],
        *,
        payment_method: str,
        referral_code: str | None = None,
    ) -> CheckoutResult:
        if not lines:
            CHECKOUTS_TOTAL.labels(outcome="rejected").inc()
            raise EmptyCart()

        transaction_id = self._new_transaction_id()
        with bind_transaction_id(transaction_id):
            try:
                drafts = await self._price_lines(user_id, lines, transaction_id, referral_code)
            except Exception:
                CHECKOUTS_TOTAL.labels(outcome="rejected").inc()
                raise

            subtotal = sum(draft.total_amount for draft in drafts)
            total = subtotal + apply_percentage(subtotal, self.tax_rate_percent)
            payment = PaymentDraft(
                user_id=user_id,
                amount=total,
                currency=self.currency,
                method=payment_method,
                status=PAYMENT_PENDING,
                transaction_id=transaction_id,
            )
            record = await self.store.create_checkout(payment, drafts)

            CHECKOUTS_TOTAL.labels(outcome="created").inc()
            CHECKOUT_AMOUNT_MINOR_UNITS.observe(total)
            logger.info(
                "Checkout created for user %s: %d order(s), %d minor units %s via %s",
                user_id,
                len(record.orders),
                total,
                self.currency,
                payment_method,
            )
            return CheckoutResult(transaction_id=transaction_id, payment=record.payment, orders=record.orders)

    async def _price_lines(
        self,
        user_id: int,
        lines: Sequence[CartLine],
        transaction_id: str,
        referral_code: str | None,
    ) -> list[OrderDraft]:
        affiliate = await self._resolve_affiliate(referral_code, user_id)
        drafts: list[OrderDraft] = []
        for position, line in enumerate(lines, start=1):
            service = await self.store.get_service(line.service_id)
            if service is None:
                raise ServiceNotFound(line.service_id, line=position)
            if not service.is_active:
                raise ServiceUnavailable(service.id, service.name, line=position)

            amount = line_amount(service.price, line.quantity)
            if not is_valid_amount(amount) or amount <= 0:
                raise InvalidLineAmount(service.id, amount, line=position)

            commission_amount: int | None = None
            commission_status = COMMISSION_NONE
            affiliate_id: int | None = None
            if affiliate is not None:
                affiliate_id = affiliate.id
                commission_amount = commission_for(amount, affiliate.commission_rate)
                commission_status = COMMISSION_PENDING

            drafts.append(
                OrderDraft(
                    user_id=user_id,
                    service_id=service.id,
                    status=CHECKOUT_ORDER_STATUS,
                    total_amount=amount,
                    currency=self.currency,
                    transaction_id=transaction_id,
                    details={
                        "link": line.link,
                        "quantity": line.quantity,
                        "original_price": service.price,
                        "submitted_price": normalize_amount(line.price) if line.price is not None else None,
                    },
                    affiliate_id=affiliate_id,
                    commission_amount=commission_amount,
                    commission_status=commission_status,
                )
            )
        return drafts


class SettlementService:
    """Reconciles gateway results with local Payment/Order state.

    Capture, webhook and redirect callback all funnel into :meth:`settle`,
    whose conditional ``pending -> paid`` transition is the single
    idempotency boundary: exactly one caller applies it and only that caller
    fans out notifications.
    """

    def __init__(
        self,
        store: PaymentStore,
        *,
        gateways: Mapping[str, PaymentGateway],
        notifier: OrderNotifier,
        guard: IntentGuard,
        frontend_url: str = "http://localhost:5000",
    ) -> None:
        self.store = store
        self.gateways = dict(gateways)
        self.notifier = notifier
        self.guard = guard
        self.frontend_url = frontend_url.rstrip("/")

    def _gateway(self, provider: str) -> PaymentGateway:
        gateway = self.gateways.get(provider.strip().lower())
        if gateway is None:
            raise UnsupportedProvider(provider)
        return gateway

    def _paypal(self) -> PayPalLikeGateway:
        return cast(PayPalLikeGateway, self._gateway(PROVIDER_PAYPAL))

    async def _owned_payment(self, user_id: int, transaction_id: str) -> Payment:
        payment = await self.store.get_payment_by_transaction_id(transaction_id)
        if payment is None or payment.user_id != user_id:
            raise PaymentNotFound(transaction_id)
        return payment

    async def create_intent(self, user_id: int, transaction_id: str, provider: str) -> IntentResult:
        gateway = self._gateway(provider)
        with bind_transaction_id(transaction_id):
            async with self.guard.hold(transaction_id):
                payment = await self._owned_payment(user_id, transaction_id)
                if payment.status in SETTLED_PAYMENT_STATUSES:
                    raise PaymentAlreadyCompleted(transaction_id)
                if payment.status != PAYMENT_PENDING:
                    raise PaymentNotPayable(transaction_id, payment.status)

                intent = await gateway.create_payment_intent(
                    payment.amount,
                    payment.currency,
                    transaction_id,
                    payer={"userId": user_id},
                )
                await self.store.attach_provider_reference(transaction_id, intent.provider_transaction_id)
                logger.info(
                    "Created %s intent %s for %d minor units %s",
                    gateway.provider,
                    intent.provider_transaction_id,
                    payment.amount,
                    payment.currency,
                )
                return IntentResult(provider=gateway.provider, transaction_id=transaction_id, intent=intent)

    async def settle(self, transaction_id: str, *, source: str) -> SettlementOutcome:
        """Apply ``pending -> paid`` and fan out if this call won the transition."""

        with bind_transaction_id(transaction_id):
            result = await self.store.transition_transaction(
                transaction_id,
                from_statuses=(PAYMENT_PENDING,),
                to_status=PAYMENT_PAID,
                order_status=ORDER_PROCESSING,
                source=source,
            )
            if result.payment is None:
                _record_settlement(source, "record_missing")
                raise PaymentRecordMissing(transaction_id)

            if result.applied:
                _record_settlement(source, "applied")
                logger.info("Payment settled via %s; %d order(s) now processing", source, len(result.orders))
                await self.notifier.payment_settled(transaction_id, result.orders)
                return SettlementOutcome(transaction_id=transaction_id, status=PAYMENT_PAID, applied=True)

            if result.payment.status in SETTLED_PAYMENT_STATUSES:
                _record_settlement(source, "already_settled")
                logger.info("Payment already settled; %s is a no-op", source)
                return SettlementOutcome(transaction_id=transaction_id, status=PAYMENT_PAID)

            _record_settlement(source, "not_payable")
            logger.error("Refusing to settle payment in status %s via %s", result.payment.status, source)
            raise PaymentNotPayable(transaction_id, result.payment.status)

    async def capture_paypal(self, user_id: int, provider_order_id: str) -> SettlementOutcome:
        gateway = self._paypal()
        source = "capture"
        try:
            details = await gateway.get_order_details(provider_order_id)
        except GatewayError:
            _record_settlement(source, "gateway_error")
            raise

        units = details.get("purchase_units")
        unit = units[0] if isinstance(units, list) and units and isinstance(units[0], dict) else {}
        transaction_id = unit.get("custom_id") or unit.get("reference_id")
        if not transaction_id:
            _record_settlement(source, "record_missing")
            logger.error("PayPal order %s carries no internal transaction id", provider_order_id)
            raise PaymentRecordMissing(provider_order_id)

        with bind_transaction_id(transaction_id):
            payment = await self.store.get_payment_by_transaction_id(transaction_id)
            if payment is None or payment.user_id != user_id:
                _record_settlement(source, "record_missing")
                logger.error("No payment for PayPal order %s owned by user %s", provider_order_id, user_id)
                raise PaymentRecordMissing(transaction_id)

            if payment.status in SETTLED_PAYMENT_STATUSES:
                _record_settlement(source, "already_settled")
                logger.info("PayPal order %s already settled", provider_order_id)
                return SettlementOutcome(transaction_id=transaction_id, status=PAYMENT_PAID)
            if payment.status != PAYMENT_PENDING:
                _record_settlement(source, "not_payable")
                raise PaymentNotPayable(transaction_id, payment.status)

            amount = unit.get("amount") or {}
            provider_amount = normalize_amount(str(amount.get("value", "")))
            provider_currency = str(amount.get("currency_code") or "").upper() or None
            if provider_amount != payment.amount or provider_currency != payment.currency.upper():
                _record_settlement(source, "amount_mismatch")
                logger.error(
                    "PayPal amount mismatch for order %s: expected %d %s, got %d %s",
                    provider_order_id,
                    payment.amount,
                    payment.currency,
                    provider_amount,
                    provider_currency,
                )
                raise AmountMismatch(
                    transaction_id,
                    expected_amount=payment.amount,
                    expected_currency=payment.currency,
                    actual_amount=provider_amount,
                    actual_currency=provider_currency,
                )

            try:
                capture = await gateway.capture_order(provider_order_id)
            except GatewayError:
                _record_settlement(source, "gateway_error")
                raise
            if not capture.ok or capture.provider_status != "COMPLETED":
                _record_settlement(source, "capture_failed")
                logger.error(
                    "PayPal capture for order %s not completed (status %s)",
                    provider_order_id,
                    capture.provider_status,
                )
                raise CaptureFailed(provider_order_id, capture.provider_status)

            return await self.settle(transaction_id, source=source)

    async def fail(self, transaction_id: str, *, source: str) -> TransitionResult:
        """``pending -> failed``; orders go back to ``pending_payment`` for a retry."""

        with bind_transaction_id(transaction_id):
            result = await self.store.transition_transaction(
                transaction_id,
                from_statuses=(PAYMENT_PENDING,),
                to_status=PAYMENT_FAILED,
                order_status=ORDER_PENDING_PAYMENT,
                source=source,
            )
            if result.applied:
                logger.warning("Payment marked failed via %s", source)
                await self.notifier.payments_updated(transaction_id=transaction_id, status=PAYMENT_FAILED)
            return result

    async def refund(self, transaction_id: str, *, source: str) -> TransitionResult:
        """``paid -> refunded``; orders are cancelled along with open commissions."""

        with bind_transaction_id(transaction_id):
            before = {
                order.id: order.status for order in await self.store.get_orders_by_transaction_id(transaction_id)
            }
            result = await self.store.transition_transaction(
                transaction_id,
                from_statuses=tuple(SETTLED_PAYMENT_STATUSES),
                to_status=PAYMENT_REFUNDED,
                order_status=ORDER_CANCELLED,
                source=source,
            )
            if result.applied:
                logger.warning("Payment refunded via %s; %d order(s) cancelled", source, len(result.orders))
                for order in result.orders:
                    await self.notifier.order_status_changed(
                        order, previous_status=before.get(order.id, ORDER_PROCESSING)
                    )
                await self.notifier.payments_updated(transaction_id=transaction_id, status=PAYMENT_REFUNDED)
            return result

    async def verify_status(self, user_id: int, transaction_id: str) -> SettlementOutcome:
        """Polling fallback: report the committed status without calling a gateway."""

        payment = await self.store.get_payment_by_transaction_id(transaction_id)
        if payment is None or payment.user_id != user_id:
            return SettlementOutcome(transaction_id=transaction_id, status="not_found")
        status = PAYMENT_PAID if payment.status in SETTLED_PAYMENT_STATUSES else payment.status
        return SettlementOutcome(transaction_id=transaction_id, status=status)

    async def payment_details(self, transaction_id: str) -> Payment:
        payment = await self.store.get_payment_by_transaction_id(transaction_id)
        if payment is None:
            raise PaymentNotFound(transaction_id)
        return payment

    def _redirect(self, path: str, **params: str) -> str:
        return f"{self.frontend_url}{path}?{urlencode(params)}"

    async def handle_payoneer_callback(
        self, provider_transaction_id: str | None, transaction_id: str | None, status: str | None
    ) -> str:
        """Return the frontend URL the browser should land on after the redirect."""

        reference = transaction_id or ""
        if status != "success" or not transaction_id:
            return self._redirect("/payment/failed", status=status or "", transactionId=reference)

        gateway = self._gateway(PROVIDER_PAYONEER)
        with bind_transaction_id(transaction_id):
            try:
                payment = await self.store.get_payment_by_transaction_id(transaction_id)
                if payment is None:
                    _record_settlement("callback", "record_missing")
                    logger.error("Payoneer callback for unknown transaction")
                    return self._redirect("/payment/failed", error="record_missing", transactionId=reference)

                verified = bool(provider_transaction_id) and await gateway.verify_payment(provider_transaction_id)
                if verified and payment.provider_reference and payment.provider_reference != provider_transaction_id:
                    logger.error(
                        "Payoneer callback id %s does not match recorded reference %s",
                        provider_transaction_id,
                        payment.provider_reference,
                    )
                    verified = False
                if not verified:
                    _record_settlement("callback", "verification_failed")
                    logger.error("Payoneer callback failed verification for %s", provider_transaction_id)
                    return self._redirect("/payment/failed", error="verification_failed", transactionId=reference)

                await self.settle(transaction_id, source="callback")
            except PaymentNotPayable:
                return self._redirect("/payment/failed", error="not_payable", transactionId=reference)
            except Exception:
                logger.exception("Payoneer callback processing failed")
                return self._redirect("/payment/failed", error="internal_error", transactionId=reference)

        return self._redirect("/payment/success", transactionId=reference)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DelayReportService:
    """Lets a customer flag an order that has overrun its delivery estimate.

    The store decides whether the report is allowed and stamps the cooldown
    in the same unit of work; operators are only notified for accepted reports.
    """

    def __init__(
        self,
        store: PaymentStore,
        notifier: OrderNotifier,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock

    async def report(self, user_id: int, order_id: int) -> Order:
        try:
            order = await self.store.record_delay_report(order_id, user_id, self.clock())
        except OrderNotFound:
            DELAY_REPORTS_TOTAL.labels(outcome="not_found").inc()
            raise
        except DelayReportRejected as exc:
            DELAY_REPORTS_TOTAL.labels(outcome="rejected").inc()
            logger.info("Delay report for order %s rejected: %s", order_id, exc.reason)
            raise

        DELAY_REPORTS_TOTAL.labels(outcome="reported").inc()
        logger.info("User %s reported order %s as delayed", user_id, order_id)
        await self.notifier.order_delayed(order)
        return order
