"""PayPal webhook parsing and dispatch."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from storefront.common import bind_transaction_id

from .constants import PROVIDER_PAYPAL, SETTLED_PAYMENT_STATUSES
from .exceptions import PaymentNotPayable
from .gateways import PayPalLikeGateway
from .metrics import WEBHOOK_EVENTS_TOTAL, normalise_event_type, normalise_webhook_outcome
from .repository import PaymentStore
from .services import SettlementService

logger = logging.getLogger(__name__)

CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"


class InvalidWebhook(Exception):
    """Raised for bodies that are not JSON objects or fail signature checks."""


@dataclass(frozen=True, slots=True)
class CaptureCompleted:
    event_id: str | None
    transaction_id: str | None
    capture_id: str | None


@dataclass(frozen=True, slots=True)
class CaptureDenied:
    event_id: str | None
    transaction_id: str | None
    capture_id: str | None


@dataclass(frozen=True, slots=True)
class CaptureRefunded:
    event_id: str | None
    transaction_id: str | None
    refund_id: str | None


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    event_id: str | None
    event_type: str | None


WebhookEvent = Union[CaptureCompleted, CaptureDenied, CaptureRefunded, UnknownEvent]


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_event(body: Mapping[str, Any]) -> WebhookEvent:
    """Map a raw PayPal event onto one of the known variants."""

    event_id = _text(body.get("id"))
    event_type = _text(body.get("event_type"))
    resource = body.get("resource")
    if not isinstance(resource, Mapping):
        resource = {}

    if event_type == CAPTURE_COMPLETED:
        return CaptureCompleted(event_id, _text(resource.get("custom_id")), _text(resource.get("id")))
    if event_type == CAPTURE_DENIED:
        return CaptureDenied(event_id, _text(resource.get("custom_id")), _text(resource.get("id")))
    if event_type == CAPTURE_REFUNDED:
        transaction_id = _text(resource.get("custom_id"))
        if transaction_id is None:
            amount = resource.get("amount")
            details = amount.get("details") if isinstance(amount, Mapping) else None
            if isinstance(details, Mapping):
                transaction_id = _text(details.get("custom_id"))
        return CaptureRefunded(event_id, transaction_id, _text(resource.get("id")))
    return UnknownEvent(event_id, event_type)


class PayPalWebhookHandler:
    """Verifies and applies PayPal capture notifications.

    Once the signature checks out every event is acknowledged, including
    duplicates and events that cannot be correlated; only store or
    infrastructure errors escape so that PayPal retries them.
    """

    def __init__(self, gateway: PayPalLikeGateway, store: PaymentStore, settlement: SettlementService) -> None:
        self.gateway = gateway
        self.store = store
        self.settlement = settlement

    def _count(self, event_type: str | None, outcome: str) -> str:
        WEBHOOK_EVENTS_TOTAL.labels(
            provider=PROVIDER_PAYPAL,
            event_type=normalise_event_type(event_type),
            outcome=normalise_webhook_outcome(outcome),
        ).inc()
        return outcome

    async def handle(self, headers: Mapping[str, str], body: Any) -> str:
        """Process one delivery and return the outcome label."""

        if not isinstance(body, dict):
            self._count(None, "invalid_payload")
            raise InvalidWebhook("Webhook body must be a JSON object")

        if not await self.gateway.verify_webhook_signature(headers, body):
            self._count(body.get("event_type"), "invalid_signature")
            logger.warning("Rejected PayPal webhook %s: signature verification failed", body.get("id"))
            raise InvalidWebhook("Invalid webhook signature")

        event = parse_event(body)
        if isinstance(event, UnknownEvent):
            logger.info("Ignoring PayPal webhook %s of type %s", event.event_id, event.event_type)
            return self._count(event.event_type, "ignored")

        if isinstance(event, CaptureCompleted):
            return await self._completed(event)
        if isinstance(event, CaptureDenied):
            return await self._denied(event)
        return await self._refunded(event)

    async def _completed(self, event: CaptureCompleted) -> str:
        if event.transaction_id is None:
            logger.warning("PayPal capture %s completed without custom_id", event.capture_id)
            return self._count(CAPTURE_COMPLETED, "missing_reference")

        with bind_transaction_id(event.transaction_id):
            payment = await self.store.get_payment_by_transaction_id(event.transaction_id)
            if payment is None:
                logger.error("PayPal capture %s references an unknown payment", event.capture_id)
                return self._count(CAPTURE_COMPLETED, "payment_not_found")
            if payment.status in SETTLED_PAYMENT_STATUSES:
                logger.info("PayPal capture %s already settled", event.capture_id)
                return self._count(CAPTURE_COMPLETED, "already_settled")

            try:
                outcome = await self.settlement.settle(event.transaction_id, source="webhook")
            except PaymentNotPayable as exc:
                logger.error("PayPal capture %s for payment in status %s", event.capture_id, exc.status)
                return self._count(CAPTURE_COMPLETED, "ignored")
            return self._count(CAPTURE_COMPLETED, "settled" if outcome.applied else "already_settled")

    async def _denied(self, event: CaptureDenied) -> str:
        if event.transaction_id is None:
            logger.warning("PayPal capture %s denied without custom_id", event.capture_id)
            return self._count(CAPTURE_DENIED, "missing_reference")

        result = await self.settlement.fail(event.transaction_id, source="webhook")
        if result.payment is None:
            logger.error("PayPal denial %s references an unknown payment", event.capture_id)
            return self._count(CAPTURE_DENIED, "payment_not_found")
        return self._count(CAPTURE_DENIED, "failed" if result.applied else "ignored")

    async def _refunded(self, event: CaptureRefunded) -> str:
        if event.transaction_id is None:
            logger.warning("PayPal refund %s without custom_id", event.refund_id)
            return self._count(CAPTURE_REFUNDED, "missing_reference")

        result = await self.settlement.refund(event.transaction_id, source="webhook")
        if result.payment is None:
            logger.error("PayPal refund %s references an unknown payment", event.refund_id)
            return self._count(CAPTURE_REFUNDED, "payment_not_found")
        return self._count(CAPTURE_REFUNDED, "refunded" if result.applied else "ignored")
