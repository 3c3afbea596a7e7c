"""Prometheus metrics for the payment service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

_SETTLEMENT_OUTCOMES: Final = (
    "applied",
    "already_settled",
    "not_payable",
    "amount_mismatch",
    "capture_failed",
    "record_missing",
    "gateway_error",
    "verification_failed",
)

_WEBHOOK_OUTCOMES: Final = (
    "settled",
    "already_settled",
    "failed",
    "refunded",
    "ignored",
    "missing_reference",
    "payment_not_found",
    "invalid_signature",
    "invalid_payload",
)

# Checkout ---------------------------------------------------------------------------------
CHECKOUTS_TOTAL: Final = Counter(
    "storefront_checkouts_total",
    "Checkout attempts by outcome.",
    labelnames=("outcome",),
)

CHECKOUT_AMOUNT_MINOR_UNITS: Final = Histogram(
    "storefront_checkout_amount_minor_units",
    "Distribution of checkout totals in minor currency units.",
    buckets=(100, 500, 1_000, 5_000, 10_000, 50_000, 100_000, 500_000),
)

# Settlement -------------------------------------------------------------------------------
SETTLEMENTS_TOTAL: Final = Counter(
    "storefront_settlements_total",
    "Settlement attempts by entry point and outcome.",
    labelnames=("source", "outcome"),
)

# Webhooks ---------------------------------------------------------------------------------
WEBHOOK_EVENTS_TOTAL: Final = Counter(
    "storefront_webhook_events_total",
    "Provider webhook events by type and processing outcome.",
    labelnames=("provider", "event_type", "outcome"),
)

# Gateways ---------------------------------------------------------------------------------
GATEWAY_REQUESTS_TOTAL: Final = Counter(
    "storefront_gateway_requests_total",
    "Outbound payment gateway calls by operation and outcome.",
    labelnames=("provider", "operation", "outcome"),
)

GATEWAY_LATENCY_SECONDS: Final = Histogram(
    "storefront_gateway_latency_seconds",
    "Latency of outbound payment gateway calls.",
    labelnames=("provider", "operation"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

# Delay reports ----------------------------------------------------------------------------
DELAY_REPORTS_TOTAL: Final = Counter(
    "storefront_delay_reports_total",
    "Customer delay reports by outcome.",
    labelnames=("outcome",),
)

# Fan-out ----------------------------------------------------------------------------------
NOTIFICATION_FANOUT_TOTAL: Final = Counter(
    "storefront_notification_fanout_total",
    "Post-settlement notification fan-out attempts by kind and outcome.",
    labelnames=("kind", "outcome"),
)


def normalise_settlement_outcome(raw: str) -> str:
    """Return a bounded label value for settlement counters."""

    outcome = (raw or "").strip().lower().replace(" ", "_")
    if outcome not in _SETTLEMENT_OUTCOMES:
        return "gateway_error"
    return outcome


def normalise_webhook_outcome(raw: str) -> str:
    outcome = (raw or "").strip().lower().replace(" ", "_")
    if outcome not in _WEBHOOK_OUTCOMES:
        return "ignored"
    return outcome


def normalise_event_type(raw: str | None) -> str:
    """Keep the event-type label bounded to the provider's known vocabulary."""

    if not raw:
        return "unknown"
    cleaned = raw.strip().upper()
    if cleaned.startswith("PAYMENT.CAPTURE.") or cleaned.startswith("CHECKOUT.ORDER."):
        return cleaned
    return "other"

# Intent guard -----------------------------------------------------------------------------
INTENT_GUARD_ERRORS_TOTAL: Final = Counter(
    "storefront_intent_guard_errors_total",
    "Redis errors raised while acquiring or releasing intent guards.",
    labelnames=("operation",),
)
