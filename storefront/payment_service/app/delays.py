"""Rules for customer delay reports on orders that overran their estimate."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Final

from .constants import DELAY_REPORTABLE_ORDER_STATUSES
from .models import Order

DELAY_REPORT_COOLDOWN: Final = timedelta(hours=24)
DEFAULT_DELIVERY_WINDOW: Final = timedelta(hours=24)

# First matching unit wins; anything else counts as hours.
_UNITS: Final = (("minute", 60), ("hour", 3600), ("day", 86400))
_DEFAULT_UNIT_SECONDS: Final = 3600
_FALLBACK_QUANTITY: Final = 24

NOT_IN_PROGRESS = "Order must be in progress to report a delay."
ESTIMATE_NOT_PASSED = "Estimated completion time has not passed yet."
COOLDOWN_ACTIVE = "You can only report a delay once every 24 hours."


def estimated_delivery_window(duration: str | None) -> timedelta:
    """Turn a catalog estimate such as ``"1-2 days"`` into a timedelta.

    The largest number in the text is used, so ranges resolve to their
    upper bound. Text without a number falls back to 24 of the detected unit.
    """

    if not duration or not duration.strip():
        return DEFAULT_DELIVERY_WINDOW
    words = duration.lower().split()
    unit_seconds = next(
        (seconds for prefix, seconds in _UNITS if any(word.startswith(prefix) for word in words)),
        _DEFAULT_UNIT_SECONDS,
    )
    numbers = [int(found) for found in re.findall(r"\d+", duration)]
    quantity = max(numbers) if numbers else _FALLBACK_QUANTITY
    return timedelta(seconds=quantity * unit_seconds)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def delay_report_refusal(order: Order, *, delivery_window: timedelta, now: datetime) -> str | None:
    """Return why ``order`` cannot be reported as delayed at ``now``, or None if it can."""

    if order.status not in DELAY_REPORTABLE_ORDER_STATUSES:
        return NOT_IN_PROGRESS
    now = as_utc(now)
    if now < as_utc(order.created_at) + delivery_window:
        return ESTIMATE_NOT_PASSED
    if order.last_notify_at is not None and now < as_utc(order.last_notify_at) + DELAY_REPORT_COOLDOWN:
        return COOLDOWN_ACTIVE
    return None
