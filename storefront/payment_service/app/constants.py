"""Status vocabularies for payments, orders and referral commissions."""

from __future__ import annotations

from typing import Final

PAYMENT_PENDING: Final = "pending"
PAYMENT_PAID: Final = "paid"
PAYMENT_COMPLETED: Final = "completed"
PAYMENT_FAILED: Final = "failed"
PAYMENT_REFUNDED: Final = "refunded"

# "completed" is a legacy spelling of "paid"; both mean the money has moved.
SETTLED_PAYMENT_STATUSES: Final = frozenset({PAYMENT_PAID, PAYMENT_COMPLETED})

ORDER_PENDING_PAYMENT: Final = "pending_payment"
ORDER_PENDING: Final = "pending"
ORDER_CONFIRMED: Final = "confirmed"
ORDER_PROCESSING: Final = "processing"
ORDER_COMPLETED: Final = "completed"
ORDER_CANCELLED: Final = "cancelled"

# Statuses an operator may set from the admin dashboard.
OPERATOR_ORDER_STATUSES: Final = (
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_PROCESSING,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
)

CHECKOUT_ORDER_STATUS: Final = ORDER_PENDING

# Orders the customer may chase once the estimated delivery window has passed.
DELAY_REPORTABLE_ORDER_STATUSES: Final = frozenset({ORDER_PROCESSING, ORDER_CONFIRMED})

COMMISSION_NONE: Final = "none"
COMMISSION_PENDING: Final = "pending"
COMMISSION_APPROVED: Final = "approved"
COMMISSION_CANCELLED: Final = "cancelled"

CANCELLABLE_COMMISSION_STATUSES: Final = frozenset({COMMISSION_PENDING, COMMISSION_APPROVED})

PROVIDER_PAYPAL: Final = "paypal"
PROVIDER_PAYONEER: Final = "payoneer"
