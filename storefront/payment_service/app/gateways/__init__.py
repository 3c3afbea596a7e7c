"""Payment gateway adapters."""

from .base import (
    CaptureResult,
    GatewayAuthFailed,
    GatewayDisabled,
    GatewayError,
    GatewayRequestFailed,
    PaymentGateway,
    PaymentIntent,
    PayPalLikeGateway,
)
from .payoneer import MOCK_TRANSACTION_PREFIX, PayoneerGateway
from .paypal import PayPalGateway

__all__ = [
    "CaptureResult",
    "GatewayAuthFailed",
    "GatewayDisabled",
    "GatewayError",
    "GatewayRequestFailed",
    "MOCK_TRANSACTION_PREFIX",
    "PaymentGateway",
    "PaymentIntent",
    "PayPalGateway",
    "PayPalLikeGateway",
    "PayoneerGateway",
]
