"""Translation of domain errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..exceptions import (
    AmountMismatch,
    CaptureFailed,
    DelayReportRejected,
    IntentInProgress,
    OrderNotFound,
    PaymentAlreadyCompleted,
    PaymentNotFound,
    PaymentNotPayable,
    PaymentRecordMissing,
    StorefrontError,
    ValidationFailed,
)
from ..gateways import GatewayError

logger = logging.getLogger(__name__)

GENERIC_PAYMENT_ERROR = "Payment could not be completed, please contact support"

_STATUS_BY_ERROR: tuple[tuple[type[StorefrontError], int], ...] = (
    (ValidationFailed, status.HTTP_400_BAD_REQUEST),
    (PaymentNotFound, status.HTTP_404_NOT_FOUND),
    (PaymentRecordMissing, status.HTTP_404_NOT_FOUND),
    (OrderNotFound, status.HTTP_404_NOT_FOUND),
    (PaymentAlreadyCompleted, status.HTTP_400_BAD_REQUEST),
    (PaymentNotPayable, status.HTTP_400_BAD_REQUEST),
    (AmountMismatch, status.HTTP_400_BAD_REQUEST),
    (IntentInProgress, status.HTTP_409_CONFLICT),
    (DelayReportRejected, status.HTTP_400_BAD_REQUEST),
)


def http_error(exc: StorefrontError | GatewayError) -> HTTPException:
    """Map ``exc`` to an HTTPException; gateway detail never reaches the client."""

    if isinstance(exc, (GatewayError, CaptureFailed)):
        logger.error("Payment gateway failure: %s", exc)
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=GENERIC_PAYMENT_ERROR)
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.error("Unmapped storefront error: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=GENERIC_PAYMENT_ERROR)
