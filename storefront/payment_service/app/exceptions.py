"""Domain errors raised by the checkout and settlement services."""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for errors the HTTP layer knows how to render."""


class ValidationFailed(StorefrontError):
    """Request content is unacceptable; never retried automatically."""


class EmptyCart(ValidationFailed):
    def __init__(self) -> None:
        super().__init__("Cart is empty")


class ServiceNotFound(ValidationFailed):
    def __init__(self, service_id: int, *, line: int | None = None) -> None:
        self.service_id = service_id
        self.line = line
        prefix = f"Item {line}: " if line is not None else ""
        super().__init__(f"{prefix}Service {service_id} not found")


class ServiceUnavailable(ValidationFailed):
    def __init__(self, service_id: int, name: str, *, line: int | None = None) -> None:
        self.service_id = service_id
        self.line = line
        prefix = f"Item {line}: " if line is not None else ""
        super().__init__(f"{prefix}Service {name} is unavailable")


class InvalidLineAmount(ValidationFailed):
    def __init__(self, service_id: int, amount: int, *, line: int | None = None) -> None:
        self.service_id = service_id
        self.amount = amount
        self.line = line
        prefix = f"Item {line}: " if line is not None else ""
        super().__init__(f"{prefix}Invalid total calculated for service {service_id}")


class UnsupportedProvider(ValidationFailed):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unsupported payment provider: {provider}")


class PaymentNotFound(StorefrontError):
    """Payment does not exist or belongs to another user."""

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__("Payment record not found or access denied")


class PaymentRecordMissing(StorefrontError):
    """A gateway order could not be correlated with a local payment."""

    def __init__(self, reference: str | None) -> None:
        self.reference = reference
        super().__init__("Payment record not found")


class PaymentAlreadyCompleted(StorefrontError):
    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__("Payment already completed")


class PaymentNotPayable(StorefrontError):
    def __init__(self, transaction_id: str, status: str) -> None:
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(f"Payment cannot be paid in status '{status}'")


class IntentInProgress(StorefrontError):
    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__("Payment is already being initiated")


class AmountMismatch(StorefrontError):
    """Provider amount or currency differs from the trusted local payment."""

    def __init__(
        self,
        transaction_id: str,
        *,
        expected_amount: int,
        expected_currency: str,
        actual_amount: int | None,
        actual_currency: str | None,
    ) -> None:
        self.transaction_id = transaction_id
        self.expected_amount = expected_amount
        self.expected_currency = expected_currency
        self.actual_amount = actual_amount
        self.actual_currency = actual_currency
        super().__init__("Payment amount mismatch")


class CaptureFailed(StorefrontError):
    def __init__(self, provider_order_id: str, provider_status: str | None) -> None:
        self.provider_order_id = provider_order_id
        self.provider_status = provider_status
        super().__init__(f"Capture not completed (provider status: {provider_status or 'unknown'})")


class OrderNotFound(StorefrontError):
    def __init__(self, order_id: int) -> None:
        self.order_id = order_id
        super().__init__("Order not found")


class DelayReportRejected(StorefrontError):
    """The order cannot be reported as delayed right now; ``str(exc)`` says why."""

    def __init__(self, order_id: int, reason: str) -> None:
        self.order_id = order_id
        self.reason = reason
        super().__init__(reason)
