import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Literal

from opentelemetry import trace

from .config import StorefrontSettings


_PLACEHOLDER = "-"
_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | trace_id=%(trace_id)s span_id=%(span_id)s "
    "txn=%(transaction_id)s | %(message)s"
)

_TRANSACTION_ID: ContextVar[str | None] = ContextVar("storefront_transaction_id", default=None)


def _format_trace_id(value: int, length: int) -> str:
    return format(value, f"0{length}x")


@contextmanager
def bind_transaction_id(transaction_id: str | None) -> Iterator[None]:
    """Attach a transaction id to every log record emitted inside the block."""

    token = _TRANSACTION_ID.set(transaction_id)
    try:
        yield
    finally:
        _TRANSACTION_ID.reset(token)


def current_transaction_id() -> str | None:
    return _TRANSACTION_ID.get()


class RequestContextFilter(logging.Filter):
    """Populate trace/span identifiers and the bound transaction id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.transaction_id = _TRANSACTION_ID.get() or _PLACEHOLDER

        span = trace.get_current_span()
        span_context = span.get_span_context() if span is not None else None
        if span_context is not None and span_context.is_valid:
            record.trace_id = _format_trace_id(span_context.trace_id, 32)
            record.span_id = _format_trace_id(span_context.span_id, 16)
        else:
            record.trace_id = _PLACEHOLDER
            record.span_id = _PLACEHOLDER
        return True


def configure_logging(settings: StorefrontSettings) -> None:
    """Configure root logging level and format."""

    logging_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = settings.log_level
    logging.basicConfig(level=logging_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    existing_filter = next(
        (f for f in root_logger.filters if isinstance(f, RequestContextFilter)),
        None,
    )
    context_filter = existing_filter or RequestContextFilter()
    if existing_filter is None:
        root_logger.addFilter(context_filter)
    for handler in root_logger.handlers:
        if not any(isinstance(f, RequestContextFilter) for f in handler.filters):
            handler.addFilter(context_filter)
