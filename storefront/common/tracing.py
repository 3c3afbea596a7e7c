import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from fastapi import FastAPI

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.trace import TracerProvider as APITracerProvider

from .config import StorefrontSettings

_LOGGER = logging.getLogger(__name__)
_TRACER_NAME = "storefront.payments"

_EXPORTERS: dict[str, Callable[[StorefrontSettings], SpanExporter]] = {
    "grpc": lambda s: OTLPGrpcExporter(endpoint=s.tracing_endpoint, insecure=s.tracing_insecure),
    "http/protobuf": lambda s: OTLPHttpExporter(endpoint=s.tracing_endpoint),
}

# ids of FastAPI apps already wrapped by the instrumentor
_INSTRUMENTED_APPS: set[int] = set()
_httpx_instrumentor = HTTPXClientInstrumentor()


def _build_provider(settings: StorefrontSettings) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.app_name,
                "deployment.environment": settings.environment,
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(settings.tracing_sample_rate)),
    )
    if settings.tracing_endpoint:
        exporter = _EXPORTERS[settings.tracing_protocol](settings)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        _LOGGER.warning("Tracing enabled for %s without an OTLP endpoint; spans stay local", settings.app_name)
    return provider


def tracer_provider_for(settings: StorefrontSettings) -> APITracerProvider:
    """Install an SDK tracer provider unless one is already global."""

    existing = trace.get_tracer_provider()
    if isinstance(existing, TracerProvider):
        return existing
    trace.set_tracer_provider(_build_provider(settings))
    # set_tracer_provider refuses to override silently; read back whichever won.
    return trace.get_tracer_provider()


def configure_tracing(app: FastAPI, settings: StorefrontSettings) -> APITracerProvider | None:
    """Instrument ``app`` and outgoing httpx calls when tracing is enabled."""

    if not settings.enable_tracing:
        return None

    provider = tracer_provider_for(settings)
    if id(app) not in _INSTRUMENTED_APPS:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
        _INSTRUMENTED_APPS.add(id(app))
    if not _httpx_instrumentor.is_instrumented_by_opentelemetry:
        _httpx_instrumentor.instrument(tracer_provider=provider)
    return provider


@contextmanager
def gateway_span(provider: str, operation: str, **attributes: str | int | None) -> Iterator[Span]:
    """Wrap a payment gateway call in a client span.

    The span is a no-op when tracing is disabled. Errors are recorded on the span
    and re-raised unchanged.
    """

    tracer = trace.get_tracer(_TRACER_NAME)
    with tracer.start_as_current_span(
        f"gateway.{provider}.{operation}",
        kind=trace.SpanKind.CLIENT,
        record_exception=True,
        set_status_on_exception=False,
    ) as span:
        span.set_attribute("payment.provider", provider)
        span.set_attribute("payment.operation", operation)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"payment.{key}", value)
        try:
            yield span
        except Exception:
            span.set_status(Status(StatusCode.ERROR))
            raise
