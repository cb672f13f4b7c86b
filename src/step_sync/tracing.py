"""OpenTelemetry setup and W3C context propagation for step submissions.

The uploader injects the active context into outbound POST headers and the
ledger API extracts it again, so an upload span and the matching
`http.submit_steps` span share one trace.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

import structlog
from opentelemetry import propagate, trace
from opentelemetry.context import Context
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import TracingSettings
from .types import TraceContextCarrier

logger = structlog.get_logger(__name__)


def setup_tracing(settings: TracingSettings) -> bool:
    """Install an OTLP/HTTP tracer provider for the service.

    Honours `OTEL_TRACES_EXPORTER=none` so tracing can be switched off
    without touching `TRACING_ENABLED`.

    Returns:
        True if tracing was configured, False otherwise.
    """
    if not settings.enabled:
        logger.info("tracing_disabled")
        return False

    exporter_name = os.getenv("OTEL_TRACES_EXPORTER", "otlp").lower()
    if exporter_name in {"none", ""}:
        logger.info("tracing_exporter_disabled")
        return False

    resource = Resource.create({"service.name": settings.service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(provider)
    logger.info(
        "tracing_configured",
        exporter=exporter_name,
        service_name=settings.service_name,
    )
    return True


def inject_trace_context(carrier: TraceContextCarrier | None = None) -> TraceContextCarrier:
    """Add `traceparent` headers for the current span to an outbound submission."""
    if carrier is None:
        carrier = {}
    propagate.inject(carrier)
    return carrier


def extract_trace_context(headers: Mapping[str, str] | None) -> Context | None:
    """Recover the uploader's trace context from ledger request headers."""
    if not headers:
        return None
    return propagate.extract(headers)
