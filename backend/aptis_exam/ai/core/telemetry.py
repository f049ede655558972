"""
APTIS Exam Platform - Telemetry Module
OpenTelemetry-based tracing for the AI scoring path
"""
import logging
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from aptis_exam.core.config import settings

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Optional[trace.Tracer] = None


def init_telemetry() -> trace.Tracer:
    """
    Initialize OpenTelemetry with an OTLP exporter.
    Call this once at application startup. When OTEL_ENABLED is false the
    global (no-op) provider is left in place.
    """
    global _tracer

    if _tracer is not None:
        return _tracer

    if not settings.OTEL_ENABLED:
        _tracer = trace.get_tracer("ai.scoring", settings.APP_VERSION)
        return _tracer

    resource = Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": settings.APP_VERSION,
        "deployment.environment": settings.ENVIRONMENT,
    })
    provider = TracerProvider(resource=resource)

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    except Exception as e:
        logger.warning("Failed to configure OTLP exporter, using console: %s", e)
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("ai.scoring", settings.APP_VERSION)

    logger.info(
        "Telemetry initialized with service: %s, endpoint: %s",
        settings.OTEL_SERVICE_NAME,
        settings.OTEL_EXPORTER_OTLP_ENDPOINT,
    )
    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the global tracer instance, initializing if necessary."""
    if _tracer is None:
        return init_telemetry()
    return _tracer


@contextmanager
def scoring_span(name: str, attributes: Optional[dict] = None):
    """
    Context manager for spans around scoring work.

    Usage:
        with scoring_span("score_writing", {"answer.id": answer_id}) as span:
            span.set_attribute("rubric.count", 4)
            result = await do_work()
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, str(value) if value is not None else "")

        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
