"""OpenTelemetry tracing of reconciles."""

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

if TYPE_CHECKING:
    from fastapi import FastAPI

from training_operator import __version__
from training_operator.core.config import Settings

logger = logging.getLogger(__name__)

# Kubelet health checks are not traced
UNTRACED_URLS = "healthz,readyz"


def setup_telemetry(app: "FastAPI", settings: Settings) -> None:
    """Export reconcile spans to the OTLP collector when tracing is enabled.

    Args:
        app: FastAPI application serving the health checks and controller routes
        settings: Operator settings
    """
    if not settings.otel_enabled:
        logger.debug("Tracing disabled")
        return

    resource = Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            SERVICE_VERSION: __version__,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint))
    )
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)

    logger.info("Tracing reconciles to %s", settings.otel_exporter_endpoint)


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)
