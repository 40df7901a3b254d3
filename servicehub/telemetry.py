import logging
import os

from opentelemetry import trace

logger = logging.getLogger(__name__)

_TRACER_NAME = "servicehub"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return an OTel tracer.

    Without a configured TracerProvider the API hands back no-op spans,
    so callers can open spans unconditionally.
    """
    return trace.get_tracer(name or _TRACER_NAME)


def _instrument(label: str, func) -> None:
    try:
        func()
        logger.info("OTel: %s instrumented", label)
    except Exception:
        logger.warning("OTel: %s instrumentation unavailable", label, exc_info=True)


def setup_otel(app) -> None:
    """Configure OpenTelemetry tracing when OTEL_ENABLED is set.

    Instrumentors are optional; a missing package is logged and skipped.
    """
    enabled = os.getenv("OTEL_ENABLED", "false").lower() in {"1", "true", "yes", "on"}
    if not enabled:
        return

    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except Exception:
        logger.exception("OpenTelemetry SDK not available, skipping setup.")
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", "servicehub")
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    trace.set_tracer_provider(provider)
    exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces") if endpoint else OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))

    def _fastapi():
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)

    def _sqlalchemy():
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

        from servicehub.db import get_engine

        SQLAlchemyInstrumentor().instrument(engine=get_engine())

    def _celery():
        from opentelemetry.instrumentation.celery import CeleryInstrumentor

        CeleryInstrumentor().instrument()

    def _httpx():
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()

    _instrument("FastAPI", _fastapi)
    _instrument("SQLAlchemy", _sqlalchemy)
    _instrument("Celery", _celery)
    _instrument("httpx", _httpx)

    logger.info("OpenTelemetry tracing enabled (service=%s)", service_name)
