# telemetry.py — OpenTelemetry tracing for the task tracker API
"""
Exports spans to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set,
otherwise does nothing. The OpenTelemetry packages are an optional extra.
"""
import os
import logging

from config import ENVIRONMENT

logger = logging.getLogger("tasktrack.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "tasktrack-api")
SERVICE_VERSION = "1.0.0"
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def setup_telemetry(app=None, engine=None):
    """Instrument FastAPI and the SQLAlchemy engine; no-op without an endpoint."""
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    except ImportError:
        logger.warning("OpenTelemetry packages not installed; install the 'telemetry' extra")
        return None

    resource = Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
        logger.info("FastAPI instrumented with OpenTelemetry")
    if engine is not None:
        # Async engines are instrumented through their sync core
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
        logger.info("SQLAlchemy instrumented with OpenTelemetry")

    logger.info(f"OpenTelemetry initialised → {OTLP_ENDPOINT}")
    return provider
