"""
OpenTelemetry tracing setup.
"""

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer
from sqlalchemy.ext.asyncio import AsyncEngine

from leasequeue import __version__
from leasequeue.config import Settings, get_settings

TRACER_NAME = "leasequeue"

# Global tracer instance
_tracer: Tracer | None = None


def setup_tracing(
    settings: Settings | None = None,
    enable_console_export: bool = False,
) -> Tracer:
    """
    Set up OpenTelemetry tracing for a queue process.

    Installs a global tracer provider. Exports over OTLP only when
    ``otel_exporter_otlp_endpoint`` is configured.

    Args:
        settings: Queue settings. Defaults to the cached settings.
        enable_console_export: If True, also export spans to console.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = settings or get_settings()

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
        }
    )
    provider = TracerProvider(resource=resource)

    if settings.otel_exporter_otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    # Optionally add console exporter for debugging
    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(TRACER_NAME, __version__)
    return _tracer


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """
    Instrument an async SQLAlchemy engine with OpenTelemetry.

    Args:
        engine: The SQLAlchemy async engine instance.
    """
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer() -> Tracer:
    """
    Get the tracer instance.

    Falls back to whatever provider is globally installed (a no-op one
    unless the host application configured tracing), so embedding the
    queue never installs a provider behind the caller's back.
    """
    if _tracer is None:
        return trace.get_tracer(TRACER_NAME, __version__)
    return _tracer
