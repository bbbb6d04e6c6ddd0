import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)

from bidding_room.config import ServerSettings

logger = structlog.get_logger(__name__)


def _exporter(endpoint: str | None) -> SpanExporter:
    if endpoint is None:
        return ConsoleSpanExporter()
    try:
        return OTLPSpanExporter(endpoint=endpoint, insecure=True)
    except Exception as e:
        logger.warning("otlp_exporter_unavailable", endpoint=endpoint, error=str(e))
        return ConsoleSpanExporter()


def init_telemetry(settings: ServerSettings) -> TracerProvider:
    """
    Install a global tracer provider for the negotiation spans.

    Args:
        settings: Server settings carrying the service name and OTLP endpoint

    Returns:
        The installed provider, so callers can flush or shut it down

    Raises:
        ValueError: If the service name is blank
    """
    service_name = settings.otel_service_name.lower().strip()
    if not service_name:
        raise ValueError("otel_service_name must not be blank")

    endpoint = settings.otel_exporter_otlp_endpoint
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name})
    )
    provider.add_span_processor(
        BatchSpanProcessor(_exporter(str(endpoint) if endpoint else None))
    )
    trace.set_tracer_provider(provider)

    logger.info(
        "telemetry_initialized",
        service_name=service_name,
        exporter="otlp" if endpoint else "console",
    )
    return provider
