from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from bulk_ingest.config import settings
from bulk_ingest.models import Chunk

_instrumented_apps: set[int] = set()

tracer = trace.get_tracer("bulk_ingest")


def build_tracer_provider() -> TracerProvider:
    resource = Resource.create(
        {SERVICE_NAME: settings.tracing_service_name, SERVICE_VERSION: settings.app_version}
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure))
    )
    return provider


def setup_tracing(app) -> None:
    """Export spans over OTLP and instrument ``app`` once, when tracing is enabled."""
    if not settings.tracing_enabled or id(app) in _instrumented_apps:
        return
    provider = build_tracer_provider()
    trace.set_tracer_provider(provider)
    # /health and /metrics produce no spans.
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls="health,metrics")
    _instrumented_apps.add(id(app))


@contextmanager
def chunk_transfer_span(
    chunk: Chunk, attempt: int, session_id: str | None = None, tracer: trace.Tracer = tracer
) -> Iterator[trace.Span]:
    with tracer.start_as_current_span(
        "ingest.chunk_transfer", record_exception=True, set_status_on_exception=False
    ) as span:
        span.set_attribute("ingest.chunk_index", chunk.index)
        span.set_attribute("ingest.attempt", attempt)
        span.set_attribute("ingest.file_count", chunk.file_count)
        span.set_attribute("ingest.job_id", chunk.job_id)
        if session_id is not None:
            span.set_attribute("ingest.session_id", session_id)
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            status_code = getattr(exc, "status_code", None)
            if status_code is not None:
                span.set_attribute("http.response.status_code", status_code)
            raise


def current_trace_id() -> str | None:
    span_context = trace.get_current_span().get_span_context()
    if not span_context or not span_context.is_valid:
        return None
    return format(span_context.trace_id, "032x")
