import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from bulk_ingest.errors import TransferError
from bulk_ingest.models import Chunk, FileItem
from bulk_ingest.tracing import chunk_transfer_span, current_trace_id


def _tracer():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider.get_tracer("test"), exporter


def _chunk() -> Chunk:
    files = tuple(FileItem.from_bytes(f"cv-{i}.pdf", b"cv") for i in range(3))
    return Chunk(index=2, job_id="77", files=files)


def test_chunk_transfer_span_carries_chunk_attributes() -> None:
    tracer, exporter = _tracer()

    with chunk_transfer_span(_chunk(), 1, "session-1", tracer=tracer):
        assert current_trace_id() is not None

    (span,) = exporter.get_finished_spans()
    assert span.name == "ingest.chunk_transfer"
    assert span.attributes["ingest.chunk_index"] == 2
    assert span.attributes["ingest.attempt"] == 1
    assert span.attributes["ingest.file_count"] == 3
    assert span.attributes["ingest.job_id"] == "77"
    assert span.attributes["ingest.session_id"] == "session-1"
    assert span.status.status_code is StatusCode.UNSET


def test_failed_transfer_marks_span_as_error() -> None:
    tracer, exporter = _tracer()

    with pytest.raises(TransferError):
        with chunk_transfer_span(_chunk(), 3, tracer=tracer):
            raise TransferError("upload failed with status 503", status_code=503)

    (span,) = exporter.get_finished_spans()
    assert span.status.status_code is StatusCode.ERROR
    assert span.attributes["http.response.status_code"] == 503
    assert "ingest.session_id" not in span.attributes


def test_no_trace_id_outside_a_span() -> None:
    assert current_trace_id() is None
