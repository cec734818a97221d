from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response

chunks_uploaded_total = Counter("ingest_chunks_uploaded_total", "Total chunks accepted by the ingestion endpoint")
chunk_failures_total = Counter("ingest_chunk_failures_total", "Total chunks that exhausted every attempt")
files_uploaded_total = Counter("ingest_files_uploaded_total", "Total files delivered to the ingestion endpoint")
files_failed_total = Counter("ingest_files_failed_total", "Total files in permanently failed chunks")
retries_total = Counter("ingest_retries_total", "Total retry attempts for chunk transfers")
sessions_total = Counter("ingest_sessions_total", "Sessions that reached a terminal status", ["status"])
batches_rejected_total = Counter("ingest_batches_rejected_total", "Batches rejected before transfer", ["reason"])

inflight_chunks = Gauge("ingest_inflight_chunks", "Current in-flight chunk transfers")
active_sessions = Gauge("ingest_active_sessions", "Sessions currently uploading")

transfer_latency_seconds = Histogram("ingest_transfer_latency_seconds", "Chunk transfer attempt latency in seconds")
http_request_duration_seconds = Histogram(
    "ingest_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "status_code"],
)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
