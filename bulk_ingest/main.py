import os
import shutil
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import BinaryIO

import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from bulk_ingest.auth import request_credential
from bulk_ingest.config import settings
from bulk_ingest.errors import BatchValidationError
from bulk_ingest.events import log_request_event
from bulk_ingest.metrics import http_request_duration_seconds, metrics_response
from bulk_ingest.models import FileItem, SubmitOutcome
from bulk_ingest.pipeline import PipelineController
from bulk_ingest.schemas import ErrorResponse, SessionSnapshot, SubmitBatchResponse
from bulk_ingest.session import SessionRegistry, UploadSession
from bulk_ingest.tracing import current_trace_id, setup_tracing
from bulk_ingest.transport import HttpChunkTransport

session_registry = SessionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
    app.state.transport = HttpChunkTransport(client)
    try:
        yield
    finally:
        # Sessions are never cancelled; let running ones reach a terminal status first.
        await session_registry.wait_all()
        await client.aclose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
setup_tracing(app)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _session_id(request: Request) -> str | None:
    return request.path_params.get("session_id")


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None and hasattr(route, "path"):
        return str(route.path)
    return request.url.path


def _error_code_for_status(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        401: "unauthenticated",
        404: "not_found",
        422: "invalid_request",
        500: "internal_error",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _status_for_rejection(code: str) -> int:
    return 401 if code == SubmitOutcome.unauthenticated.value else 400


def _upload_name(upload: UploadFile, index: int) -> str:
    return Path(upload.filename or "").name or f"file-{index}"


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _rewound(handle: BinaryIO) -> BinaryIO:
    handle.seek(0)
    return handle


def _describe_uploads(files: list[UploadFile]) -> list[FileItem]:
    return [
        FileItem(
            name=_upload_name(upload, index),
            size=_upload_size(upload),
            opener=partial(_rewound, upload.file),
            content_type=upload.content_type or "application/octet-stream",
        )
        for index, upload in enumerate(files)
    ]


def _stage_uploads(files: list[UploadFile], staging_dir: Path) -> list[FileItem]:
    """Copy request uploads to disk so the session can outlive the request."""
    staged: list[FileItem] = []
    for index, upload in enumerate(files):
        target = staging_dir / f"{index:04d}" / _upload_name(upload, index)
        target.parent.mkdir(parents=True, exist_ok=True)
        upload.file.seek(0)
        with target.open("wb") as out:
            shutil.copyfileobj(upload.file, out)
        staged.append(FileItem.from_path(target, content_type=upload.content_type))
    return staged


def _discard_staging(staging_dir: Path, session: UploadSession) -> None:
    shutil.rmtree(staging_dir, ignore_errors=True)


COMMON_ERROR_RESPONSES = {
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


def _error_response(request: Request, status_code: int, detail: str, error_code: str, error_class: str) -> JSONResponse:
    log_request_event(
        {
            "event": "request_error",
            "request_id": _request_id(request),
            "session_id": _session_id(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_class": error_class,
            "error_code": error_code,
            "detail": detail,
        }
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error_code": error_code,
            "request_id": _request_id(request),
            "session_id": _session_id(request),
            "trace_id": current_trace_id(),
        },
    )


@app.middleware("http")
async def request_context_and_logging(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    start = time.perf_counter()

    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Ingest-App-Version"] = settings.app_version
    http_request_duration_seconds.labels(
        method=request.method,
        route=_route_label(request),
        status_code=str(response.status_code),
    ).observe(duration_ms / 1000.0)

    log_request_event(
        {
            "event": "request_completed",
            "request_id": request_id,
            "session_id": _session_id(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
    )
    return response


@app.exception_handler(BatchValidationError)
async def batch_validation_handler(request: Request, exc: BatchValidationError):
    status_code = _status_for_rejection(exc.code)
    return _error_response(request, status_code, exc.detail, exc.code, "client_error")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    error_class = "client_error" if 400 <= exc.status_code < 500 else "server_error"
    return _error_response(
        request, exc.status_code, str(exc.detail), _error_code_for_status(exc.status_code), error_class
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    return _error_response(request, 500, "internal server error", "internal_error", "unhandled_exception")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    return {"app_name": settings.app_name, "app_version": settings.app_version}


@app.get("/metrics")
def metrics() -> Response:
    return metrics_response()


@app.post(
    "/v1/batches",
    response_model=SubmitBatchResponse,
    status_code=202,
    responses={
        **COMMON_ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Batch validation error"},
        401: {"model": ErrorResponse, "description": "Missing bearer credential"},
    },
)
async def submit_batch(
    request: Request,
    files: list[UploadFile] = File(default=[]),
    job_id: str | None = Form(default=None),
    credential: str | None = Depends(request_credential),
) -> SubmitBatchResponse:
    controller = PipelineController(
        transport=request.app.state.transport,
        credentials=lambda: credential,
        registry=session_registry,
    )
    rejection = controller.check_batch(_describe_uploads(files), job_id)
    if rejection is not None:
        raise BatchValidationError(rejection.outcome.value, rejection.detail or rejection.outcome.value)

    if settings.staging_root:
        Path(settings.staging_root).mkdir(parents=True, exist_ok=True)
    staging_dir = Path(tempfile.mkdtemp(prefix="bulk-ingest-", dir=settings.staging_root or None))
    try:
        staged = await run_in_threadpool(_stage_uploads, files, staging_dir)
    except OSError:
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise
    discard = partial(_discard_staging, staging_dir)
    result = controller.submit_batch(staged, job_id, on_complete=discard, on_failed=discard)
    if not result.accepted:
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise BatchValidationError(result.outcome.value, result.detail or result.outcome.value)
    return SubmitBatchResponse(outcome=result.outcome.value, session=result.session.snapshot())


@app.get(
    "/v1/batches/{session_id}",
    response_model=SessionSnapshot,
    responses={
        **COMMON_ERROR_RESPONSES,
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_batch(session_id: str) -> SessionSnapshot:
    session = session_registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session not found")
    return session.snapshot()
