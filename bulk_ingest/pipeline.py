import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from bulk_ingest.config import settings
from bulk_ingest.errors import BatchValidationError
from bulk_ingest.events import log_event
from bulk_ingest.metrics import active_sessions, batches_rejected_total, sessions_total
from bulk_ingest.models import FileItem, SubmitOutcome
from bulk_ingest.partition import partition_files
from bulk_ingest.pool import UploadWorkerPool
from bulk_ingest.retry import RetryPolicy
from bulk_ingest.session import SessionCallback, SessionRegistry, UploadSession
from bulk_ingest.transport import ChunkTransport

CredentialProvider = Callable[[], str | None]


@dataclass(frozen=True)
class SubmitResult:
    outcome: SubmitOutcome
    session: UploadSession
    detail: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome is SubmitOutcome.accepted

    @property
    def category(self) -> str:
        if self.outcome in (SubmitOutcome.accepted, SubmitOutcome.unauthenticated):
            return self.outcome.value
        return "validation-error"


def _normalize_job_id(job_id: str | int | None) -> str | None:
    return str(job_id).strip() if job_id is not None else None


class PipelineController:
    """Entry point for bulk submissions.

    ``submit_batch`` validates synchronously and, when the batch is accepted,
    schedules partitioning and pooled transfer as a task on the running event
    loop before returning.
    """

    def __init__(
        self,
        transport: ChunkTransport,
        credentials: CredentialProvider,
        registry: SessionRegistry | None = None,
        chunk_size: int | None = None,
        concurrency: int | None = None,
        max_retries: int | None = None,
        base_delay_seconds: float | None = None,
        jitter_seconds: float | None = None,
        max_files: int | None = None,
        max_file_size_bytes: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.transport = transport
        self.credentials = credentials
        self.registry = registry if registry is not None else SessionRegistry()
        self.chunk_size = settings.chunk_size if chunk_size is None else chunk_size
        self.concurrency = settings.upload_concurrency if concurrency is None else concurrency
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.jitter_seconds = jitter_seconds
        self.max_files = settings.max_files_per_batch if max_files is None else max_files
        self.max_file_size_bytes = settings.max_file_size_bytes if max_file_size_bytes is None else max_file_size_bytes
        self._sleep = sleep
        self._rng = rng

    def _validate(self, files: Sequence[FileItem], job_id: str | None) -> str:
        if not files:
            raise BatchValidationError(SubmitOutcome.no_files.value, "no files selected")
        if len(files) > self.max_files:
            raise BatchValidationError(
                SubmitOutcome.too_many_files.value,
                f"at most {self.max_files} files can be sent per batch, got {len(files)}",
            )
        oversize = [item.name for item in files if item.size > self.max_file_size_bytes]
        if oversize:
            raise BatchValidationError(
                SubmitOutcome.file_too_large.value,
                f"{len(oversize)} file(s) exceed {self.max_file_size_bytes} bytes: {', '.join(oversize[:5])}",
            )
        if job_id is None or not str(job_id).strip():
            raise BatchValidationError(SubmitOutcome.no_job_selected.value, "no job selected")
        credential = self.credentials()
        if not credential:
            raise BatchValidationError(SubmitOutcome.unauthenticated.value, "missing bearer credential")
        return credential

    def _reject(self, session: UploadSession, files: Sequence[FileItem], exc: BatchValidationError) -> SubmitResult:
        batches_rejected_total.labels(reason=exc.code).inc()
        log_event(
            {
                "event": "batch_rejected",
                "session_id": session.session_id,
                "job_id": session.job_id,
                "reason": exc.code,
                "detail": exc.detail,
                "file_count": len(files),
            },
            level=logging.WARNING,
        )
        return SubmitResult(outcome=SubmitOutcome(exc.code), session=session, detail=exc.detail)

    def check_batch(self, files: Sequence[FileItem], job_id: str | int | None) -> SubmitResult | None:
        """Run the submission preconditions without starting anything.

        Returns the rejection, or None when ``submit_batch`` would accept the
        batch. Only names and sizes are looked at; no file is opened.
        """
        session = UploadSession(_normalize_job_id(job_id))
        try:
            self._validate(files, session.job_id)
        except BatchValidationError as exc:
            return self._reject(session, files, exc)
        return None

    def submit_batch(
        self,
        files: Sequence[FileItem],
        job_id: str | int | None,
        on_complete: SessionCallback | None = None,
        on_failed: SessionCallback | None = None,
    ) -> SubmitResult:
        normalized_job_id = _normalize_job_id(job_id)
        session = UploadSession(normalized_job_id, on_complete=on_complete, on_failed=on_failed)
        try:
            credential = self._validate(files, normalized_job_id)
        except BatchValidationError as exc:
            return self._reject(session, files, exc)

        loop = asyncio.get_running_loop()
        files = list(files)
        session.progress.start(len(files))
        self.registry.add(session)
        active_sessions.inc()
        session.attach(loop.create_task(self._run_session(session, files, credential)))
        log_event(
            {
                "event": "batch_accepted",
                "session_id": session.session_id,
                "job_id": normalized_job_id,
                "file_count": len(files),
                "chunk_size": self.chunk_size,
                "concurrency": self.concurrency,
            }
        )
        return SubmitResult(outcome=SubmitOutcome.accepted, session=session)

    async def _run_session(self, session: UploadSession, files: list[FileItem], credential: str) -> None:
        chunks = []
        try:
            chunks = partition_files(files, session.job_id, self.chunk_size)
            policy = RetryPolicy(
                self.transport,
                credential,
                max_retries=self.max_retries,
                base_delay_seconds=self.base_delay_seconds,
                jitter_seconds=self.jitter_seconds,
                sleep=self._sleep,
                rng=self._rng,
            )
            pool = UploadWorkerPool(policy, self.concurrency)
            await pool.run(chunks, session.progress, session_id=session.session_id)
            status = session.progress.finish()
        except Exception as exc:
            status = session.progress.abort(f"session aborted: {exc.__class__.__name__}: {exc}")
            log_event(
                {
                    "event": "session_aborted",
                    "session_id": session.session_id,
                    "job_id": session.job_id,
                    "error_class": exc.__class__.__name__,
                    "detail": str(exc),
                },
                level=logging.ERROR,
            )
        finally:
            active_sessions.dec()

        sessions_total.labels(status=status.value).inc()
        log_event(
            {
                "event": "session_finished",
                "session_id": session.session_id,
                "job_id": session.job_id,
                "status": status.value,
                "total": session.total,
                "uploaded": session.uploaded,
                "failed": session.failed,
                "chunks": len(chunks),
                "last_error": session.last_error,
            },
            level=logging.INFO if session.failed == 0 else logging.WARNING,
        )
        session.settle()
