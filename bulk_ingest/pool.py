import asyncio
from collections.abc import Sequence

from bulk_ingest.config import settings
from bulk_ingest.events import log_event
from bulk_ingest.metrics import (
    chunk_failures_total,
    chunks_uploaded_total,
    files_failed_total,
    files_uploaded_total,
    inflight_chunks,
)
from bulk_ingest.models import Chunk, ChunkOutcome
from bulk_ingest.progress import ProgressAggregator
from bulk_ingest.retry import RetryPolicy


class ChunkCursor:
    """Shared FIFO cursor. ``claim`` has no await, so a claim is atomic on the loop."""

    def __init__(self, chunks: Sequence[Chunk]) -> None:
        self._chunks = chunks
        self._next = 0

    @property
    def claimed(self) -> int:
        return self._next

    def claim(self) -> Chunk | None:
        if self._next >= len(self._chunks):
            return None
        chunk = self._chunks[self._next]
        self._next += 1
        return chunk


class UploadWorkerPool:
    def __init__(self, retry_policy: RetryPolicy, concurrency: int | None = None) -> None:
        self.retry_policy = retry_policy
        self.concurrency = settings.upload_concurrency if concurrency is None else concurrency
        if self.concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {self.concurrency}")

    async def run(
        self, chunks: Sequence[Chunk], progress: ProgressAggregator, session_id: str | None = None
    ) -> list[ChunkOutcome]:
        cursor = ChunkCursor(chunks)
        outcomes: list[ChunkOutcome] = []
        workers = [
            asyncio.ensure_future(self._worker(worker_id, cursor, progress, outcomes, session_id))
            for worker_id in range(self.concurrency)
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            # Stop the remaining workers before the error propagates.
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return outcomes

    async def _worker(
        self,
        worker_id: int,
        cursor: ChunkCursor,
        progress: ProgressAggregator,
        outcomes: list[ChunkOutcome],
        session_id: str | None,
    ) -> None:
        while True:
            chunk = cursor.claim()
            if chunk is None:
                return
            log_event(
                {
                    "event": "chunk_claimed",
                    "session_id": session_id,
                    "worker_id": worker_id,
                    "chunk_index": chunk.index,
                    "file_count": chunk.file_count,
                }
            )
            inflight_chunks.inc()
            try:
                outcome = await self.retry_policy.upload_with_retry(chunk, session_id=session_id)
            finally:
                inflight_chunks.dec()
            outcomes.append(outcome)

            if outcome.succeeded:
                progress.record_success(chunk.file_count)
                chunks_uploaded_total.inc()
                files_uploaded_total.inc(chunk.file_count)
                log_event(
                    {
                        "event": "chunk_uploaded",
                        "session_id": session_id,
                        "worker_id": worker_id,
                        "chunk_index": chunk.index,
                        "attempts": len(outcome.attempts),
                        "uploaded": progress.uploaded,
                        "total": progress.total,
                    }
                )
            else:
                progress.record_failure(chunk.file_count, outcome.error)
                chunk_failures_total.inc()
                files_failed_total.inc(chunk.file_count)
                log_event(
                    {
                        "event": "chunk_failed",
                        "session_id": session_id,
                        "worker_id": worker_id,
                        "chunk_index": chunk.index,
                        "attempts": len(outcome.attempts),
                        "detail": outcome.error,
                        "failed": progress.failed,
                        "total": progress.total,
                    }
                )
