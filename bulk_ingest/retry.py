import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable

from bulk_ingest.config import settings
from bulk_ingest.errors import TransferError
from bulk_ingest.events import log_event
from bulk_ingest.metrics import retries_total, transfer_latency_seconds
from bulk_ingest.models import AttemptOutcome, Chunk, ChunkOutcome, TransferAttempt
from bulk_ingest.tracing import chunk_transfer_span
from bulk_ingest.transport import ChunkTransport


def _error_message(exc: Exception) -> str:
    if isinstance(exc, TransferError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class RetryPolicy:
    """Bounded retries with exponential backoff and jitter for one chunk.

    A chunk gets ``max_retries + 1`` attempts. After the failed attempt with
    zero-based index ``n`` (except the last one) the policy sleeps
    ``base_delay * 2**n + uniform(0, jitter)`` seconds. Client errors and
    transient errors are retried the same way.
    """

    def __init__(
        self,
        transport: ChunkTransport,
        credential: str,
        max_retries: int | None = None,
        base_delay_seconds: float | None = None,
        jitter_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.transport = transport
        self.credential = credential
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.base_delay_seconds = (
            settings.retry_base_delay_ms / 1000.0 if base_delay_seconds is None else base_delay_seconds
        )
        self.jitter_seconds = settings.retry_jitter_ms / 1000.0 if jitter_seconds is None else jitter_seconds
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay_seconds * (2**attempt) + self._rng.uniform(0, self.jitter_seconds)

    async def upload_with_retry(self, chunk: Chunk, session_id: str | None = None) -> ChunkOutcome:
        attempts: list[TransferAttempt] = []
        for attempt in range(self.max_attempts):
            started = time.perf_counter()
            try:
                with chunk_transfer_span(chunk, attempt + 1, session_id):
                    await self.transport.send_chunk(chunk, self.credential)
            except Exception as exc:
                latency = time.perf_counter() - started
                transfer_latency_seconds.observe(latency)
                message = _error_message(exc)
                attempts.append(
                    TransferAttempt(
                        chunk_index=chunk.index,
                        attempt=attempt + 1,
                        outcome=AttemptOutcome.failed,
                        latency_ms=round(latency * 1000, 2),
                        error=message,
                    )
                )
                if attempt + 1 >= self.max_attempts:
                    return ChunkOutcome(chunk=chunk, succeeded=False, attempts=tuple(attempts), error=message)

                delay = self.backoff_delay(attempt)
                retries_total.inc()
                log_event(
                    {
                        "event": "chunk_attempt_failed",
                        "session_id": session_id,
                        "chunk_index": chunk.index,
                        "attempt": attempt + 1,
                        "max_attempts": self.max_attempts,
                        "status_code": getattr(exc, "status_code", None),
                        "detail": message,
                        "retry_in_ms": round(delay * 1000, 2),
                    },
                    level=logging.WARNING,
                )
                await self._sleep(delay)
                continue

            latency = time.perf_counter() - started
            transfer_latency_seconds.observe(latency)
            attempts.append(
                TransferAttempt(
                    chunk_index=chunk.index,
                    attempt=attempt + 1,
                    outcome=AttemptOutcome.succeeded,
                    latency_ms=round(latency * 1000, 2),
                )
            )
            return ChunkOutcome(chunk=chunk, succeeded=True, attempts=tuple(attempts))

        raise RuntimeError("retry policy configured with no attempts")
