import asyncio
import random
import time

import httpx

from bulk_ingest.errors import TransferError
from bulk_ingest.models import AttemptOutcome, Chunk, FileItem
from bulk_ingest.retry import RetryPolicy
from bulk_ingest.transport import HttpChunkTransport


class FlakyTransport:
    def __init__(self, failures_before_success: int, error: Exception | None = None) -> None:
        self.failures_before_success = failures_before_success
        self.error = error or TransferError("upload failed with status 503", status_code=503)
        self.calls = 0

    async def send_chunk(self, chunk: Chunk, credential: str) -> None:
        self.calls += 1
        if self.calls <= self.failures_before_success:
            raise self.error


def _chunk(index: int = 0, count: int = 5) -> Chunk:
    files = tuple(FileItem.from_bytes(f"cv-{index}-{i}.pdf", b"x" * (i + 1)) for i in range(count))
    return Chunk(index=index, job_id="77", files=files)


def _policy(transport, delays: list[float], seed: int = 7) -> RetryPolicy:
    async def _record_sleep(delay: float) -> None:
        delays.append(delay)

    return RetryPolicy(
        transport,
        credential="token-1",
        max_retries=3,
        base_delay_seconds=0.5,
        jitter_seconds=0.15,
        sleep=_record_sleep,
        rng=random.Random(seed),
    )


def test_first_attempt_success_has_no_backoff() -> None:
    delays: list[float] = []
    transport = FlakyTransport(failures_before_success=0)
    outcome = asyncio.run(_policy(transport, delays).upload_with_retry(_chunk()))

    assert outcome.succeeded is True
    assert len(outcome.attempts) == 1
    assert outcome.attempts[0].outcome is AttemptOutcome.succeeded
    assert delays == []


def test_success_on_third_attempt_counts_as_success() -> None:
    delays: list[float] = []
    transport = FlakyTransport(failures_before_success=2)
    outcome = asyncio.run(_policy(transport, delays).upload_with_retry(_chunk()))

    assert outcome.succeeded is True
    assert outcome.error is None
    assert [a.outcome for a in outcome.attempts] == [
        AttemptOutcome.failed,
        AttemptOutcome.failed,
        AttemptOutcome.succeeded,
    ]
    assert len(delays) == 2
    assert 0.5 <= delays[0] <= 0.65
    assert 1.0 <= delays[1] <= 1.15


def test_four_failures_exhaust_retries() -> None:
    delays: list[float] = []
    transport = FlakyTransport(failures_before_success=10)
    outcome = asyncio.run(_policy(transport, delays).upload_with_retry(_chunk()))

    assert outcome.succeeded is False
    assert transport.calls == 4
    assert len(outcome.attempts) == 4
    assert outcome.error == "upload failed with status 503"
    assert [a.attempt for a in outcome.attempts] == [1, 2, 3, 4]
    # no wait after the final attempt
    assert len(delays) == 3
    assert 2.0 <= delays[2] <= 2.15


def test_client_errors_are_retried_like_transient_ones() -> None:
    delays: list[float] = []
    transport = FlakyTransport(10, error=TransferError("malformed file", status_code=400))
    outcome = asyncio.run(_policy(transport, delays).upload_with_retry(_chunk()))

    assert transport.calls == 4
    assert outcome.error == "malformed file"


def test_unexpected_exception_fails_the_attempt() -> None:
    delays: list[float] = []
    transport = FlakyTransport(1, error=RuntimeError("socket closed"))
    outcome = asyncio.run(_policy(transport, delays).upload_with_retry(_chunk()))

    assert outcome.succeeded is True
    assert outcome.attempts[0].error == "socket closed"


def test_backoff_delay_bounds() -> None:
    policy = RetryPolicy(FlakyTransport(0), credential="t", base_delay_seconds=0.5, jitter_seconds=0.15)
    for attempt, base in enumerate((0.5, 1.0, 2.0)):
        for _ in range(50):
            delay = policy.backoff_delay(attempt)
            assert base <= delay <= base + 0.15


def test_non_201_then_201_waits_between_half_and_one_second() -> None:
    attempt_times: list[float] = []
    statuses = iter([500, 201])

    async def handler(request: httpx.Request) -> httpx.Response:
        attempt_times.append(time.perf_counter())
        return httpx.Response(next(statuses), json={})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = HttpChunkTransport(client, endpoint_url="https://ingest.test/resume/process")
            policy = RetryPolicy(transport, credential="token", max_retries=3, base_delay_seconds=0.5, jitter_seconds=0.15)
            return await policy.upload_with_retry(_chunk())

    outcome = asyncio.run(scenario())

    assert outcome.succeeded is True
    assert len(attempt_times) == 2
    elapsed = attempt_times[1] - attempt_times[0]
    assert 0.5 <= elapsed < 1.0
