import asyncio
import random
from collections import Counter

import pytest

from bulk_ingest.errors import TransferError
from bulk_ingest.models import Chunk, FileItem
from bulk_ingest.partition import partition_files
from bulk_ingest.pool import ChunkCursor, UploadWorkerPool
from bulk_ingest.progress import ProgressAggregator
from bulk_ingest.retry import RetryPolicy


class RecordingTransport:
    def __init__(self, always_fail: set[int] | None = None, latency: float = 0.001, seed: int = 3) -> None:
        self.always_fail = always_fail or set()
        self.latency = latency
        self.calls: list[int] = []
        self.inflight = 0
        self.max_inflight = 0
        self._rng = random.Random(seed)

    async def send_chunk(self, chunk: Chunk, credential: str) -> None:
        self.calls.append(chunk.index)
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            await asyncio.sleep(self._rng.uniform(0, self.latency))
            if chunk.index in self.always_fail:
                raise TransferError(f"chunk {chunk.index} rejected", status_code=500)
        finally:
            self.inflight -= 1


async def _no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


def _files(count: int) -> list[FileItem]:
    return [FileItem.from_bytes(f"cv-{i}.pdf", b"cv") for i in range(count)]


def _run_pool(transport, file_count: int, concurrency: int = 6):
    chunks = partition_files(_files(file_count), job_id="5", chunk_size=5)
    progress = ProgressAggregator()
    progress.start(file_count)
    policy = RetryPolicy(transport, credential="t", max_retries=3, sleep=_no_sleep)
    outcomes = asyncio.run(UploadWorkerPool(policy, concurrency).run(chunks, progress))
    return chunks, progress, outcomes


def test_cursor_claims_in_order_until_exhausted() -> None:
    chunks = partition_files(_files(11), job_id="1", chunk_size=5)
    cursor = ChunkCursor(chunks)
    claimed = [cursor.claim(), cursor.claim(), cursor.claim()]
    assert [chunk.index for chunk in claimed] == [0, 1, 2]
    assert cursor.claim() is None
    assert cursor.claimed == 3


def test_at_most_six_transfers_in_flight() -> None:
    transport = RecordingTransport(latency=0.005)
    _, progress, outcomes = _run_pool(transport, file_count=200)

    assert transport.max_inflight == 6
    assert len(outcomes) == 40
    assert progress.uploaded == 200


def test_small_batch_starts_every_chunk_immediately() -> None:
    transport = RecordingTransport(latency=0.005)
    _run_pool(transport, file_count=12)
    assert transport.max_inflight == 3


def test_chunks_claimed_fifo_and_each_exactly_once() -> None:
    transport = RecordingTransport(latency=0.01)
    chunks, _, outcomes = _run_pool(transport, file_count=97)

    assert transport.calls == list(range(len(chunks)))
    assert Counter(outcome.chunk.index for outcome in outcomes) == Counter(range(len(chunks)))


def test_permanent_failure_is_isolated_to_its_chunk() -> None:
    transport = RecordingTransport(always_fail={1}, latency=0.002)
    chunks, progress, outcomes = _run_pool(transport, file_count=12)

    assert progress.uploaded == 7
    assert progress.failed == 5
    assert progress.last_error == "chunk 1 rejected"
    assert transport.calls.count(1) == 4
    assert transport.calls.count(0) == 1
    assert transport.calls.count(2) == 1
    failed = [outcome for outcome in outcomes if not outcome.succeeded]
    assert [outcome.chunk.index for outcome in failed] == [1]


def test_single_worker_processes_everything_sequentially() -> None:
    transport = RecordingTransport(latency=0.001)
    _, progress, _ = _run_pool(transport, file_count=23, concurrency=1)
    assert transport.max_inflight == 1
    assert progress.uploaded == 23


def test_empty_chunk_list_finishes_immediately() -> None:
    transport = RecordingTransport()
    progress = ProgressAggregator()
    progress.start(0)
    policy = RetryPolicy(transport, credential="t", sleep=_no_sleep)
    outcomes = asyncio.run(UploadWorkerPool(policy, 6).run([], progress))
    assert outcomes == []
    assert transport.calls == []


def test_non_positive_concurrency_rejected() -> None:
    policy = RetryPolicy(RecordingTransport(), credential="t")
    with pytest.raises(ValueError):
        UploadWorkerPool(policy, 0)


class ExplodingProgress(ProgressAggregator):
    def record_success(self, count: int) -> None:
        raise RuntimeError("progress store unavailable")


def test_worker_error_stops_remaining_workers() -> None:
    transport = RecordingTransport(latency=0.01)
    chunks = partition_files(_files(100), job_id="5", chunk_size=5)
    progress = ExplodingProgress()
    progress.start(100)
    policy = RetryPolicy(transport, credential="t", max_retries=0, sleep=_no_sleep)

    async def scenario() -> int:
        with pytest.raises(RuntimeError, match="progress store unavailable"):
            await UploadWorkerPool(policy, 6).run(chunks, progress)
        calls_at_failure = len(transport.calls)
        await asyncio.sleep(0.05)
        assert len(transport.calls) == calls_at_failure
        return calls_at_failure

    assert asyncio.run(scenario()) < len(chunks)
    assert transport.inflight == 0
