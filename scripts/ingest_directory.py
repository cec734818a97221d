import argparse
import asyncio
import json
import os
import statistics
import time
from pathlib import Path

import httpx

from bulk_ingest.config import settings
from bulk_ingest.models import FileItem
from bulk_ingest.pipeline import PipelineController
from bulk_ingest.transport import HttpChunkTransport


class _LatencyRecordingTransport:
    def __init__(self, inner: HttpChunkTransport, latencies_ms: list[float]) -> None:
        self.inner = inner
        self.latencies_ms = latencies_ms

    async def send_chunk(self, chunk, credential: str) -> None:
        t0 = time.perf_counter()
        try:
            await self.inner.send_chunk(chunk, credential)
        finally:
            self.latencies_ms.append((time.perf_counter() - t0) * 1000)


def _collect_files(root: Path, recursive: bool) -> list[FileItem]:
    paths = root.rglob("*") if recursive else root.iterdir()
    return [FileItem.from_path(path) for path in sorted(paths) if path.is_file()]


async def _run(args: argparse.Namespace, files: list[FileItem]) -> dict:
    attempt_latencies_ms: list[float] = []
    token = args.token or os.getenv("INGEST_TOKEN")

    async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as client:
        transport = HttpChunkTransport(client, endpoint_url=args.endpoint)

        controller = PipelineController(
            transport=_LatencyRecordingTransport(transport, attempt_latencies_ms),
            credentials=lambda: token,
            concurrency=args.concurrency,
        )
        started = time.perf_counter()
        result = controller.submit_batch(files, args.job_id)
        if not result.accepted:
            return {"outcome": result.outcome.value, "detail": result.detail}

        session = result.session
        await session.wait()
        elapsed = time.perf_counter() - started

    return {
        "outcome": result.outcome.value,
        "session_id": session.session_id,
        "job_id": session.job_id,
        "status": session.status.value,
        "total": session.total,
        "uploaded": session.uploaded,
        "failed": session.failed,
        "last_error": session.last_error,
        "attempts": len(attempt_latencies_ms),
        "elapsed_seconds": round(elapsed, 3),
        "attempt_latency_ms_avg": round(statistics.mean(attempt_latencies_ms), 3) if attempt_latencies_ms else 0.0,
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Send every file in a directory to the ingestion endpoint.")
    parser.add_argument("directory", help="Directory holding the files to send")
    parser.add_argument("--job-id", required=True, help="Job the files are submitted for")
    parser.add_argument("--token", default="", help="Bearer token (defaults to $INGEST_TOKEN)")
    parser.add_argument("--endpoint", default=settings.ingest_endpoint_url, help="Ingestion endpoint URL")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.upload_concurrency,
        help="Number of chunk transfers kept in flight.",
    )
    parser.add_argument("--recursive", action="store_true", help="Include files in subdirectories")
    parser.add_argument("--output", default="", help="Optional path to write JSON summary")
    args = parser.parse_args()

    root = Path(args.directory)
    if not root.is_dir():
        print(f"[FAIL] Not a directory: {root}")
        return 2

    summary = asyncio.run(_run(args, _collect_files(root, args.recursive)))

    print("Ingestion summary:")
    for key, value in summary.items():
        print(f"- {key}: {value}")

    if args.output:
        os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)
        print(f"\nWrote summary to {args.output}")

    if summary["outcome"] != "accepted":
        return 2
    return 0 if summary["status"] == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
