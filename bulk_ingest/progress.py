from bulk_ingest.models import SessionStatus


class ProgressAggregator:
    """Counters for one session.

    Updates run on the event loop between suspension points, so they need no
    lock. ``uploaded + failed`` never decreases and never exceeds ``total``.
    """

    def __init__(self) -> None:
        self.total = 0
        self.uploaded = 0
        self.failed = 0
        self.status = SessionStatus.idle
        self.last_error: str | None = None

    @property
    def processed(self) -> int:
        return self.uploaded + self.failed

    def start(self, total: int) -> None:
        if self.status is not SessionStatus.idle:
            raise RuntimeError(f"cannot start a session in status {self.status.value}")
        self.total = total
        self.status = SessionStatus.uploading

    def _check_capacity(self, count: int) -> None:
        if self.status is not SessionStatus.uploading:
            raise RuntimeError(f"cannot record progress in status {self.status.value}")
        if self.processed + count > self.total:
            raise RuntimeError(f"progress overflow: {self.processed} + {count} > {self.total}")

    def record_success(self, count: int) -> None:
        self._check_capacity(count)
        self.uploaded += count

    def record_failure(self, count: int, error: str | None) -> None:
        self._check_capacity(count)
        self.failed += count
        self.last_error = error

    def finish(self) -> SessionStatus:
        if self.status is not SessionStatus.uploading:
            raise RuntimeError(f"cannot finish a session in status {self.status.value}")
        if self.processed != self.total:
            raise RuntimeError(f"session finished with {self.processed}/{self.total} files accounted for")
        self.status = SessionStatus.completed if self.failed == 0 else SessionStatus.failed
        return self.status

    def abort(self, error: str) -> SessionStatus:
        """Fail the session, counting every file not yet accounted for as failed."""
        if self.status is not SessionStatus.uploading:
            raise RuntimeError(f"cannot abort a session in status {self.status.value}")
        self.failed = self.total - self.uploaded
        self.last_error = error
        self.status = SessionStatus.failed
        return self.status
