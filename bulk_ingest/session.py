import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from bulk_ingest.errors import SessionFailure
from bulk_ingest.events import log_event
from bulk_ingest.models import SessionStatus
from bulk_ingest.progress import ProgressAggregator
from bulk_ingest.schemas import SessionSnapshot

SessionCallback = Callable[["UploadSession"], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UploadSession:
    """Caller-owned handle for one batch submission.

    Counters are readable at any time. Exactly one of ``on_complete`` and
    ``on_failed`` runs once the session reaches a terminal status.
    """

    def __init__(
        self,
        job_id: str | None,
        on_complete: SessionCallback | None = None,
        on_failed: SessionCallback | None = None,
    ) -> None:
        self.session_id = str(uuid.uuid4())
        self.job_id = job_id
        self.progress = ProgressAggregator()
        self.created_at = utc_now()
        self.finished_at: datetime | None = None
        self._on_complete = on_complete
        self._on_failed = on_failed
        self._task: asyncio.Task | None = None
        self._settled = False

    @property
    def status(self) -> SessionStatus:
        return self.progress.status

    @property
    def total(self) -> int:
        return self.progress.total

    @property
    def uploaded(self) -> int:
        return self.progress.uploaded

    @property
    def failed(self) -> int:
        return self.progress.failed

    @property
    def last_error(self) -> str | None:
        return self.progress.last_error

    @property
    def done(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            job_id=self.job_id,
            status=self.status.value,
            total=self.total,
            uploaded=self.uploaded,
            failed=self.failed,
            last_error=self.last_error,
        )

    def attach(self, task: asyncio.Task) -> None:
        if self._task is not None:
            raise RuntimeError(f"session {self.session_id} already has a running task")
        self._task = task

    async def wait(self) -> SessionStatus:
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.status

    def raise_for_status(self) -> None:
        if self.status is SessionStatus.failed:
            raise SessionFailure(self.session_id, self.failed, self.total, self.last_error)

    def settle(self) -> None:
        if self._settled:
            return
        self._settled = True
        self.finished_at = utc_now()
        callback = self._on_complete if self.status is SessionStatus.completed else self._on_failed
        if callback is None:
            return
        try:
            callback(self)
        except Exception as exc:
            log_event(
                {
                    "event": "session_callback_error",
                    "session_id": self.session_id,
                    "status": self.status.value,
                    "detail": str(exc),
                    "error_class": exc.__class__.__name__,
                }
            )


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, UploadSession] = {}

    def add(self, session: UploadSession) -> None:
        self._sessions[session.session_id] = session

    def get(self, session_id: str) -> UploadSession | None:
        return self._sessions.get(session_id)

    def active(self) -> list[UploadSession]:
        return [session for session in self._sessions.values() if session.status is SessionStatus.uploading]

    async def wait_all(self) -> None:
        for session in self.active():
            await session.wait()

    def clear(self) -> None:
        self._sessions.clear()
