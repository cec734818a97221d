class IngestError(Exception):
    """Base class for ingestion pipeline errors."""


class BatchValidationError(IngestError):
    """A batch failed a precondition and no transfer was started."""

    def __init__(self, code: str, detail: str) -> None:
        super().__init__(detail)
        self.code = code
        self.detail = detail


class TransferError(IngestError):
    """One transfer attempt for one chunk failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SessionFailure(IngestError):
    def __init__(self, session_id: str, failed: int, total: int, last_error: str | None) -> None:
        super().__init__(f"session {session_id} failed: {failed}/{total} files not delivered ({last_error})")
        self.session_id = session_id
        self.failed = failed
        self.total = total
        self.last_error = last_error
