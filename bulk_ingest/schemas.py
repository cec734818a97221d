from pydantic import BaseModel


class SessionSnapshot(BaseModel):
    session_id: str
    job_id: str | None
    status: str
    total: int
    uploaded: int
    failed: int
    last_error: str | None = None


class SubmitBatchResponse(BaseModel):
    outcome: str
    session: SessionSnapshot


class ErrorResponse(BaseModel):
    detail: str
    error_code: str
    request_id: str | None = None
    session_id: str | None = None
    trace_id: str | None = None
