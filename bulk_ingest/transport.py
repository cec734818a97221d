from contextlib import ExitStack
from typing import Protocol

import httpx

from bulk_ingest.config import settings
from bulk_ingest.errors import TransferError
from bulk_ingest.models import Chunk

SUCCESS_STATUS = 201


class ChunkTransport(Protocol):
    async def send_chunk(self, chunk: Chunk, credential: str) -> None: ...


def _resolve_error_message(response: httpx.Response) -> str:
    fallback = f"upload failed with status {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if not isinstance(payload, dict):
        return fallback
    message = payload.get("message")
    if not message and isinstance(payload.get("data"), dict):
        message = payload["data"].get("message")
    return str(message) if message else fallback


class HttpChunkTransport:
    """Posts one chunk as a single multipart request.

    Every file goes under the same repeated form field next to one job-id field.
    Only 201 counts as success; any other status or an httpx error raises
    ``TransferError``. File handles stay open only while the request is sent.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint_url: str | None = None,
        file_field: str | None = None,
        job_field: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.client = client
        self.endpoint_url = endpoint_url or settings.ingest_endpoint_url
        self.file_field = file_field or settings.file_field_name
        self.job_field = job_field or settings.job_field_name
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.request_timeout_seconds

    async def send_chunk(self, chunk: Chunk, credential: str) -> None:
        with ExitStack() as handles:
            files = [
                (self.file_field, (item.name, handles.enter_context(item.open()), item.content_type))
                for item in chunk.files
            ]
            try:
                response = await self.client.post(
                    self.endpoint_url,
                    files=files,
                    data={self.job_field: str(chunk.job_id)},
                    headers={"Authorization": f"Bearer {credential}"},
                    timeout=self.timeout_seconds,
                )
            except httpx.HTTPError as exc:
                raise TransferError(f"network error: {exc.__class__.__name__}: {exc}") from exc
        if response.status_code != SUCCESS_STATUS:
            raise TransferError(_resolve_error_message(response), status_code=response.status_code)
