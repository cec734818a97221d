from collections.abc import Sequence

from bulk_ingest.config import settings
from bulk_ingest.models import Chunk, FileItem


def partition_files(files: Sequence[FileItem], job_id: str, chunk_size: int | None = None) -> list[Chunk]:
    """Split ``files`` into ordered chunks of at most ``chunk_size`` items.

    The last chunk may be short. An empty batch yields no chunks; callers reject
    empty batches before getting here.
    """
    size = settings.chunk_size if chunk_size is None else chunk_size
    if size <= 0:
        raise ValueError(f"chunk_size must be positive, got {size}")
    return [
        Chunk(index=index, job_id=job_id, files=tuple(files[start : start + size]))
        for index, start in enumerate(range(0, len(files), size))
    ]
