"""Re-hosting of source PDFs in object storage for admin preview."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..domain.errors import InvalidInputError, JobNotFoundError
from ..observability.logger import get_logger
from ..storage.minio_client import UploadResult, object_key_from_url
from ..storage.repositories import JobRepository
from ..utils.paths import PREVIEW_PREFIX, build_pdf_preview_key
from ..utils.time import current_time_ms

logger = get_logger(__name__)


class ObjectStorage(Protocol):
    async def put(self, object_name: str, data: bytes, content_type: str) -> UploadResult: ...

    async def delete(self, object_name: str) -> None: ...


class PdfDownloader(Protocol):
    async def fetch_bytes(self, url: str, timeout_ms: int | None = None) -> bytes: ...


@dataclass(frozen=True)
class PreviewResult:
    pdf_url: str
    already_uploaded: bool = False


class PreviewService:
    def __init__(self, jobs: JobRepository, storage: ObjectStorage, downloader: PdfDownloader):
        self._jobs = jobs
        self._storage = storage
        self._downloader = downloader

    async def upload_pdf_preview(self, job_id: int) -> PreviewResult:
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"scrape job {job_id} not found")
        if job.pdf_url:
            return PreviewResult(pdf_url=job.pdf_url, already_uploaded=True)
        if not job.source_url:
            raise InvalidInputError(f"scrape job {job_id} has no source PDF to preview")
        url = await self.rehost(job_id, job.source_url)
        return PreviewResult(pdf_url=url)

    async def rehost(self, job_id: int, source_url: str) -> str:
        """Download the PDF, upload it under scrape-jobs/<job_id>/ and record the public URL."""
        data = await self._downloader.fetch_bytes(source_url)
        try:
            key = build_pdf_preview_key(job_id, current_time_ms())
            uploaded = await self._storage.put(key, data, "application/pdf")
        finally:
            del data
        await self._jobs.update_job(job_id, pdf_url=uploaded.url)
        logger.info("pdf_preview_uploaded", job_id=job_id, object_name=uploaded.object_name, bytes=uploaded.size_bytes)
        return uploaded.url

    async def delete_preview(self, pdf_url: str) -> bool:
        key = object_key_from_url(pdf_url, PREVIEW_PREFIX)
        if key is None:
            logger.warning("pdf_preview_key_not_found", pdf_url=pdf_url)
            return False
        await self._storage.delete(key)
        logger.info("pdf_preview_deleted", object_name=key)
        return True
