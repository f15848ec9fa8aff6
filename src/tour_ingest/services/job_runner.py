"""Job state machine: pending -> processing -> completed | failed.

Failures are classified by message. A transient failure with retries left
sends the job back to `pending` with its retry counter bumped, the history
line "重試 n/max: <message>" appended and `next_retry_at` set from the
exponential backoff; whoever re-runs the job (worker or operator) honours that
timestamp. Anything else ends in terminal `failed`.

One writer per job id: runs hold a per-job asyncio.Lock and a job that is
already locked or `processing` is refused.
"""

from __future__ import annotations

import asyncio
import json
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, AsyncIterator, Optional

import structlog

from ..domain.errors import IngestDomainError, InvalidInputError, JobConflictError, JobNotFoundError
from ..domain.models import TEXT_INPUT_REF, JobRunResult, JobStatus, RetryDecision, ScrapeJob
from ..observability.logger import get_logger
from ..storage.repositories import AgencyRepository, JobRepository
from ..utils.time import current_time_ms, elapsed_ms, utcnow
from .acquisition_service import AcquisitionService
from .extraction_service import ExtractionService, TextBatchResult, first_line
from .preview_service import PreviewService

logger = get_logger(__name__)

TRANSIENT_PATTERNS = (
    "timeout",
    "network",
    "econnrefused",
    "etimedout",
    "rate limit",
    "too many requests",
    "temporary",
)
TRANSIENT_STATUS = re.compile(r"(?<!\d)(?:502|503|504)(?!\d)")

# Scraped URLs end up in error messages; their text must not drive the decision.
_URL = re.compile(r"\b(?:https?|ftp)://\S+|\bwww\.\S+", re.IGNORECASE)


def is_transient(message: str) -> bool:
    lowered = _URL.sub(" ", message or "").lower()
    return any(p in lowered for p in TRANSIENT_PATTERNS) or TRANSIENT_STATUS.search(lowered) is not None


INTERRUPTED_MESSAGE = "processing interrupted by a service restart"


def backoff_ms(retry_count: int, *, base_ms: int = 1000, cap_ms: int = 30000) -> int:
    """min(base * 2^(retry_count - 1), cap) for the retry_count-th retry."""
    return int(min(base_ms * (2 ** max(retry_count - 1, 0)), cap_ms))


def decide_retry(
    message: str,
    retry_count: int,
    max_retries: int,
    *,
    base_ms: int = 1000,
    cap_ms: int = 30000,
) -> RetryDecision:
    retryable = is_transient(message)
    if retryable and retry_count < max_retries:
        attempt = retry_count + 1
        return RetryDecision(
            retryable=True,
            will_retry=True,
            retry_count=attempt,
            max_retries=max_retries,
            backoff_ms=backoff_ms(attempt, base_ms=base_ms, cap_ms=cap_ms),
            message=f"重試 {attempt}/{max_retries}: {message}",
        )
    return RetryDecision(
        retryable=retryable,
        will_retry=False,
        retry_count=retry_count,
        max_retries=max_retries,
        message=f"最終失敗（{retry_count} 次重試）: {message}",
    )


def append_history(previous: Optional[str], line: str) -> str:
    return f"{previous}\n{line}" if previous else line


def _stored_tours(raw_data: Optional[str]) -> list[dict[str, Any]]:
    if not raw_data:
        return []
    value = json.loads(raw_data)
    if isinstance(value, dict):
        value = value.get("tours") or []
    return [t for t in value if isinstance(t, dict)]


@dataclass(frozen=True)
class BatchRetrySummary:
    total_failed: int
    retried_count: int
    skipped_count: int


@dataclass(frozen=True)
class TextJobResult:
    job_id: int
    agency_name: str
    agency_id: Optional[int]
    tours: list[dict[str, Any]]


class JobRunner:
    def __init__(
        self,
        jobs: JobRepository,
        agencies: AgencyRepository,
        acquisition: AcquisitionService,
        extraction: ExtractionService,
        *,
        preview: PreviewService | None = None,
        backoff_base_ms: int = 1000,
        backoff_cap_ms: int = 30000,
        default_agency_name: str = "其他",
    ):
        self._jobs = jobs
        self._agencies = agencies
        self._acquisition = acquisition
        self._extraction = extraction
        self._preview = preview
        self._backoff_base_ms = backoff_base_ms
        self._backoff_cap_ms = backoff_cap_ms
        self._default_agency_name = default_agency_name
        self._locks: dict[int, asyncio.Lock] = {}

    def is_running(self, job_id: int) -> bool:
        lock = self._locks.get(job_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def _guard(self, job_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        if lock.locked():
            raise JobConflictError(f"scrape job {job_id} is already being processed")
        async with lock:
            try:
                with structlog.contextvars.bound_contextvars(job_id=job_id):
                    yield
            finally:
                self._locks.pop(job_id, None)

    async def execute_job(self, job_id: int) -> JobRunResult:
        async with self._guard(job_id):
            job = await self._jobs.get_job(job_id)
            if job is None:
                raise JobNotFoundError(f"scrape job {job_id} not found")

            if job.is_text_input:
                # Text jobs are extracted when they are created.
                tours = _stored_tours(job.raw_data)
                return JobRunResult(job_id=job_id, status=job.status, tours=tours, source_type="text_input")
            if job.status == JobStatus.PROCESSING:
                raise JobConflictError(f"scrape job {job_id} is already processing")

            await self._jobs.update_job(job_id, status=JobStatus.PROCESSING, next_retry_at=None)
            logger.info("job_processing", url=job.url, retry_count=job.retry_count)
            started = current_time_ms()

            try:
                acquired = await self._acquisition.acquire(job.url)
                extracted = await self._extraction.extract(acquired.content, acquired.source_type)
            except Exception as e:
                return await self._fail(job, e)

            tours = extracted.raw_tours()
            await self._jobs.update_job(
                job_id,
                status=JobStatus.COMPLETED,
                tours_found=len(tours),
                raw_data=json.dumps(tours, ensure_ascii=False),
                source_url=acquired.source_url,
                completed_at=utcnow(),
            )
            logger.info(
                "job_completed",
                tours_found=len(tours),
                source_type=acquired.source_type,
                duration_ms=elapsed_ms(started),
            )

            if acquired.is_pdf and acquired.source_url and self._preview is not None:
                await self._rehost_pdf(job_id, acquired.source_url)

            return JobRunResult(
                job_id=job_id,
                status=JobStatus.COMPLETED,
                tours=tours,
                source_type=acquired.source_type,
                used_ocr=acquired.used_ocr,
                extracted_length=acquired.extracted_length,
            )

    async def _rehost_pdf(self, job_id: int, source_url: str) -> None:
        try:
            await self._preview.rehost(job_id, source_url)
        except IngestDomainError as e:
            # Preview is a convenience; the extraction result stands.
            logger.warning("pdf_preview_upload_failed", source_url=source_url, error=str(e))

    async def _fail(self, job: ScrapeJob, error: Exception) -> JobRunResult:
        message = str(error) or error.__class__.__name__
        if not isinstance(error, IngestDomainError):
            logger.exception("job_unexpected_error", error=message)

        decision = decide_retry(
            message,
            job.retry_count,
            job.max_retries,
            base_ms=self._backoff_base_ms,
            cap_ms=self._backoff_cap_ms,
        )
        history = append_history(job.error_message, decision.message)
        if decision.will_retry:
            await self._jobs.update_job(
                job.id,
                status=JobStatus.PENDING,
                retry_count=decision.retry_count,
                error_message=history,
                next_retry_at=utcnow() + timedelta(milliseconds=decision.backoff_ms),
            )
            logger.warning(
                "job_retry_scheduled",
                retry_count=decision.retry_count,
                max_retries=decision.max_retries,
                backoff_ms=decision.backoff_ms,
                error=message,
            )
            status = JobStatus.PENDING
        else:
            await self._jobs.update_job(
                job.id,
                status=JobStatus.FAILED,
                error_message=history,
                completed_at=utcnow(),
            )
            logger.error("job_failed", retry_count=job.retry_count, retryable=decision.retryable, error=message)
            status = JobStatus.FAILED

        return JobRunResult(job_id=job.id, status=status, error_message=history, retry=decision)

    async def batch_retry_failed(self) -> BatchRetrySummary:
        """Reset failed jobs that still have retries left back to pending."""
        failed = await self._jobs.list_jobs_by_status(JobStatus.FAILED)
        retried = 0
        for job in failed:
            if job.is_text_input or job.retry_count >= job.max_retries or self.is_running(job.id):
                continue
            attempt = job.retry_count + 1
            await self._jobs.update_job(
                job.id,
                status=JobStatus.PENDING,
                retry_count=attempt,
                error_message=append_history(job.error_message, f"批次重試 {attempt}/{job.max_retries}"),
                next_retry_at=None,
                completed_at=None,
            )
            retried += 1
        logger.info("batch_retry_completed", total_failed=len(failed), retried=retried)
        return BatchRetrySummary(total_failed=len(failed), retried_count=retried, skipped_count=len(failed) - retried)

    async def recover_interrupted_jobs(self) -> int:
        """Requeue jobs a previous process left in `processing`.

        Only safe while this process is the single worker. Each recovery counts
        as a retry so a job that keeps killing the worker ends in `failed`.
        """
        recovered = 0
        for job in await self._jobs.list_jobs_by_status(JobStatus.PROCESSING):
            if self.is_running(job.id):
                continue
            if not job.is_text_input and job.retry_count < job.max_retries:
                attempt = job.retry_count + 1
                await self._jobs.update_job(
                    job.id,
                    status=JobStatus.PENDING,
                    retry_count=attempt,
                    error_message=append_history(
                        job.error_message, f"重試 {attempt}/{job.max_retries}: {INTERRUPTED_MESSAGE}"
                    ),
                    next_retry_at=None,
                )
                recovered += 1
            else:
                await self._jobs.update_job(
                    job.id,
                    status=JobStatus.FAILED,
                    error_message=append_history(
                        job.error_message, f"最終失敗（{job.retry_count} 次重試）: {INTERRUPTED_MESSAGE}"
                    ),
                    completed_at=utcnow(),
                )
            logger.warning("interrupted_job_recovered", job_id=job.id, retry_count=job.retry_count)
        return recovered

    async def extract_from_text(self, text: str) -> TextJobResult:
        """Run the free-text batch extraction as a job of its own."""
        if not text.strip():
            raise InvalidInputError("text content is empty")
        agency_name = first_line(text) or self._default_agency_name
        agency = await self._agencies.find_or_create(agency_name)
        job_id = await self._jobs.create_job(
            name=f"文字提取 - {text[:30]}...",
            url=TEXT_INPUT_REF,
            agency_id=agency.id,
            status=JobStatus.PROCESSING,
        )

        async with self._guard(job_id):
            try:
                result: TextBatchResult = await self._extraction.extract_from_text(text)
            except Exception as e:
                await self._jobs.update_job(
                    job_id, status=JobStatus.FAILED, error_message=str(e), completed_at=utcnow()
                )
                logger.error("text_extraction_failed", error=str(e))
                raise

            raw = result.raw()
            await self._jobs.update_job(
                job_id,
                status=JobStatus.COMPLETED,
                tours_found=len(result.tours),
                raw_data=json.dumps(raw, ensure_ascii=False),
                completed_at=utcnow(),
            )
        return TextJobResult(
            job_id=job_id,
            agency_name=result.agency_name or agency_name,
            agency_id=agency.id,
            tours=raw["tours"],
        )
