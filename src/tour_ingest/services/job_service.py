"""Scrape job administration (create / read / edit / delete)."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from ..domain.errors import InvalidInputError, JobConflictError, JobNotFoundError
from ..domain.models import JobStatus, ScrapeJob
from ..observability.logger import get_logger
from ..storage.repositories import AgencyRepository, JobRepository
from ..utils.validators import is_valid_http_url

logger = get_logger(__name__)


class JobService:
    def __init__(
        self,
        jobs: JobRepository,
        agencies: AgencyRepository,
        *,
        default_agency_name: str = "其他",
        default_max_retries: int = 3,
        is_running: Callable[[int], bool] | None = None,
    ):
        self._jobs = jobs
        self._agencies = agencies
        self._default_agency_name = default_agency_name
        self._default_max_retries = default_max_retries
        self._is_running = is_running or (lambda job_id: False)

    async def create_job(
        self,
        *,
        url: str,
        name: Optional[str] = None,
        price: Optional[float] = None,
        agency_id: Optional[int] = None,
        category: Optional[str] = None,
    ) -> ScrapeJob:
        if not is_valid_http_url(url):
            raise InvalidInputError(f"invalid job url: {url}")

        if agency_id is None:
            agency = await self._agencies.find_by_name(self._default_agency_name)
            if agency is None:
                raise InvalidInputError(
                    f"default agency '{self._default_agency_name}' does not exist; create it or pass an agency id"
                )
            agency_id = agency.id
        elif await self._agencies.get_agency(agency_id) is None:
            raise InvalidInputError(f"agency {agency_id} does not exist")

        job_id = await self._jobs.create_job(
            name=name or url,
            url=url,
            agency_id=agency_id,
            price=price,
            category=category,
            max_retries=self._default_max_retries,
        )
        logger.info("job_created", job_id=job_id, url=url, agency_id=agency_id)
        return await self.get_job(job_id)

    async def get_job(self, job_id: int) -> ScrapeJob:
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"scrape job {job_id} not found")
        return job

    async def list_jobs(self, limit: int = 50) -> list[ScrapeJob]:
        return await self._jobs.list_jobs(limit)

    async def update_job_info(self, job_id: int, fields: dict[str, Any]) -> ScrapeJob:
        job = await self.get_job(job_id)
        allowed = {k: v for k, v in fields.items() if k in ("name", "url", "price", "agency_id", "category")}
        if "url" in allowed and not is_valid_http_url(allowed["url"]):
            raise InvalidInputError(f"invalid job url: {allowed['url']}")
        if job.status == JobStatus.PROCESSING and "url" in allowed:
            raise JobConflictError(f"scrape job {job_id} is processing; its url cannot change")
        if allowed:
            await self._jobs.update_job(job_id, **allowed)
        return await self.get_job(job_id)

    async def delete_job(self, job_id: int) -> None:
        await self.get_job(job_id)
        if self._is_running(job_id):
            raise JobConflictError(f"scrape job {job_id} is being processed")
        await self._jobs.delete_jobs([job_id])
        logger.info("job_deleted", job_id=job_id)

    async def bulk_delete_jobs(self, job_ids: Iterable[int]) -> int:
        requested = list(job_ids)
        ids = [i for i in requested if not self._is_running(i)]
        deleted = await self._jobs.delete_jobs(ids)
        logger.info("jobs_bulk_deleted", requested=len(requested), deleted=deleted)
        return deleted
