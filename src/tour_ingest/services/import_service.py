"""Import of reviewed drafts into the tours table."""

from __future__ import annotations

from typing import Optional, Sequence

from ..domain.errors import AgencyNotFoundError, IngestDomainError, InvalidInputError, JobNotFoundError
from ..domain.models import ImportSummary
from ..models.tours import TourDraft
from ..observability.logger import get_logger
from ..processing.tour_normalizer import NormalizeOptions, normalize_extracted_tour, normalize_tour
from ..storage.repositories import AgencyRepository, JobRepository, TourRepository
from .preview_service import PreviewService

logger = get_logger(__name__)


def _check_prices(records: list[dict]) -> None:
    # Zero price is a data-quality gate: the reviewer must fix it first.
    missing = [r["title"] for r in records if r["price"] == "0"]
    if missing:
        raise InvalidInputError(
            f"{len(missing)} tour(s) have no price; set a price before importing",
            detail="; ".join(missing[:20]),
        )


class ImportService:
    def __init__(
        self,
        jobs: JobRepository,
        tours: TourRepository,
        agencies: AgencyRepository,
        *,
        preview: PreviewService | None = None,
        options: NormalizeOptions | None = None,
        default_agency_name: str = "其他",
    ):
        self._jobs = jobs
        self._tours = tours
        self._agencies = agencies
        self._preview = preview
        self._options = options or NormalizeOptions()
        self._default_agency_name = default_agency_name

    async def import_tours(self, job_id: int, drafts: Sequence[TourDraft]) -> ImportSummary:
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"scrape job {job_id} not found")
        if not drafts:
            raise InvalidInputError("no tours to import")

        records = [normalize_tour(d, job, self._options) for d in drafts]
        _check_prices(records)
        await self._tours.bulk_insert_tours(records)

        first = drafts[0]
        agency_id = records[0]["agency_id"]
        if first.whatsapp or first.phone:
            await self._agencies.update_contact(agency_id, whatsapp=first.whatsapp or None, phone=first.phone or None)

        preview_deleted = False
        if job.pdf_url and self._preview is not None:
            try:
                preview_deleted = await self._preview.delete_preview(job.pdf_url)
            except IngestDomainError as e:
                logger.warning("pdf_preview_delete_failed", job_id=job_id, pdf_url=job.pdf_url, error=str(e))

        await self._jobs.update_job(job_id, tours_imported=len(records), pdf_url=None)
        logger.info("tours_imported", job_id=job_id, imported=len(records), agency_id=agency_id)
        return ImportSummary(
            job_id=job_id,
            imported=len(records),
            agency_id=agency_id,
            preview_deleted=preview_deleted,
        )

    async def import_extracted_tours(
        self,
        drafts: Sequence[TourDraft],
        *,
        agency_name: Optional[str] = None,
        agency_id: Optional[int] = None,
    ) -> ImportSummary:
        if not drafts:
            raise InvalidInputError("no tours to import")

        if agency_id is not None:
            agency = await self._agencies.get_agency(agency_id)
            if agency is None:
                raise AgencyNotFoundError(f"agency {agency_id} not found")
        else:
            agency = await self._agencies.find_or_create((agency_name or "").strip() or self._default_agency_name)

        records = [normalize_extracted_tour(d, agency.id, self._options) for d in drafts]
        _check_prices(records)
        await self._tours.bulk_insert_tours(records)

        first = drafts[0]
        if first.whatsapp or first.phone:
            await self._agencies.update_contact(agency.id, whatsapp=first.whatsapp or None, phone=first.phone or None)

        job_ids = {d.job_id for d in drafts if d.job_id is not None}
        for job_id in job_ids:
            count = sum(1 for d in drafts if d.job_id == job_id)
            await self._jobs.update_job(job_id, tours_imported=count)

        logger.info("extracted_tours_imported", imported=len(records), agency_id=agency.id, agency_name=agency.name)
        return ImportSummary(
            job_id=next(iter(job_ids)) if len(job_ids) == 1 else None,
            imported=len(records),
            agency_id=agency.id,
            agency_name=agency.name,
        )
