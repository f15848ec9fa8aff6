"""Repository pattern for database access (jobs, tours, agencies)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, or_, select, update

from ..domain.errors import DatabaseError
from ..domain.models import JobStatus, ScrapeJob
from ..models.database import AgencyRecord, ScrapeJobRecord, TourRecord
from ..observability.logger import get_logger
from ..utils.time import utcnow

logger = get_logger(__name__)

_JOB_FIELDS = {
    "name",
    "url",
    "price",
    "agency_id",
    "category",
    "status",
    "tours_found",
    "tours_imported",
    "error_message",
    "raw_data",
    "source_url",
    "pdf_url",
    "retry_count",
    "max_retries",
    "next_retry_at",
    "completed_at",
}


def _to_domain(rec: ScrapeJobRecord) -> ScrapeJob:
    return ScrapeJob(
        id=rec.id,
        name=rec.name,
        url=rec.url,
        status=JobStatus(rec.status),
        agency_id=rec.agency_id,
        category=rec.category,
        price=float(rec.price) if rec.price is not None else None,
        tours_found=rec.tours_found,
        tours_imported=rec.tours_imported,
        error_message=rec.error_message,
        raw_data=rec.raw_data,
        source_url=rec.source_url,
        pdf_url=rec.pdf_url,
        retry_count=rec.retry_count,
        max_retries=rec.max_retries,
        next_retry_at=rec.next_retry_at,
        created_at=rec.created_at,
        completed_at=rec.completed_at,
    )


class JobRepository:
    """Repository for scrape job operations."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create_job(
        self,
        *,
        name: str,
        url: str,
        agency_id: int | None = None,
        price: float | None = None,
        category: str | None = None,
        max_retries: int = 3,
        status: JobStatus = JobStatus.PENDING,
    ) -> int:
        try:
            async with self._session_factory() as session:
                rec = ScrapeJobRecord(
                    name=name,
                    url=url,
                    agency_id=agency_id,
                    price=price,
                    category=category,
                    status=status.value,
                    max_retries=max_retries,
                    created_at=utcnow(),
                )
                session.add(rec)
                await session.commit()
                return rec.id
        except Exception as e:
            raise DatabaseError("failed to create scrape job", detail=str(e)) from e

    async def get_job(self, job_id: int) -> Optional[ScrapeJob]:
        async with self._session_factory() as session:
            result = await session.execute(select(ScrapeJobRecord).where(ScrapeJobRecord.id == job_id))
            rec = result.scalar_one_or_none()
            return _to_domain(rec) if rec is not None else None

    async def update_job(self, job_id: int, **fields: Any) -> None:
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"unknown scrape job fields: {sorted(unknown)}")
        values = {k: (v.value if isinstance(v, JobStatus) else v) for k, v in fields.items()}
        async with self._session_factory() as session:
            await session.execute(update(ScrapeJobRecord).where(ScrapeJobRecord.id == job_id).values(**values))
            await session.commit()

    async def list_jobs(self, limit: int = 50) -> list[ScrapeJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScrapeJobRecord).order_by(ScrapeJobRecord.created_at.desc()).limit(limit)
            )
            return [_to_domain(r) for r in result.scalars().all()]

    async def list_jobs_by_status(self, status: JobStatus) -> list[ScrapeJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScrapeJobRecord)
                .where(ScrapeJobRecord.status == status.value)
                .order_by(ScrapeJobRecord.created_at.asc())
            )
            return [_to_domain(r) for r in result.scalars().all()]

    async def list_due_pending(self, now: datetime, limit: int = 10) -> list[ScrapeJob]:
        """Pending jobs whose advisory backoff has elapsed, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScrapeJobRecord)
                .where(ScrapeJobRecord.status == JobStatus.PENDING.value)
                .where(or_(ScrapeJobRecord.next_retry_at.is_(None), ScrapeJobRecord.next_retry_at <= now))
                .order_by(ScrapeJobRecord.created_at.asc())
                .limit(limit)
            )
            return [_to_domain(r) for r in result.scalars().all()]

    async def delete_jobs(self, job_ids: Iterable[int]) -> int:
        ids = list(job_ids)
        if not ids:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(delete(ScrapeJobRecord).where(ScrapeJobRecord.id.in_(ids)))
            await session.commit()
            return int(result.rowcount or 0)


class TourRepository:
    """Repository for persisted tour records."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def bulk_insert_tours(self, records: list[dict[str, Any]]) -> None:
        if not records:
            return
        try:
            async with self._session_factory() as session:
                session.add_all([TourRecord(**r) for r in records])
                await session.commit()
        except Exception as e:
            raise DatabaseError("failed to insert tours", detail=str(e)) from e

    async def list_active_with_agency(self) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    TourRecord.id,
                    TourRecord.title,
                    TourRecord.destination,
                    TourRecord.agency_id,
                    AgencyRecord.name,
                    TourRecord.created_at,
                )
                .outerjoin(AgencyRecord, TourRecord.agency_id == AgencyRecord.id)
                .where(TourRecord.status == "active")
            )
            return [
                {
                    "id": row[0],
                    "title": row[1],
                    "destination": row[2],
                    "agency_id": row[3],
                    "agency_name": row[4],
                    "created_at": row[5],
                }
                for row in result.all()
            ]

    async def delete_tours(self, tour_ids: Iterable[int]) -> int:
        ids = list(tour_ids)
        if not ids:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(delete(TourRecord).where(TourRecord.id.in_(ids)))
            await session.commit()
            return int(result.rowcount or 0)


class AgencyRepository:
    """Agency lookup used for default-agency fallback and contact updates."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get_agency(self, agency_id: int) -> Optional[AgencyRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(AgencyRecord).where(AgencyRecord.id == agency_id))
            return result.scalar_one_or_none()

    async def find_by_name(self, name: str) -> Optional[AgencyRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(AgencyRecord).where(AgencyRecord.name == name).limit(1))
            return result.scalar_one_or_none()

    async def find_or_create(self, name: str) -> AgencyRecord:
        existing = await self.find_by_name(name)
        if existing is not None:
            return existing
        async with self._session_factory() as session:
            rec = AgencyRecord(name=name, created_at=utcnow())
            session.add(rec)
            await session.commit()
            logger.info("agency_created", agency_id=rec.id, agency_name=name)
            return rec

    async def update_contact(self, agency_id: int, *, whatsapp: str | None, phone: str | None) -> None:
        values: dict[str, Any] = {}
        if whatsapp:
            values["whatsapp"] = whatsapp
        if phone:
            values["phone"] = phone
        if not values:
            return
        async with self._session_factory() as session:
            await session.execute(update(AgencyRecord).where(AgencyRecord.id == agency_id).values(**values))
            await session.commit()
