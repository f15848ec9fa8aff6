from __future__ import annotations

import pytest

from tour_ingest.domain.errors import InvalidInputError, JobConflictError, JobNotFoundError
from tour_ingest.domain.models import JobStatus
from tour_ingest.services.job_service import JobService


def service(job_repo, agency_repo, running=()) -> JobService:
    return JobService(job_repo, agency_repo, default_max_retries=5, is_running=lambda job_id: job_id in running)


@pytest.mark.asyncio
async def test_create_job_uses_default_agency(job_repo, agency_repo) -> None:
    job = await service(job_repo, agency_repo).create_job(url="https://agency.example.com/GroupTour/Japan", price=4999)
    assert job.agency_id == 1
    assert job.status == JobStatus.PENDING
    assert job.max_retries == 5
    assert job.name == "https://agency.example.com/GroupTour/Japan"


@pytest.mark.asyncio
async def test_create_job_validation(job_repo, agency_repo) -> None:
    svc = service(job_repo, agency_repo)
    with pytest.raises(InvalidInputError):
        await svc.create_job(url="not a url")
    with pytest.raises(InvalidInputError):
        await svc.create_job(url="https://agency.example.com", agency_id=42)


@pytest.mark.asyncio
async def test_update_job_info(job_repo, agency_repo) -> None:
    job = job_repo.add()
    updated = await service(job_repo, agency_repo).update_job_info(
        job.id, {"name": "Renamed", "price": 100.0, "status": "completed"}
    )
    assert updated.name == "Renamed"
    assert updated.price == 100.0
    assert updated.status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_url_cannot_change_while_processing(job_repo, agency_repo) -> None:
    job = job_repo.add(status=JobStatus.PROCESSING)
    with pytest.raises(JobConflictError):
        await service(job_repo, agency_repo).update_job_info(job.id, {"url": "https://other.example.com"})


@pytest.mark.asyncio
async def test_delete_job(job_repo, agency_repo) -> None:
    idle, busy = job_repo.add(), job_repo.add()
    svc = service(job_repo, agency_repo, running={busy.id})
    await svc.delete_job(idle.id)
    with pytest.raises(JobNotFoundError):
        await svc.get_job(idle.id)
    with pytest.raises(JobConflictError):
        await svc.delete_job(busy.id)


@pytest.mark.asyncio
async def test_bulk_delete_skips_running_jobs(job_repo, agency_repo) -> None:
    a, b, c = job_repo.add(), job_repo.add(), job_repo.add()
    deleted = await service(job_repo, agency_repo, running={b.id}).bulk_delete_jobs([a.id, b.id, c.id, 999])
    assert deleted == 2
    assert list(job_repo.jobs) == [b.id]
