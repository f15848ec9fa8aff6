from __future__ import annotations

import pytest

from conftest import FakeFetcher, FakeStorage, unreachable_minio_client
from tour_ingest.domain.errors import AgencyNotFoundError, InvalidInputError, JobNotFoundError, StorageError
from tour_ingest.models.tours import TourDraft
from tour_ingest.services.import_service import ImportService
from tour_ingest.services.preview_service import PreviewService

PREVIEW_URL = "https://cdn.example.com/tour-ingest/scrape-jobs/1/1700000000000.pdf"


def drafts(*prices, **extra) -> list[TourDraft]:
    return [TourDraft(title=f"T{i}", destination="日本", price=p, **extra) for i, p in enumerate(prices)]


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def importer(job_repo, tour_repo, agency_repo, storage) -> ImportService:
    preview = PreviewService(job_repo, storage, FakeFetcher())
    return ImportService(job_repo, tour_repo, agency_repo, preview=preview)


@pytest.mark.asyncio
async def test_import_tours(importer, job_repo, tour_repo, agency_repo, storage) -> None:
    job = job_repo.add(agency_id=2, pdf_url=PREVIEW_URL, price=4999)
    batch = drafts(8399, None)
    batch[0] = TourDraft(title="T0", destination="日本", price=8399, whatsapp="+85291234567")

    summary = await importer.import_tours(job.id, batch)

    assert summary.imported == 2
    assert summary.preview_deleted
    assert [r["price"] for r in tour_repo.inserted] == ["8399", "4999"]
    assert all(r["agency_id"] == 2 for r in tour_repo.inserted)
    assert storage.deleted == ["scrape-jobs/1/1700000000000.pdf"]
    assert agency_repo.contact_updates == [(2, "+85291234567", None)]
    stored = job_repo.jobs[job.id]
    assert stored.tours_imported == 2
    assert stored.pdf_url is None


@pytest.mark.asyncio
async def test_zero_price_blocks_import(importer, job_repo, tour_repo) -> None:
    job = job_repo.add()
    with pytest.raises(InvalidInputError, match="no price"):
        await importer.import_tours(job.id, drafts(8399, 0))
    assert tour_repo.inserted == []


@pytest.mark.asyncio
async def test_import_requires_job_and_drafts(importer, job_repo) -> None:
    with pytest.raises(JobNotFoundError):
        await importer.import_tours(404, drafts(100))
    job = job_repo.add()
    with pytest.raises(InvalidInputError):
        await importer.import_tours(job.id, [])


@pytest.mark.asyncio
async def test_import_extracted_creates_agency_by_name(importer, tour_repo, agency_repo, job_repo) -> None:
    job = job_repo.add()
    summary = await importer.import_extracted_tours(drafts(100, 200, jobId=job.id), agency_name="Happy Holidays")
    assert summary.agency_name == "Happy Holidays"
    assert agency_repo.agencies[summary.agency_id].name == "Happy Holidays"
    assert summary.job_id == job.id
    assert job_repo.jobs[job.id].tours_imported == 2
    assert [r["itinerary"] for r in tour_repo.inserted] == ["待補充", "待補充"]


@pytest.mark.asyncio
async def test_import_extracted_defaults_agency(importer, agency_repo) -> None:
    summary = await importer.import_extracted_tours(drafts(100), agency_name="  ")
    assert summary.agency_name == "其他"
    assert summary.agency_id == 1


@pytest.mark.asyncio
async def test_import_extracted_unknown_agency(importer) -> None:
    with pytest.raises(AgencyNotFoundError):
        await importer.import_extracted_tours(drafts(100), agency_id=77)


@pytest.mark.asyncio
async def test_unreachable_storage_raises_storage_error() -> None:
    client = unreachable_minio_client()
    with pytest.raises(StorageError):
        await client.delete("scrape-jobs/1/1700000000000.pdf")
    with pytest.raises(StorageError):
        await client.put("scrape-jobs/1/1700000000000.pdf", b"%PDF-1.4", "application/pdf")


@pytest.mark.asyncio
async def test_preview_delete_failure_still_completes_import(job_repo, tour_repo, agency_repo) -> None:
    client = unreachable_minio_client()
    preview = PreviewService(job_repo, client, FakeFetcher())
    importer = ImportService(job_repo, tour_repo, agency_repo, preview=preview)
    job = job_repo.add(agency_id=2, pdf_url=PREVIEW_URL)

    summary = await importer.import_tours(job.id, drafts(8399))

    assert summary.imported == 1
    assert not summary.preview_deleted
    assert client._client.calls == ["remove_object"]
    assert len(tour_repo.inserted) == 1
    stored = job_repo.jobs[job.id]
    assert stored.tours_imported == 1
    assert stored.pdf_url is None
