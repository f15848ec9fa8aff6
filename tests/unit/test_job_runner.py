from __future__ import annotations

import asyncio
import json

import pytest

from conftest import FakeFetcher, FakeLLM, FakeStorage, completion, unreachable_minio_client
from tour_ingest.domain.errors import (
    ExtractionError,
    JobConflictError,
    JobNotFoundError,
    NetworkTimeoutError,
    UpstreamHTTPError,
)
from tour_ingest.domain.models import TEXT_INPUT_REF, AcquisitionResult, JobStatus, SourceKind
from tour_ingest.scheduler import run_next_due_job
from tour_ingest.services.extraction_service import ExtractionService
from tour_ingest.services.job_runner import JobRunner, backoff_ms, decide_retry, is_transient
from tour_ingest.services.preview_service import PreviewService
from tour_ingest.utils.time import utcnow

TOURS_JSON = json.dumps({"tours": [{"title": "北海道5天", "destination": "日本", "days": 5, "nights": 4, "price": 8399}]})
PDF_URL = "https://agency.example.com/files/japan.pdf"


class StubAcquisition:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.refs: list[str] = []
        self.gate: asyncio.Event | None = None

    async def acquire(self, ref: str, kind=None):
        self.refs.append(ref)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def page_text(content: str = "Hokkaido 5 days HK$8,399") -> AcquisitionResult:
    return AcquisitionResult(content=content, source_type="plain_fetch", kind=SourceKind.GENERIC_PAGE)


def pdf_text() -> AcquisitionResult:
    return AcquisitionResult(content="brochure", source_type="PDF", kind=SourceKind.PDF, source_url=PDF_URL)


def runner(job_repo, agency_repo, acquisition, llm, *, preview=None) -> JobRunner:
    extraction = ExtractionService(llm, model="m", max_tokens=1000, timeout_seconds=10)
    return JobRunner(job_repo, agency_repo, acquisition, extraction, preview=preview, backoff_base_ms=1000, backoff_cap_ms=30000)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Timeout while fetching https://x", True),
        ("Network error (ECONNREFUSED) while fetching", True),
        ("connect ETIMEDOUT", True),
        ("Rate limit reached for model", True),
        ("429 Too Many Requests", True),
        ("HTTP 503 while fetching", True),
        ("HTTP 502 while fetching", True),
        ("HTTP 504 while fetching", True),
        ("temporary LLM failure: empty choices", True),
        ("HTTP 404 while fetching", False),
        ("Failed to parse LLM response as JSON", False),
        ("PDF is encrypted (password required)", False),
        ("HTTP 404 while fetching https://agency.example.com/network-deals/japan", False),
        ("No readable content at https://x.com/p/15031 (plain_fetch)", False),
        ("HTTP 410 while fetching www.timeout-tours.example.com/503", False),
        ("HTTP 503 while fetching https://agency.example.com/network", True),
    ],
)
def test_is_transient(message: str, expected: bool) -> None:
    assert is_transient(message) is expected


def test_backoff_doubles_and_caps() -> None:
    assert [backoff_ms(n) for n in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]
    assert backoff_ms(10) == 30000
    assert backoff_ms(3, base_ms=500, cap_ms=1500) == 1500


def test_decide_retry_messages() -> None:
    d = decide_retry("Timeout while fetching", 0, 3)
    assert d.will_retry and d.retry_count == 1 and d.backoff_ms == 1000
    assert d.message == "重試 1/3: Timeout while fetching"

    final = decide_retry("Timeout while fetching", 3, 3)
    assert not final.will_retry and final.retryable
    assert final.message == "最終失敗（3 次重試）: Timeout while fetching"

    permanent = decide_retry("HTTP 404 while fetching", 0, 3)
    assert not permanent.retryable and not permanent.will_retry


@pytest.mark.asyncio
async def test_success_stores_tours(job_repo, agency_repo) -> None:
    job = job_repo.add(url="https://agency.example.com/about")
    result = await runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM(TOURS_JSON)).execute_job(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.tours_found == 1
    stored = job_repo.jobs[job.id]
    assert stored.status == JobStatus.COMPLETED
    assert stored.tours_found == 1
    assert json.loads(stored.raw_data)[0]["title"] == "北海道5天"
    assert stored.completed_at is not None
    assert job_repo.status_log == [(job.id, JobStatus.PROCESSING), (job.id, JobStatus.COMPLETED)]


@pytest.mark.asyncio
async def test_transient_failure_exhausts_retries_then_fails(job_repo, agency_repo) -> None:
    job = job_repo.add(max_retries=3)
    acquisition = StubAcquisition(NetworkTimeoutError("Timeout while fetching https://agency.example.com/tours"))
    r = runner(job_repo, agency_repo, acquisition, FakeLLM(TOURS_JSON))

    statuses = []
    for _ in range(4):
        result = await r.execute_job(job.id)
        statuses.append((result.status, job_repo.jobs[job.id].retry_count))

    assert statuses == [
        (JobStatus.PENDING, 1),
        (JobStatus.PENDING, 2),
        (JobStatus.PENDING, 3),
        (JobStatus.FAILED, 3),
    ]
    final = job_repo.jobs[job.id]
    lines = final.error_message.split("\n")
    assert lines[0].startswith("重試 1/3: Timeout")
    assert lines[2].startswith("重試 3/3: ")
    assert lines[3].startswith("最終失敗（3 次重試）: ")
    assert final.completed_at is not None


@pytest.mark.asyncio
async def test_upstream_503_retries_and_reports_retry_count(job_repo, agency_repo) -> None:
    job = job_repo.add(max_retries=3)
    error = UpstreamHTTPError(503, "https://agency.example.com/tours")
    r = runner(job_repo, agency_repo, StubAcquisition(error), FakeLLM(TOURS_JSON))
    for _ in range(4):
        await r.execute_job(job.id)
    final = job_repo.jobs[job.id]
    assert final.status == JobStatus.FAILED
    assert "最終失敗（3 次重試）: HTTP 503" in final.error_message


@pytest.mark.asyncio
async def test_retry_schedules_backoff(job_repo, agency_repo) -> None:
    job = job_repo.add()
    before = utcnow()
    r = runner(job_repo, agency_repo, StubAcquisition(NetworkTimeoutError("Timeout")), FakeLLM(TOURS_JSON))
    result = await r.execute_job(job.id)
    assert result.retry.backoff_ms == 1000
    assert job_repo.jobs[job.id].next_retry_at >= before


@pytest.mark.asyncio
async def test_permanent_failure_is_terminal_immediately(job_repo, agency_repo) -> None:
    job = job_repo.add()
    acquisition = StubAcquisition(UpstreamHTTPError(404, "https://agency.example.com/gone"))
    result = await runner(job_repo, agency_repo, acquisition, FakeLLM(TOURS_JSON)).execute_job(job.id)
    assert result.status == JobStatus.FAILED
    assert job_repo.jobs[job.id].retry_count == 0
    assert job_repo.jobs[job.id].error_message == "最終失敗（0 次重試）: HTTP 404 while fetching https://agency.example.com/gone"


@pytest.mark.asyncio
async def test_unparseable_llm_output_is_not_retried(job_repo, agency_repo) -> None:
    job = job_repo.add()
    r = runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM("no json here"))
    result = await r.execute_job(job.id)
    assert result.status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_truncated_llm_output_still_completes(job_repo, agency_repo) -> None:
    job = job_repo.add()
    truncated = '{"tours": [{"title": "A", "destination": "B", "days": 2, "nights": 1}, {"title": "C", "desti'
    llm = FakeLLM(completion(truncated, finish_reason="length"))
    result = await runner(job_repo, agency_repo, StubAcquisition(page_text()), llm).execute_job(job.id)
    assert result.status == JobStatus.COMPLETED
    assert result.tours_found >= 1


@pytest.mark.asyncio
async def test_processing_job_is_refused(job_repo, agency_repo) -> None:
    job = job_repo.add(status=JobStatus.PROCESSING)
    with pytest.raises(JobConflictError):
        await runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM(TOURS_JSON)).execute_job(job.id)


@pytest.mark.asyncio
async def test_concurrent_run_of_same_job_is_refused(job_repo, agency_repo) -> None:
    job = job_repo.add()
    acquisition = StubAcquisition(page_text())
    acquisition.gate = asyncio.Event()
    r = runner(job_repo, agency_repo, acquisition, FakeLLM(TOURS_JSON))

    first = asyncio.create_task(r.execute_job(job.id))
    await asyncio.sleep(0)
    assert r.is_running(job.id)
    with pytest.raises(JobConflictError):
        await r.execute_job(job.id)
    acquisition.gate.set()
    assert (await first).status == JobStatus.COMPLETED
    assert not r.is_running(job.id)


@pytest.mark.asyncio
async def test_unknown_job(job_repo, agency_repo) -> None:
    with pytest.raises(JobNotFoundError):
        await runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM(TOURS_JSON)).execute_job(99)


@pytest.mark.asyncio
async def test_text_job_returns_stored_tours(job_repo, agency_repo) -> None:
    raw = json.dumps({"agencyName": "A", "tours": [{"title": "T", "destination": "D"}]})
    job = job_repo.add(url=TEXT_INPUT_REF, status=JobStatus.COMPLETED, raw_data=raw)
    acquisition = StubAcquisition(page_text())
    result = await runner(job_repo, agency_repo, acquisition, FakeLLM(TOURS_JSON)).execute_job(job.id)
    assert result.tours == [{"title": "T", "destination": "D"}]
    assert acquisition.refs == []


@pytest.mark.asyncio
async def test_pdf_result_is_rehosted(job_repo, agency_repo) -> None:
    job = job_repo.add(url=PDF_URL)
    storage = FakeStorage()
    preview = PreviewService(job_repo, storage, FakeFetcher({PDF_URL: b"%PDF-1.4"}))
    r = runner(job_repo, agency_repo, StubAcquisition(pdf_text()), FakeLLM(TOURS_JSON), preview=preview)

    result = await r.execute_job(job.id)

    assert result.status == JobStatus.COMPLETED
    stored = job_repo.jobs[job.id]
    assert stored.source_url == PDF_URL
    assert stored.pdf_url.startswith(f"https://cdn.example.com/tour-ingest/scrape-jobs/{job.id}/")
    assert list(storage.objects.values()) == [b"%PDF-1.4"]


@pytest.mark.asyncio
async def test_rehost_failure_keeps_completed_result(job_repo, agency_repo) -> None:
    job = job_repo.add(url=PDF_URL)
    preview = PreviewService(job_repo, FakeStorage(), FakeFetcher({}))
    r = runner(job_repo, agency_repo, StubAcquisition(pdf_text()), FakeLLM(TOURS_JSON), preview=preview)
    result = await r.execute_job(job.id)
    assert result.status == JobStatus.COMPLETED
    assert job_repo.jobs[job.id].pdf_url is None


@pytest.mark.asyncio
async def test_batch_retry_failed(job_repo, agency_repo) -> None:
    retryable = job_repo.add(status=JobStatus.FAILED, retry_count=1, error_message="最終失敗（1 次重試）: x")
    exhausted = job_repo.add(status=JobStatus.FAILED, retry_count=3, max_retries=3)
    text_job = job_repo.add(status=JobStatus.FAILED, url=TEXT_INPUT_REF)
    job_repo.add(status=JobStatus.COMPLETED)

    summary = await runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM(TOURS_JSON)).batch_retry_failed()

    assert (summary.total_failed, summary.retried_count, summary.skipped_count) == (3, 1, 2)
    job = job_repo.jobs[retryable.id]
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 2
    assert job.error_message.endswith("\n批次重試 2/3")
    assert job_repo.jobs[exhausted.id].status == JobStatus.FAILED
    assert job_repo.jobs[text_job.id].status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_extract_from_text_creates_completed_job(job_repo, agency_repo) -> None:
    payload = json.dumps({"agencyName": "", "tours": [{"title": "T1", "destination": "D", "price": 100}]})
    r = runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM(payload))

    result = await r.extract_from_text("Happy Holidays\n北海道 5天 HK$100")

    job = job_repo.jobs[result.job_id]
    assert job.url == TEXT_INPUT_REF
    assert job.status == JobStatus.COMPLETED
    assert json.loads(job.raw_data)["agencyName"] == "Happy Holidays"
    assert result.agency_name == "Happy Holidays"
    assert agency_repo.agencies[result.agency_id].name == "Happy Holidays"
    assert [t["title"] for t in result.tours] == ["T1"]


@pytest.mark.asyncio
async def test_extract_from_text_failure_marks_job_failed(job_repo, agency_repo) -> None:
    r = runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM("not json"))
    with pytest.raises(ExtractionError):
        await r.extract_from_text("Sunshine Travel\nsome tours")
    (job,) = job_repo.jobs.values()
    assert job.status == JobStatus.FAILED
    assert job.agency_id == 2


@pytest.mark.asyncio
async def test_repeated_etimedout_ends_failed_and_leaves_queue(job_repo, agency_repo) -> None:
    job = job_repo.add(max_retries=3)
    r = runner(job_repo, agency_repo, StubAcquisition(NetworkTimeoutError("connect ETIMEDOUT")), FakeLLM(TOURS_JSON))
    for _ in range(4):
        await r.execute_job(job.id)

    final = job_repo.jobs[job.id]
    assert final.status == JobStatus.FAILED
    assert final.retry_count == 3
    assert "最終失敗（3 次重試）" in final.error_message
    assert not await run_next_due_job(r, job_repo)


@pytest.mark.asyncio
async def test_url_text_does_not_make_permanent_error_retryable(job_repo, agency_repo) -> None:
    url = "https://agency.example.com/network-deals/503"
    job = job_repo.add(url=url, max_retries=3)
    r = runner(job_repo, agency_repo, StubAcquisition(UpstreamHTTPError(404, url)), FakeLLM(TOURS_JSON))

    result = await r.execute_job(job.id)

    assert result.status == JobStatus.FAILED
    assert not result.retry.retryable
    stored = job_repo.jobs[job.id]
    assert stored.retry_count == 0
    assert stored.error_message.startswith("最終失敗（0 次重試）: HTTP 404")


@pytest.mark.asyncio
async def test_unreachable_storage_keeps_completed_pdf_result(job_repo, agency_repo) -> None:
    job = job_repo.add(url=PDF_URL)
    preview = PreviewService(job_repo, unreachable_minio_client(), FakeFetcher({PDF_URL: b"%PDF-1.4"}))
    r = runner(job_repo, agency_repo, StubAcquisition(pdf_text()), FakeLLM(TOURS_JSON), preview=preview)

    result = await r.execute_job(job.id)

    assert result.status == JobStatus.COMPLETED
    stored = job_repo.jobs[job.id]
    assert stored.status == JobStatus.COMPLETED
    assert stored.pdf_url is None


@pytest.mark.asyncio
async def test_jobs_left_processing_are_requeued_on_startup(job_repo, agency_repo) -> None:
    stuck = job_repo.add(status=JobStatus.PROCESSING, retry_count=1, max_retries=3)
    exhausted = job_repo.add(status=JobStatus.PROCESSING, retry_count=3, max_retries=3)
    text_job = job_repo.add(status=JobStatus.PROCESSING, url=TEXT_INPUT_REF)
    done = job_repo.add(status=JobStatus.COMPLETED)
    r = runner(job_repo, agency_repo, StubAcquisition(page_text()), FakeLLM(TOURS_JSON))

    assert await r.recover_interrupted_jobs() == 1

    requeued = job_repo.jobs[stuck.id]
    assert requeued.status == JobStatus.PENDING
    assert requeued.retry_count == 2
    assert requeued.error_message.startswith("重試 2/3: processing interrupted")
    assert job_repo.jobs[exhausted.id].status == JobStatus.FAILED
    assert job_repo.jobs[exhausted.id].error_message.startswith("最終失敗（3 次重試）")
    assert job_repo.jobs[text_job.id].status == JobStatus.FAILED
    assert job_repo.jobs[done.id].status == JobStatus.COMPLETED

    assert await run_next_due_job(r, job_repo)
    assert job_repo.jobs[stuck.id].status == JobStatus.COMPLETED
