from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Iterable, Optional

import pytest
from urllib3.exceptions import MaxRetryError

from tour_ingest.domain.errors import NetworkTimeoutError
from tour_ingest.domain.models import FetchedPage, FetchMethod, JobStatus, ScrapeJob
from tour_ingest.llm.runtime import ChatCompletion, LLMRequest, LLMRuntime, TextContent
from tour_ingest.storage.minio_client import MinIOClient, UploadResult


def completion(text: str, finish_reason: str = "stop") -> ChatCompletion:
    return ChatCompletion(content=TextContent(text), finish_reason=finish_reason)


def html_page(body: str, *, pad: int = 1200) -> str:
    filler = "<p>" + ("lorem ipsum " * (pad // 12)) + "</p>"
    return f"<html><head><title>t</title></head><body>{body}{filler}</body></html>"


class FakeJobRepository:
    def __init__(self) -> None:
        self.jobs: dict[int, ScrapeJob] = {}
        self.status_log: list[tuple[int, JobStatus]] = []
        self._next_id = 1
        self._clock = datetime(2024, 1, 1)

    def add(self, **fields: Any) -> ScrapeJob:
        job_id = self._next_id
        self._next_id += 1
        self._clock += timedelta(seconds=1)
        defaults: dict[str, Any] = dict(
            id=job_id,
            name=fields.get("url", "job"),
            url="https://agency.example.com/tours",
            status=JobStatus.PENDING,
            agency_id=1,
            created_at=self._clock,
        )
        defaults.update(fields)
        job = ScrapeJob(**defaults)
        self.jobs[job_id] = job
        return job

    async def create_job(self, *, name, url, agency_id=None, price=None, category=None, max_retries=3, status=JobStatus.PENDING) -> int:
        job = self.add(
            name=name, url=url, agency_id=agency_id, price=price, category=category, max_retries=max_retries, status=status
        )
        return job.id

    async def get_job(self, job_id: int) -> Optional[ScrapeJob]:
        return self.jobs.get(job_id)

    async def update_job(self, job_id: int, **fields: Any) -> None:
        if "status" in fields:
            fields["status"] = JobStatus(fields["status"])
            self.status_log.append((job_id, fields["status"]))
        self.jobs[job_id] = dataclasses.replace(self.jobs[job_id], **fields)

    async def list_jobs(self, limit: int = 50) -> list[ScrapeJob]:
        return sorted(self.jobs.values(), key=lambda j: j.created_at, reverse=True)[:limit]

    async def list_jobs_by_status(self, status: JobStatus) -> list[ScrapeJob]:
        return [j for j in self.jobs.values() if j.status == status]

    async def list_due_pending(self, now: datetime, limit: int = 10) -> list[ScrapeJob]:
        due = [
            j
            for j in self.jobs.values()
            if j.status == JobStatus.PENDING and (j.next_retry_at is None or j.next_retry_at <= now)
        ]
        return sorted(due, key=lambda j: j.created_at)[:limit]

    async def delete_jobs(self, job_ids: Iterable[int]) -> int:
        deleted = 0
        for i in list(job_ids):
            if self.jobs.pop(i, None) is not None:
                deleted += 1
        return deleted


class FakeAgencyRepository:
    def __init__(self, *names: str) -> None:
        self.agencies: dict[int, SimpleNamespace] = {}
        self.contact_updates: list[tuple[int, Optional[str], Optional[str]]] = []
        for name in names:
            self._create(name)

    def _create(self, name: str) -> SimpleNamespace:
        agency = SimpleNamespace(id=len(self.agencies) + 1, name=name, whatsapp=None, phone=None)
        self.agencies[agency.id] = agency
        return agency

    async def get_agency(self, agency_id: int):
        return self.agencies.get(agency_id)

    async def find_by_name(self, name: str):
        return next((a for a in self.agencies.values() if a.name == name), None)

    async def find_or_create(self, name: str):
        return await self.find_by_name(name) or self._create(name)

    async def update_contact(self, agency_id: int, *, whatsapp, phone) -> None:
        self.contact_updates.append((agency_id, whatsapp, phone))
        agency = self.agencies[agency_id]
        if whatsapp:
            agency.whatsapp = whatsapp
        if phone:
            agency.phone = phone


class FakeTourRepository:
    def __init__(self, rows: Optional[list[dict[str, Any]]] = None) -> None:
        self.inserted: list[dict[str, Any]] = []
        self.rows = rows or []
        self.deleted: list[int] = []

    async def bulk_insert_tours(self, records: list[dict[str, Any]]) -> None:
        self.inserted.extend(records)

    async def list_active_with_agency(self) -> list[dict[str, Any]]:
        return list(self.rows)

    async def delete_tours(self, tour_ids: Iterable[int]) -> int:
        ids = list(tour_ids)
        self.deleted.extend(ids)
        return len(ids)


class FakeFetcher:
    """Plain fetcher keyed by URL. Values may be HTML strings, bytes or exceptions."""

    def __init__(self, pages: Optional[dict[str, Any]] = None, *, content_types: Optional[dict[str, str]] = None):
        self.pages = pages or {}
        self.content_types = content_types or {}
        self.calls: list[str] = []

    def _lookup(self, url: str) -> Any:
        self.calls.append(url)
        value = self.pages.get(url)
        if value is None:
            raise NetworkTimeoutError(f"Network error while fetching {url}")
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage:
        return FetchedPage(url=url, html=self._lookup(url), method=FetchMethod.PLAIN_FETCH)

    async def fetch_bytes(self, url: str, timeout_ms: int | None = None) -> bytes:
        return self._lookup(url)

    async def sniff_content_type(self, url: str, timeout_ms: int) -> Optional[str]:
        return self.content_types.get(url)


class FakeBrowser(FakeFetcher):
    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage:
        return FetchedPage(url=url, html=self._lookup(url), method=FetchMethod.HEADLESS_BROWSER)


class FakeLLM(LLMRuntime):
    """Replays scripted responses: ChatCompletion, plain text or an exception to raise."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: list[LLMRequest] = []

    async def chat(self, req: LLMRequest) -> ChatCompletion:
        self.requests.append(req)
        if not self.responses:
            raise AssertionError("unexpected LLM call")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return completion(response)
        return response


class FakeStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []

    async def put(self, object_name: str, data: bytes, content_type: str) -> UploadResult:
        self.objects[object_name] = data
        return UploadResult(
            object_name=object_name,
            size_bytes=len(data),
            content_type=content_type,
            url=f"https://cdn.example.com/tour-ingest/{object_name}",
        )

    async def delete(self, object_name: str) -> None:
        self.deleted.append(object_name)
        self.objects.pop(object_name, None)


@pytest.fixture
def job_repo() -> FakeJobRepository:
    return FakeJobRepository()


@pytest.fixture
def agency_repo() -> FakeAgencyRepository:
    return FakeAgencyRepository("其他", "Sunshine Travel")


@pytest.fixture
def tour_repo() -> FakeTourRepository:
    return FakeTourRepository()


class UnreachableMinio:
    """Stands in for the minio SDK client when the endpoint cannot be reached."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def _refuse(self, op: str):
        self.calls.append(op)
        raise MaxRetryError(None, "http://minio:9000/tour-ingest", reason="connection refused")

    def put_object(self, **kwargs) -> None:
        self._refuse("put_object")

    def remove_object(self, bucket: str, object_name: str) -> None:
        self._refuse("remove_object")


def unreachable_minio_client() -> MinIOClient:
    client = MinIOClient("minio:9000", "key", "secret", False, "tour-ingest")
    client._client = UnreachableMinio()
    return client
