"""Framework-agnostic domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

TEXT_INPUT_REF = "text://input"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceKind(str, Enum):
    PDF = "pdf"
    LISTING_PAGE = "listing_page"
    GENERIC_PAGE = "generic_page"
    LITERAL_TEXT = "literal_text"


class FetchMethod(str, Enum):
    PLAIN_FETCH = "plain_fetch"
    HEADLESS_BROWSER = "headless_browser"


class TourCategory(str, Enum):
    JAPAN = "japan"
    ASIA = "asia"
    LONG_HAUL = "long_haul"
    CHINA_LONG_HAUL = "china_long_haul"
    GUANGDONG = "guangdong"


class TourType(str, Enum):
    PURE_PLAY = "pure_play"
    LUXURY = "luxury"
    CRUISE = "cruise"
    BUDGET = "budget"
    FAMILY = "family"


@dataclass(frozen=True)
class ScrapeJob:
    """Snapshot of a scrape job row (the fields the pipeline reads and writes)."""

    id: int
    name: str
    url: str
    status: JobStatus
    agency_id: Optional[int] = None
    category: Optional[str] = None
    price: Optional[float] = None
    tours_found: int = 0
    tours_imported: int = 0
    error_message: Optional[str] = None
    raw_data: Optional[str] = None
    source_url: Optional[str] = None
    pdf_url: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_text_input(self) -> bool:
        return self.url == TEXT_INPUT_REF


@dataclass(frozen=True)
class FetchedPage:
    url: str
    html: str
    method: FetchMethod
    status: int = 200
    content_type: str = ""


@dataclass(frozen=True)
class PdfText:
    url: str
    text: str
    used_ocr: bool
    char_count: int
    pages_ocred: int = 0


@dataclass(frozen=True)
class DetailLink:
    url: str
    title: str = ""


@dataclass(frozen=True)
class DetailPage:
    url: str
    text: str
    title: str = ""


@dataclass(frozen=True)
class CrawlResult:
    listing_url: str
    listing_text: str
    detail_pages: list[DetailPage] = field(default_factory=list)
    combined_content: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.detail_pages


@dataclass(frozen=True)
class DiscoveredPdf:
    url: str
    title: str = ""
    source: str = "listing"  # "listing" | "detail"
    tour_id: str = ""


@dataclass(frozen=True)
class AcquisitionResult:
    """Raw text ready for extraction plus provenance of how it was obtained."""

    content: str
    source_type: str
    kind: SourceKind
    source_url: Optional[str] = None
    used_ocr: bool = False
    method: Optional[FetchMethod] = None
    attempts: tuple[str, ...] = ()

    @property
    def extracted_length(self) -> int:
        return len(self.content)

    @property
    def is_pdf(self) -> bool:
        return self.kind == SourceKind.PDF or self.source_type.startswith("pdf")


@dataclass(frozen=True)
class RetryDecision:
    retryable: bool
    will_retry: bool
    retry_count: int
    max_retries: int
    backoff_ms: int = 0
    message: str = ""


@dataclass(frozen=True)
class JobRunResult:
    job_id: int
    status: JobStatus
    tours: list[dict[str, Any]] = field(default_factory=list)
    source_type: str = ""
    used_ocr: bool = False
    extracted_length: int = 0
    error_message: str = ""
    retry: Optional[RetryDecision] = None

    @property
    def tours_found(self) -> int:
        return len(self.tours)


@dataclass(frozen=True)
class ImportSummary:
    job_id: Optional[int]
    imported: int
    agency_id: Optional[int] = None
    agency_name: str = ""
    preview_deleted: bool = False
