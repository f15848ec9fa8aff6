"""One-off scrape of a URL without creating a job."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain.errors import InvalidURLError
from ..observability.logger import get_logger
from ..utils.validators import is_valid_http_url
from .acquisition_service import AcquisitionService
from .extraction_service import ExtractionService

logger = get_logger(__name__)


@dataclass(frozen=True)
class DirectScrapeResult:
    source_type: str
    tours: list[dict[str, Any]] = field(default_factory=list)
    source_url: Optional[str] = None
    used_ocr: bool = False
    extracted_length: int = 0

    @property
    def tours_found(self) -> int:
        return len(self.tours)


class ScrapeService:
    def __init__(self, acquisition: AcquisitionService, extraction: ExtractionService):
        self._acquisition = acquisition
        self._extraction = extraction

    async def scrape_url(self, url: str) -> DirectScrapeResult:
        if not is_valid_http_url(url):
            raise InvalidURLError(f"invalid url: {url}")
        acquired = await self._acquisition.acquire(url)
        extracted = await self._extraction.extract(acquired.content, acquired.source_type)
        logger.info("direct_scrape_completed", url=url, tours=len(extracted.tours), source_type=acquired.source_type)
        return DirectScrapeResult(
            source_type=acquired.source_type,
            tours=extracted.raw_tours(),
            source_url=acquired.source_url,
            used_ocr=acquired.used_ocr,
            extracted_length=acquired.extracted_length,
        )
