"""Acquisition: turns a classified source reference into raw text for extraction.

Each strategy implements `Acquirer.acquire(ref)`, returning an
`AcquisitionResult` or None when it found nothing to work with. The chain for a
source kind is a fixed, ordered tuple looked up in `chains`; a strategy that
comes back empty, or fails while a later strategy remains, hands over to the
next one. The last strategy's error propagates unchanged.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Mapping, Optional, Protocol, Sequence

from ..domain.errors import ContentProcessingError, IngestDomainError
from ..domain.models import AcquisitionResult, SourceKind
from ..observability.logger import get_logger
from ..processing.content_filter import ContentFilter
from ..processing.pdf_text import PdfTextExtractor
from ..scraping.deep_link_crawler import DeepLinkCrawler
from ..scraping.pdf_discovery import PdfDiscovery
from ..scraping.smart_scraper import GenericPageScraper
from .source_classifier import SourceClassifier

logger = get_logger(__name__)


class Acquirer(Protocol):
    name: str

    async def acquire(self, ref: str) -> Optional[AcquisitionResult]: ...


class PdfAcquirer:
    name = "pdf"

    def __init__(self, extractor: PdfTextExtractor):
        self._extractor = extractor

    async def acquire(self, ref: str) -> Optional[AcquisitionResult]:
        pdf = await self._extractor.extract(ref)
        return AcquisitionResult(
            content=pdf.text,
            source_type="PDF (OCR)" if pdf.used_ocr else "PDF",
            kind=SourceKind.PDF,
            source_url=ref,
            used_ocr=pdf.used_ocr,
        )


class DeepLinkAcquirer:
    name = "deep_link"

    def __init__(self, crawler: DeepLinkCrawler):
        self._crawler = crawler

    async def acquire(self, ref: str) -> Optional[AcquisitionResult]:
        crawl = await self._crawler.crawl(ref)
        if crawl.is_empty:
            return None
        return AcquisitionResult(
            content=crawl.combined_content,
            source_type="deep_scrape",
            kind=SourceKind.LISTING_PAGE,
        )


class PdfDiscoveryAcquirer:
    name = "pdf_discovery"

    def __init__(self, discovery: PdfDiscovery, extractor: PdfTextExtractor):
        self._discovery = discovery
        self._extractor = extractor

    async def acquire(self, ref: str) -> Optional[AcquisitionResult]:
        pdfs = await self._discovery.discover(ref)
        if not pdfs:
            return None
        first = pdfs[0]
        logger.info("pdf_discovery_selected", url=ref, pdf_url=first.url, source=first.source, candidates=len(pdfs))
        pdf = await self._extractor.extract(first.url)
        return AcquisitionResult(
            content=pdf.text,
            source_type="PDF (discovered, OCR)" if pdf.used_ocr else "PDF (discovered)",
            kind=SourceKind.PDF,
            source_url=first.url,
            used_ocr=pdf.used_ocr,
        )


class GenericPageAcquirer:
    name = "generic_page"

    def __init__(self, scraper: GenericPageScraper, content_filter: ContentFilter):
        self._scraper = scraper
        self._filter = content_filter

    async def acquire(self, ref: str) -> Optional[AcquisitionResult]:
        page = await self._scraper.scrape(ref)
        text = self._filter.to_text(page.html)
        if not text.strip():
            raise ContentProcessingError(f"No readable content at {ref} ({page.method.value})")
        return AcquisitionResult(
            content=text,
            source_type=page.method.value,
            kind=SourceKind.GENERIC_PAGE,
            method=page.method,
        )


class LiteralTextAcquirer:
    name = "literal_text"

    async def acquire(self, ref: str) -> Optional[AcquisitionResult]:
        if not ref.strip():
            return None
        return AcquisitionResult(content=ref, source_type="text_input", kind=SourceKind.LITERAL_TEXT)


def build_chains(
    *,
    pdf: Acquirer,
    deep_link: Acquirer,
    pdf_discovery: Acquirer,
    generic: Acquirer,
    literal: Acquirer,
) -> dict[SourceKind, tuple[Acquirer, ...]]:
    return {
        SourceKind.PDF: (pdf,),
        SourceKind.LISTING_PAGE: (deep_link, pdf_discovery, generic),
        SourceKind.GENERIC_PAGE: (generic,),
        SourceKind.LITERAL_TEXT: (literal,),
    }


class AcquisitionService:
    def __init__(self, classifier: SourceClassifier, chains: Mapping[SourceKind, Sequence[Acquirer]]):
        self._classifier = classifier
        self._chains = chains

    async def acquire(self, ref: str, kind: SourceKind | None = None) -> AcquisitionResult:
        kind = kind or await self._classifier.classify_remote(ref)
        chain = self._chains[kind]
        attempts: list[str] = []
        logger.info("acquisition_started", ref=ref[:200], kind=kind.value, chain=[a.name for a in chain])

        for index, acquirer in enumerate(chain):
            is_last = index == len(chain) - 1
            try:
                result = await acquirer.acquire(ref)
            except IngestDomainError as e:
                attempts.append(f"{acquirer.name}:error")
                if is_last:
                    raise
                logger.warning("acquirer_failed_falling_through", acquirer=acquirer.name, ref=ref, error=str(e))
                continue
            if result is None:
                attempts.append(f"{acquirer.name}:empty")
                logger.info("acquirer_empty_falling_through", acquirer=acquirer.name, ref=ref)
                continue
            attempts.append(f"{acquirer.name}:ok")
            logger.info(
                "acquisition_completed",
                acquirer=acquirer.name,
                source_type=result.source_type,
                chars=result.extracted_length,
                used_ocr=result.used_ocr,
            )
            return replace(result, attempts=tuple(attempts))

        raise ContentProcessingError(f"No content acquired from {ref}", detail=", ".join(attempts))
