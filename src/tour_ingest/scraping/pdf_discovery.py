"""PDF discovery: find brochure PDFs linked from a listing page or its detail pages."""

from __future__ import annotations

import re
from typing import Protocol
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from ..domain.errors import IngestDomainError
from ..domain.models import DiscoveredPdf, FetchedPage
from ..observability.logger import get_logger
from ..utils.rate_limiter import HostThrottle
from .deep_link_crawler import resolve_link

logger = get_logger(__name__)

PDF_ANCHOR_TEXT = ("PDF", "下載", "行程表", "詳細行程")
TOUR_LINK_SELECTORS = 'a[href*="/Itinerary/"], a[href*="/tour/"], a[href*="/product/"], a[href*="/detail/"]'
_ONCLICK_PDF = re.compile(r"""['"]([^'"]*\.pdf[^'"]*)['"]""", re.IGNORECASE)
_INLINE_PDF = re.compile(r"""https?://[^\s'"<>()]+?\.pdf(?:\?[^\s'"<>()]*)?""", re.IGNORECASE)


class HtmlFetcher(Protocol):
    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage: ...


def _looks_like_pdf_href(href: str) -> bool:
    lowered = href.lower()
    return lowered.endswith(".pdf") or ".pdf?" in lowered


def search_pdf_links(html: str, base_url: str, *, source: str = "detail") -> list[DiscoveredPdf]:
    """PDF URLs referenced by one page, in document order per strategy, deduplicated."""
    soup = BeautifulSoup(html or "", "lxml")
    found: list[DiscoveredPdf] = []
    seen: set[str] = set()

    def add(raw: str | None, text: str) -> None:
        url = resolve_link(raw, base_url)
        if url is None or url in seen:
            return
        seen.add(url)
        found.append(DiscoveredPdf(url=url, title=text, source=source))

    # 1. direct anchors
    for a in soup.find_all("a", href=True):
        if _looks_like_pdf_href(a["href"]):
            add(a["href"], a.get_text(" ", strip=True))

    # 2. download-ish anchor text pointing at something pdf-like
    for a in soup.find_all("a", href=True):
        text = a.get_text(" ", strip=True)
        if any(marker in text for marker in PDF_ANCHOR_TEXT) and "pdf" in a["href"].lower():
            add(a["href"], text)

    # 3. onclick="window.open('...pdf')"
    for el in soup.find_all(onclick=True):
        match = _ONCLICK_PDF.search(el["onclick"])
        if match:
            add(match.group(1), el.get_text(" ", strip=True))

    # 4. data attributes
    for el in soup.select("[data-pdf], [data-file], [data-url]"):
        value = el.get("data-pdf") or el.get("data-file") or el.get("data-url") or ""
        if ".pdf" in value.lower():
            add(value, el.get_text(" ", strip=True))

    # 5. absolute PDF URLs in inline text and scripts
    for match in _INLINE_PDF.finditer(html or ""):
        add(match.group(0), "")

    return found


def extract_tour_links(html: str, base_url: str) -> list[str]:
    soup = BeautifulSoup(html or "", "lxml")
    links: list[str] = []
    seen: set[str] = set()
    for a in soup.select(TOUR_LINK_SELECTORS):
        url = resolve_link(a.get("href"), base_url)
        if url is not None and url not in seen:
            seen.add(url)
            links.append(url)
    return links


def _tour_id(url: str) -> str:
    return urlparse(url).path.rstrip("/").split("/")[-1]


class PdfDiscovery:
    """Acquirer building block: listing page first, then a bounded number of detail pages."""

    def __init__(
        self,
        fetcher: HtmlFetcher,
        *,
        max_pdfs: int = 5,
        max_detail_pages: int = 5,
        throttle: HostThrottle | None = None,
    ):
        self._fetcher = fetcher
        self._max_pdfs = max_pdfs
        self._max_detail_pages = max_detail_pages
        self._throttle = throttle

    async def discover(self, listing_url: str, max_pdfs: int | None = None) -> list[DiscoveredPdf]:
        limit = self._max_pdfs if max_pdfs is None else max_pdfs
        listing = await self._fetcher.fetch_html(listing_url)
        base = listing.url or listing_url

        pdfs = search_pdf_links(listing.html, base, source="listing")
        seen = {p.url for p in pdfs}

        for tour_url in extract_tour_links(listing.html, base)[: self._max_detail_pages]:
            if len(pdfs) >= limit:
                break
            if self._throttle is not None:
                await self._throttle.wait(tour_url)
            try:
                detail = await self._fetcher.fetch_html(tour_url)
            except IngestDomainError as e:
                logger.warning("pdf_discovery_detail_failed", url=tour_url, error=str(e))
                continue
            for pdf in search_pdf_links(detail.html, detail.url or tour_url, source="detail"):
                if pdf.url in seen:
                    continue
                seen.add(pdf.url)
                pdfs.append(DiscoveredPdf(url=pdf.url, title=pdf.title, source="detail", tour_id=_tour_id(tour_url)))

        result = pdfs[:limit]
        logger.info("pdf_discovery_completed", url=listing_url, found=len(result))
        return result
