"""Deep-link crawler: listing page -> bounded set of tour detail pages."""

from __future__ import annotations

from typing import Protocol
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from ..domain.errors import IngestDomainError
from ..domain.models import CrawlResult, DetailLink, DetailPage, FetchedPage
from ..observability.logger import get_logger
from ..processing.content_filter import ContentFilter
from ..utils.rate_limiter import HostThrottle

logger = get_logger(__name__)

# Tried in order; earlier strategies are more specific to tour detail pages.
ITINERARY_SELECTORS = 'a[href*="/Itinerary/"], a[href*="/itinerary/"]'
DETAIL_PATH_SELECTORS = 'a[href*="/tour/"], a[href*="/product/"], a[href*="/detail/"], a[href*="/package/"]'
CARD_SELECTORS = '.tour-item a, .tour-card a, .product-item a, .package-item a, [class*="tour"] a'


class PageScraper(Protocol):
    async def scrape(self, url: str) -> FetchedPage: ...


def resolve_link(href: str | None, base_url: str) -> str | None:
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
        return None
    url, _ = urldefrag(urljoin(base_url, href))
    if urlparse(url).scheme not in ("http", "https"):
        return None
    return url


def _same_origin(url: str, base_url: str) -> bool:
    a, b = urlparse(url), urlparse(base_url)
    return a.scheme == b.scheme and a.netloc.lower() == b.netloc.lower()


def _is_card_detail_link(url: str) -> bool:
    # Card containers also hold category/listing links; those are not detail pages.
    return "/category" not in url and "/list" not in url and not url.endswith("/")


def discover_detail_links(html: str, base_url: str, max_links: int) -> list[DetailLink]:
    """Candidate detail links in discovery order, deduplicated and capped."""
    soup = BeautifulSoup(html or "", "lxml")
    links: list[DetailLink] = []
    seen: set[str] = {urldefrag(base_url)[0]}

    strategies = (
        (ITINERARY_SELECTORS, None),
        (DETAIL_PATH_SELECTORS, None),
        (CARD_SELECTORS, _is_card_detail_link),
    )
    for selector, accept in strategies:
        for el in soup.select(selector):
            if len(links) >= max_links:
                return links
            url = resolve_link(el.get("href"), base_url)
            if url is None or url in seen or not _same_origin(url, base_url):
                continue
            if accept is not None and not accept(url):
                continue
            seen.add(url)
            title = el.get_text(" ", strip=True) or (el.get("title") or "").strip()
            links.append(DetailLink(url=url, title=title))
    return links


class DeepLinkCrawler:
    """Acquirer building block: visits at most `max_pages` detail pages, one at a time."""

    def __init__(
        self,
        scraper: PageScraper,
        content_filter: ContentFilter,
        *,
        max_pages: int = 5,
        throttle: HostThrottle | None = None,
    ):
        self._scraper = scraper
        self._filter = content_filter
        self._max_pages = max_pages
        self._throttle = throttle

    async def crawl(self, listing_url: str, max_pages: int | None = None) -> CrawlResult:
        limit = self._max_pages if max_pages is None else max_pages
        listing = await self._scraper.scrape(listing_url)
        listing_text = self._filter.to_text(listing.html)

        links = discover_detail_links(listing.html, listing.url or listing_url, limit)
        logger.info("deep_crawl_links_discovered", url=listing_url, links=len(links), limit=limit)

        pages: list[DetailPage] = []
        for link in links[:limit]:
            if self._throttle is not None:
                await self._throttle.wait(link.url)
            try:
                page = await self._scraper.scrape(link.url)
            except IngestDomainError as e:
                # One dead detail page should not sink the whole crawl.
                logger.warning("deep_crawl_detail_failed", url=link.url, error=str(e))
                continue
            pages.append(DetailPage(url=link.url, text=self._filter.to_text(page.html), title=link.title))

        return CrawlResult(
            listing_url=listing_url,
            listing_text=listing_text,
            detail_pages=pages,
            combined_content=combine_content(listing_text, pages),
        )


def combine_content(listing_text: str, pages: list[DetailPage]) -> str:
    parts = [f"=== LISTING PAGE ===\n{listing_text}\n\n"]
    for i, page in enumerate(pages, start=1):
        parts.append(f"=== DETAIL PAGE {i}: {page.url} ===\n{page.text}\n\n")
    return "".join(parts)
