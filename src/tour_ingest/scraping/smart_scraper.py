"""Generic page scraper: plain fetch first, headless browser when that is not enough."""

from __future__ import annotations

from typing import Iterable, Protocol

from ..domain.errors import IngestDomainError
from ..domain.models import FetchedPage
from ..observability.logger import get_logger
from ..utils.quality import assess_quality

logger = get_logger(__name__)


class PageFetcher(Protocol):
    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage: ...


class GenericPageScraper:
    """Two-tier fetch.

    The plain fetch is kept when it returns a body of at least `min_html_length`
    characters that carries no bot-challenge marker. Otherwise (including any
    fetch error) the page is rendered in the headless browser; errors from the
    browser propagate unchanged.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        browser: PageFetcher,
        *,
        min_html_length: int = 1000,
        challenge_markers: Iterable[str] = (),
    ):
        self._fetcher = fetcher
        self._browser = browser
        self._min_html_length = min_html_length
        self._markers = tuple(challenge_markers)

    async def scrape(self, url: str) -> FetchedPage:
        reason = await self._try_plain_fetch(url)
        if isinstance(reason, FetchedPage):
            return reason

        logger.info("smart_scrape_escalating", url=url, reason=reason)
        return await self._browser.fetch_html(url)

    async def _try_plain_fetch(self, url: str) -> FetchedPage | str:
        try:
            page = await self._fetcher.fetch_html(url)
        except IngestDomainError as e:
            return f"fetch_failed: {e}"

        if not page.html.strip():
            return "empty_body"
        if len(page.html) < self._min_html_length:
            return f"too_short: {len(page.html)}"
        report = assess_quality(page.html, challenge_markers=self._markers)
        if report.is_blocked:
            return f"bot_challenge: {report.challenge_marker}"

        logger.info("smart_scrape_plain_fetch_ok", url=url, chars=len(page.html))
        return page
