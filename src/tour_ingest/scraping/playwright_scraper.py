"""Playwright-based renderer for JS-driven pages."""

from __future__ import annotations

import asyncio

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError, async_playwright

from ..domain.errors import NetworkTimeoutError
from ..domain.models import FetchedPage, FetchMethod
from ..observability.logger import get_logger

logger = get_logger(__name__)


class PlaywrightScraper:
    """Scraping layer: headless rendering.

    Responsibilities:
    - Render a page in headless Chromium and return the resulting DOM
    - Bound the whole render by the configured timeout
    - Return raw HTML (no filtering, no storage)
    """

    def __init__(self, default_timeout_ms: int, user_agent: str, *, settle_ms: int = 2000):
        self._timeout_ms = default_timeout_ms
        self._user_agent = user_agent
        self._settle_ms = settle_ms

    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage:
        timeout = timeout_ms or self._timeout_ms
        try:
            # Outer bound: goto() honours the timeout but launch and the settle wait do not.
            return await asyncio.wait_for(self._render(url, timeout), timeout=(timeout + self._settle_ms) / 1000.0 + 10)
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as e:
            raise NetworkTimeoutError(f"Timeout while rendering {url}", detail=str(e)) from e
        except PlaywrightError as e:
            msg = str(e)
            if "ERR_CONNECTION_REFUSED" in msg:
                raise NetworkTimeoutError(f"Network error (ECONNREFUSED) while rendering {url}", detail=msg) from e
            raise NetworkTimeoutError(f"Network error while rendering {url}", detail=msg) from e

    async def _render(self, url: str, timeout: int) -> FetchedPage:
        async with async_playwright() as p:
            browser = await p.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
            )
            try:
                context = await browser.new_context(
                    user_agent=self._user_agent,
                    viewport={"width": 1920, "height": 1080},
                )
                page = await context.new_page()
                resp = await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
                try:
                    await page.wait_for_load_state("networkidle", timeout=min(5000, timeout))
                except PlaywrightTimeoutError:
                    # networkidle is noisy on sites with background polling
                    pass
                await page.wait_for_timeout(self._settle_ms)
                html = await page.content()
                logger.info("browser_render_completed", url=url, chars=len(html))
                return FetchedPage(
                    url=page.url,
                    html=html,
                    method=FetchMethod.HEADLESS_BROWSER,
                    status=resp.status if resp is not None else 200,
                    content_type="text/html",
                )
            finally:
                await browser.close()
