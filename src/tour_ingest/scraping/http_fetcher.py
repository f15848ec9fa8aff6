"""Plain HTTP fetching (aiohttp).

Timeouts and connection failures are raised with messages the job runner's
retry classifier recognises ("timeout", "network", the HTTP status code).
"""

from __future__ import annotations

import asyncio

import aiohttp

from ..domain.errors import ContentProcessingError, NetworkTimeoutError, UpstreamHTTPError
from ..domain.models import FetchedPage, FetchMethod
from ..observability.logger import get_logger

logger = get_logger(__name__)


class HttpFetcher:
    """Scraping layer: static fetches (HTML pages, PDF downloads, content-type sniffs)."""

    def __init__(self, timeout_ms: int, user_agent: str, *, max_bytes: int | None = None):
        self._timeout_ms = timeout_ms
        self._user_agent = user_agent
        self._max_bytes = max_bytes

    def _timeout(self, timeout_ms: int | None = None) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=max(1, int(timeout_ms or self._timeout_ms)) / 1000.0)

    @property
    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self._user_agent}

    async def fetch_html(self, url: str, timeout_ms: int | None = None) -> FetchedPage:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout(timeout_ms), headers=self._headers) as session:
                async with session.get(url, allow_redirects=True) as resp:
                    if resp.status >= 400:
                        raise UpstreamHTTPError(resp.status, url)
                    html = await resp.text(errors="replace")
                    return FetchedPage(
                        url=str(resp.url),
                        html=html,
                        method=FetchMethod.PLAIN_FETCH,
                        status=resp.status,
                        content_type=resp.headers.get("Content-Type", ""),
                    )
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(f"Timeout while fetching {url}", detail=str(e)) from e
        except aiohttp.ClientConnectorError as e:
            raise NetworkTimeoutError(f"Network error (ECONNREFUSED) while fetching {url}", detail=str(e)) from e
        except aiohttp.ClientError as e:
            raise NetworkTimeoutError(f"Network error while fetching {url}", detail=str(e)) from e

    async def fetch_bytes(self, url: str, timeout_ms: int | None = None) -> bytes:
        """Download a binary resource (PDF brochures)."""
        try:
            async with aiohttp.ClientSession(timeout=self._timeout(timeout_ms), headers=self._headers) as session:
                async with session.get(url, allow_redirects=True) as resp:
                    if resp.status >= 400:
                        raise UpstreamHTTPError(resp.status, url)
                    if self._max_bytes and resp.content_length and resp.content_length > self._max_bytes:
                        raise ContentProcessingError(
                            "download too large", detail=f"url={url} bytes={resp.content_length}"
                        )
                    data = await resp.read()
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(f"Timeout while downloading {url}", detail=str(e)) from e
        except aiohttp.ClientConnectorError as e:
            raise NetworkTimeoutError(f"Network error (ECONNREFUSED) while downloading {url}", detail=str(e)) from e
        except aiohttp.ClientError as e:
            raise NetworkTimeoutError(f"Network error while downloading {url}", detail=str(e)) from e

        if self._max_bytes and len(data) > self._max_bytes:
            raise ContentProcessingError("download too large", detail=f"url={url} bytes={len(data)}")
        logger.info("download_completed", url=url, bytes=len(data))
        return data

    async def sniff_content_type(self, url: str, timeout_ms: int) -> str | None:
        """HEAD request for the Content-Type header. Returns None on any failure."""
        try:
            async with aiohttp.ClientSession(timeout=self._timeout(timeout_ms), headers=self._headers) as session:
                async with session.head(url, allow_redirects=True) as resp:
                    if resp.status >= 400:
                        return None
                    return resp.headers.get("Content-Type", "").lower() or None
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.debug("content_type_sniff_failed", url=url, error=str(e))
            return None
