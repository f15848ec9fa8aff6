"""Source classification: decides which acquisition chain a reference goes through."""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional, Protocol
from urllib.parse import urlparse

from ..domain.models import TEXT_INPUT_REF, SourceKind
from ..observability.logger import get_logger
from ..utils.validators import is_pdf_url, is_valid_http_url

logger = get_logger(__name__)


class ContentTypeSniffer(Protocol):
    async def sniff_content_type(self, url: str, timeout_ms: int) -> Optional[str]: ...


class SourceClassifier:
    """First match wins: literal text, PDF, listing page, generic page.

    `classify` looks at the reference only. `classify_remote` may additionally
    issue one bounded HEAD request to catch PDFs served from extension-less
    URLs; any failure there keeps the pattern-based answer.
    """

    def __init__(
        self,
        listing_markers: Iterable[str],
        *,
        sniffer: ContentTypeSniffer | None = None,
        sniff_timeout_ms: int = 3000,
    ):
        self._listing_markers = tuple(listing_markers)
        self._sniffer = sniffer
        self._sniff_timeout_ms = sniff_timeout_ms

    def classify(self, ref: str) -> SourceKind:
        ref = (ref or "").strip()
        if ref == TEXT_INPUT_REF or not is_valid_http_url(ref):
            return SourceKind.LITERAL_TEXT
        if is_pdf_url(ref):
            return SourceKind.PDF
        path = urlparse(ref).path
        if any(marker in path for marker in self._listing_markers):
            return SourceKind.LISTING_PAGE
        return SourceKind.GENERIC_PAGE

    async def classify_remote(self, ref: str) -> SourceKind:
        kind = self.classify(ref)
        if kind not in (SourceKind.LISTING_PAGE, SourceKind.GENERIC_PAGE) or self._sniffer is None:
            return kind
        try:
            content_type = await asyncio.wait_for(
                self._sniffer.sniff_content_type(ref.strip(), self._sniff_timeout_ms),
                timeout=self._sniff_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.info("content_type_sniff_timeout", url=ref)
            return kind
        if content_type and "application/pdf" in content_type:
            logger.info("content_type_sniffed_pdf", url=ref)
            return SourceKind.PDF
        return kind
