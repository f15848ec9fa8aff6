"""PDF text extraction with OCR fallback for scanned brochures.

The text layer is read with PyMuPDF. When it yields fewer than
`min_text_chars` characters the first `max_ocr_pages` pages are rendered to
PNG and transcribed by the OCR engine; the OCR text wins when it is longer.
All parsing and rendering runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import fitz

from ..domain.errors import PdfExtractionError
from ..domain.models import PdfText
from ..observability.logger import get_logger

logger = get_logger(__name__)


class BytesFetcher(Protocol):
    async def fetch_bytes(self, url: str, timeout_ms: int | None = None) -> bytes: ...


class OcrEngine(Protocol):
    async def ocr_image(self, png: bytes, page_number: int) -> str: ...


def _open(data: bytes) -> "fitz.Document":
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (fitz.FileDataError, RuntimeError, ValueError) as e:
        raise PdfExtractionError("PDF is corrupt or not a PDF", detail=str(e)) from e
    if doc.needs_pass:
        doc.close()
        raise PdfExtractionError("PDF is encrypted (password required)")
    return doc


def read_text_layer(data: bytes) -> tuple[str, int]:
    """Return (text, page_count) from the embedded text layer."""
    doc = _open(data)
    try:
        chunks = [doc.load_page(i).get_text() for i in range(doc.page_count)]
        return "\n".join(chunks).strip(), doc.page_count
    finally:
        doc.close()


def render_pages(data: bytes, max_pages: int, dpi: int) -> list[bytes]:
    doc = _open(data)
    try:
        pages = min(max_pages, doc.page_count)
        return [doc.load_page(i).get_pixmap(dpi=dpi).tobytes("png") for i in range(pages)]
    finally:
        doc.close()


class PdfTextExtractor:
    def __init__(
        self,
        fetcher: BytesFetcher,
        ocr: OcrEngine | None,
        *,
        min_text_chars: int = 100,
        max_ocr_pages: int = 15,
        render_dpi: int = 100,
    ):
        self._fetcher = fetcher
        self._ocr = ocr
        self._min_text_chars = min_text_chars
        self._max_ocr_pages = max_ocr_pages
        self._render_dpi = render_dpi

    async def extract(self, url: str) -> PdfText:
        data = await self._fetcher.fetch_bytes(url)
        try:
            return await self.extract_bytes(data, url)
        finally:
            del data

    async def extract_bytes(self, data: bytes, url: str) -> PdfText:
        text, page_count = await asyncio.to_thread(read_text_layer, data)
        logger.info("pdf_text_layer_read", url=url, pages=page_count, chars=len(text))

        if len(text) >= self._min_text_chars or self._ocr is None:
            if not text:
                raise PdfExtractionError("PDF has no extractable text and OCR is not configured", detail=url)
            return PdfText(url=url, text=text, used_ocr=False, char_count=len(text))

        ocr_text, pages_ocred = await self._ocr_pages(data, url)
        if len(ocr_text) > len(text):
            logger.info("pdf_ocr_used", url=url, pages=pages_ocred, chars=len(ocr_text))
            return PdfText(url=url, text=ocr_text, used_ocr=True, char_count=len(ocr_text), pages_ocred=pages_ocred)

        if not text:
            raise PdfExtractionError(
                "Unable to extract text from PDF: no text layer and OCR found nothing "
                "(image-only, encrypted or damaged file)",
                detail=url,
            )
        return PdfText(url=url, text=text, used_ocr=False, char_count=len(text), pages_ocred=pages_ocred)

    async def _ocr_pages(self, data: bytes, url: str) -> tuple[str, int]:
        images = await asyncio.to_thread(render_pages, data, self._max_ocr_pages, self._render_dpi)
        try:
            parts: list[str] = []
            for i, png in enumerate(images, start=1):
                page_text = await self._ocr.ocr_image(png, i)
                if page_text:
                    parts.append(f"--- Page {i} ---\n{page_text}")
            return "\n\n".join(parts).strip(), len(images)
        finally:
            images.clear()
