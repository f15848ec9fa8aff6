"""OCR through a vision-capable chat model."""

from __future__ import annotations

import base64

from ..domain.errors import IngestDomainError, OcrError
from ..llm.prompts import ocr_messages
from ..llm.runtime import LLMRequest, LLMRuntime
from ..observability.logger import get_logger

logger = get_logger(__name__)


class VisionOcr:
    """Sends one rendered page image per request and returns the transcribed text."""

    def __init__(self, llm: LLMRuntime, *, model: str, max_tokens: int, timeout_seconds: int):
        self._llm = llm
        self._model = model
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    async def ocr_image(self, png: bytes, page_number: int) -> str:
        data_url = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
        req = LLMRequest(
            messages=ocr_messages(data_url),
            model=self._model,
            max_tokens=self._max_tokens,
            timeout_seconds=self._timeout_seconds,
            temperature=0.0,
        )
        try:
            completion = await self._llm.chat(req)
        except IngestDomainError as e:
            # Keep the cause in the message so timeouts/rate limits stay recognisable.
            raise OcrError(f"temporary OCR failure on page {page_number}: {e}", detail=e.info.detail) from e
        if not completion.has_choice:
            raise OcrError(f"temporary OCR failure on page {page_number}: empty response")
        text = completion.text.strip()
        logger.debug("ocr_page_completed", page=page_number, chars=len(text))
        return text
