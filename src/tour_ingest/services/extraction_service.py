"""Extraction engine: schema-constrained LLM calls plus JSON recovery.

Failure messages matter to the job runner: an empty or textless response and
a cut-off response that cannot be repaired are "temporary"; output that is
present but unusable (no recoverable JSON, no tours array) is not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain.errors import ExtractionError, ExtractionTruncatedError
from ..llm import prompts
from ..llm.runtime import LLMRequest, LLMRuntime, json_schema_format
from ..models.tours import TourDraft, coerce_tour_drafts
from ..observability.logger import get_logger
from ..processing.json_recovery import repair_with_strategy

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExtractionResult:
    tours: list[TourDraft] = field(default_factory=list)
    repair_strategy: str = "slice"
    finish_reason: Optional[str] = None
    input_chars: int = 0

    def raw_tours(self) -> list[dict[str, Any]]:
        return [t.to_raw() for t in self.tours]


@dataclass(frozen=True)
class TextBatchResult:
    agency_name: str
    tours: list[TourDraft] = field(default_factory=list)

    def raw(self) -> dict[str, Any]:
        return {"agencyName": self.agency_name, "tours": [t.to_raw() for t in self.tours]}


def first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


class ExtractionService:
    def __init__(
        self,
        llm: LLMRuntime,
        *,
        model: str,
        max_tokens: int = 4000,
        timeout_seconds: int = 60,
        temperature: float = 0.1,
        max_chars: int = 50000,
        text_batch_max_tours: int = 50,
    ):
        self._llm = llm
        self._model = model
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds
        self._temperature = temperature
        self._max_chars = max_chars
        self._text_batch_max_tours = text_batch_max_tours

    async def extract(self, content: str, source_type: str) -> ExtractionResult:
        """Single-source extraction: {"tours": [...]} from acquired page/PDF text."""
        clipped = content[: self._max_chars]
        if len(content) > self._max_chars:
            logger.info("extraction_input_truncated", chars=len(content), limit=self._max_chars)

        value, strategy, finish_reason = await self._complete_json(
            prompts.tour_extraction_messages(clipped, source_type),
            prompts.TOUR_SCHEMA_NAME,
            prompts.tour_extraction_schema(),
        )
        tours = coerce_tour_drafts(self._tours_array(value))
        logger.info("extraction_completed", source_type=source_type, tours=len(tours), strategy=strategy)
        return ExtractionResult(
            tours=tours,
            repair_strategy=strategy,
            finish_reason=finish_reason,
            input_chars=len(clipped),
        )

    async def extract_from_text(self, text: str) -> TextBatchResult:
        """Free-text batch: the first line names the agency; at most `text_batch_max_tours` tours."""
        clipped = text[: self._max_chars]
        value, strategy, _ = await self._complete_json(
            prompts.text_batch_messages(clipped, self._text_batch_max_tours),
            prompts.TOUR_SCHEMA_NAME,
            prompts.text_batch_schema(),
        )
        tours = coerce_tour_drafts(self._tours_array(value))[: self._text_batch_max_tours]
        agency_name = str(value.get("agencyName") or "").strip() or first_line(text)
        logger.info("text_extraction_completed", tours=len(tours), agency_name=agency_name, strategy=strategy)
        return TextBatchResult(agency_name=agency_name, tours=tours)

    async def complete_json(self, messages: list[dict[str, Any]], schema_name: str, schema: dict[str, Any]) -> dict[str, Any]:
        value, _, _ = await self._complete_json(messages, schema_name, schema)
        return value

    async def _complete_json(
        self,
        messages: list[dict[str, Any]],
        schema_name: str,
        schema: dict[str, Any],
    ) -> tuple[dict[str, Any], str, Optional[str]]:
        completion = await self._llm.chat(
            LLMRequest(
                messages=messages,
                model=self._model,
                max_tokens=self._max_tokens,
                timeout_seconds=self._timeout_seconds,
                temperature=self._temperature,
                response_format=json_schema_format(schema_name, schema),
            )
        )
        if not completion.has_choice:
            raise ExtractionError("temporary LLM failure: empty choices in response")

        text = completion.text
        if not text.strip():
            raise ExtractionError("temporary LLM failure: no text content in response")

        repaired = repair_with_strategy(text)
        if repaired is None:
            if completion.truncated:
                raise ExtractionTruncatedError(
                    "temporary LLM failure: response truncated at the token limit and could not be repaired",
                    detail=text[-500:],
                )
            raise ExtractionError("Failed to parse LLM response as JSON", detail=text[:500])
        return repaired.value, repaired.strategy, completion.finish_reason

    @staticmethod
    def _tours_array(value: dict[str, Any]) -> list[Any]:
        tours = value.get("tours")
        if not isinstance(tours, list):
            raise ExtractionError("LLM response does not match the schema: missing tours array")
        return tours
