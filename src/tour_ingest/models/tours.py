"""Tour draft models (extracted, not yet persisted)."""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..domain.models import TourType
from ..observability.logger import get_logger

logger = get_logger(__name__)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

_TEXT_FIELDS = (
    "departure_date",
    "highlights",
    "itinerary",
    "inclusions",
    "exclusions",
    "hotels",
    "meals",
    "image_url",
    "whatsapp",
    "phone",
    "pdf_url",
)


def _parse_number(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    s = str(v).replace(",", "").strip()
    if not s:
        return None
    m = _NUMBER_RE.search(s)
    return float(m.group(0)) if m else None


class TourDraft(BaseModel):
    """One extracted tour pending human review.

    Field aliases follow the camelCase names of the extraction schema so the
    model round-trips the LLM output and the job's stored raw data.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    destination: str
    days: Optional[int] = None
    nights: Optional[int] = None
    # 0 is a valid-but-incomplete sentinel; it must be corrected before import.
    price: Optional[float] = None
    departure_date: str = Field(default="", alias="departureDate")
    highlights: str = ""
    itinerary: str = ""
    inclusions: str = ""
    exclusions: str = ""
    hotels: str = ""
    meals: str = ""
    image_url: str = Field(default="", alias="imageUrl")
    whatsapp: str = ""
    phone: str = ""
    pdf_url: str = Field(default="", alias="pdfUrl")

    # Assigned during review
    job_id: Optional[int] = Field(default=None, alias="jobId")
    agency_id: Optional[int] = Field(default=None, alias="agencyId")
    tour_type: TourType = Field(default=TourType.PURE_PLAY, alias="tourType")

    @field_validator("title", "destination", mode="before")
    @classmethod
    def _required_text(cls, v: Any) -> str:
        s = str(v if v is not None else "").strip()
        if not s:
            raise ValueError("must be a non-empty string")
        return s

    @field_validator("days", "nights", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> Optional[int]:
        n = _parse_number(v)
        if n is None or n <= 0:
            return None
        return int(n)

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, v: Any) -> Optional[float]:
        n = _parse_number(v)
        if n is None or n < 0:
            return None
        return n

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return "\n".join(str(x).strip() for x in v if str(x).strip())
        return str(v).strip()

    @property
    def needs_price(self) -> bool:
        return not self.price or self.price <= 0

    def to_raw(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def coerce_tour_drafts(items: Iterable[Any]) -> list[TourDraft]:
    """Validate loosely-shaped tour dicts, dropping entries without title/destination."""
    drafts: list[TourDraft] = []
    dropped = 0
    for item in items:
        if not isinstance(item, dict):
            dropped += 1
            continue
        try:
            drafts.append(TourDraft.model_validate(item))
        except ValidationError:
            dropped += 1
    if dropped:
        logger.warning("tour_drafts_dropped", dropped=dropped, kept=len(drafts))
    return drafts
