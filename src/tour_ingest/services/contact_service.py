"""Agency contact details (WhatsApp / phone) extracted from page content."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ..domain.errors import AgencyNotFoundError, IngestDomainError
from ..llm import prompts
from ..observability.logger import get_logger
from ..processing.content_filter import ContentFilter, looks_like_html
from ..storage.repositories import AgencyRepository
from .extraction_service import ExtractionService

logger = get_logger(__name__)

_NON_DIGITS = re.compile(r"[^\d]")


@dataclass(frozen=True)
class ContactInfo:
    whatsapp: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class ContactUpdate:
    extracted: ContactInfo
    updated: bool


def clean_number(value: object) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    digits = _NON_DIGITS.sub("", s)
    if not digits:
        return None
    return ("+" + digits) if s.startswith("+") else digits


class ContactService:
    def __init__(self, extraction: ExtractionService, agencies: AgencyRepository, content_filter: ContentFilter):
        self._extraction = extraction
        self._agencies = agencies
        self._filter = content_filter

    async def extract_contact_info(self, content: str) -> ContactInfo:
        """Never raises on LLM trouble: contact details are a nice-to-have."""
        text = self._filter.to_text(content) if looks_like_html(content) else content
        try:
            value = await self._extraction.complete_json(
                prompts.contact_messages(text[:20000]),
                prompts.CONTACT_SCHEMA_NAME,
                prompts.contact_schema(),
            )
        except IngestDomainError as e:
            logger.warning("contact_extraction_failed", error=str(e))
            return ContactInfo()
        return ContactInfo(whatsapp=clean_number(value.get("whatsapp")), phone=clean_number(value.get("phone")))

    async def extract_and_update_contact(self, content: str, agency_id: int) -> ContactUpdate:
        agency = await self._agencies.get_agency(agency_id)
        if agency is None:
            raise AgencyNotFoundError(f"agency {agency_id} not found")

        extracted = await self.extract_contact_info(content)
        needs_update = bool(
            (extracted.whatsapp and extracted.whatsapp != agency.whatsapp)
            or (extracted.phone and extracted.phone != agency.phone)
        )
        if needs_update:
            await self._agencies.update_contact(agency_id, whatsapp=extracted.whatsapp, phone=extracted.phone)
            logger.info("agency_contact_updated", agency_id=agency_id)
        return ContactUpdate(extracted=extracted, updated=needs_update)
