"""Request models for the admin HTTP surface."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..domain.models import TourCategory
from .tours import TourDraft


class CreateJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    url: str
    price: Optional[float] = Field(default=None, ge=0)
    agency_id: Optional[int] = Field(default=None, alias="agencyId")
    category: Optional[TourCategory] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("url must start with http:// or https://")
        return v


class UpdateJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    url: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    agency_id: Optional[int] = Field(default=None, alias="agencyId")
    category: Optional[TourCategory] = None


class BulkDeleteRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class ImportToursRequest(BaseModel):
    tours: List[TourDraft]


class ExtractTextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text_content: str = Field(..., min_length=1, alias="textContent")


class ImportExtractedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tours: List[TourDraft]
    agency_name: Optional[str] = Field(default=None, alias="agencyName")
    agency_id: Optional[int] = Field(default=None, alias="agencyId")


class ScrapeUrlRequest(BaseModel):
    url: str = Field(..., min_length=1)


class ContactRequest(BaseModel):
    content: str = Field(..., min_length=1)
