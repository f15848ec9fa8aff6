"""Maps reviewed tour drafts onto persistable tour records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

from ..domain.errors import InvalidInputError
from ..domain.models import ScrapeJob
from ..models.tours import TourDraft
from ..utils.time import utcnow

EXTRACTED_ITINERARY_PLACEHOLDER = "待補充"


@dataclass(frozen=True)
class NormalizeOptions:
    placeholder_itinerary: str = "詳細行程請查看旅行社網站"
    placeholder_text: str = ""
    currency: str = "HKD"
    available_seats: int = 20
    min_group_size: int = 10
    # Assumes one night fewer than days; turn off for cruises and overnight flights.
    derive_days_nights: bool = True

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "NormalizeOptions":
        values = dict(
            placeholder_itinerary=settings.placeholder_itinerary,
            placeholder_text=settings.placeholder_text,
            currency=settings.default_currency,
            available_seats=settings.default_available_seats,
            min_group_size=settings.default_min_group_size,
        )
        values.update(overrides)
        return cls(**values)


def format_price(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def resolve_price(draft_price: Optional[float], default_price: Optional[float]) -> str:
    """Draft price when positive, else the job's default, else "0" (blocks import in review)."""
    if draft_price is not None and draft_price > 0:
        return format_price(draft_price)
    if default_price is not None and default_price > 0:
        return format_price(default_price)
    return "0"


def reconcile_days_nights(days: Optional[int], nights: Optional[int], *, derive: bool = True) -> tuple[int, int]:
    if derive:
        if days and not nights:
            nights = max(days - 1, 0)
        elif nights and not days:
            days = nights + 1
    return days or 0, nights or 0


def parse_departure(value: str) -> Optional[datetime]:
    value = (value or "").strip()
    if not value:
        return None
    try:
        d = date.fromisoformat(value[:10])
    except ValueError:
        return None
    return datetime(d.year, d.month, d.day)


def _departure_and_return(draft: TourDraft, days: int) -> tuple[datetime, datetime]:
    departure = parse_departure(draft.departure_date)
    if departure is None:
        departure = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return departure, departure + timedelta(days=days)


def _text(value: str, options: NormalizeOptions) -> str:
    return value if value else options.placeholder_text


def normalize_tour(
    draft: TourDraft,
    job: Optional[ScrapeJob],
    options: NormalizeOptions | None = None,
    *,
    agency_id: Optional[int] = None,
) -> dict[str, Any]:
    """Build a `TourRecord` row from a reviewed draft of a scrape job."""
    options = options or NormalizeOptions()
    agency = agency_id or draft.agency_id or (job.agency_id if job else None)
    if agency is None:
        raise InvalidInputError(f"tour '{draft.title}' has no agency assigned")

    days, nights = reconcile_days_nights(draft.days, draft.nights, derive=options.derive_days_nights)
    departure, return_date = _departure_and_return(draft, days)
    source_url = job.url if job is not None and job.url and not job.is_text_input else None

    return {
        "agency_id": agency,
        "scrape_job_id": job.id if job is not None else draft.job_id,
        "title": draft.title,
        "destination": draft.destination,
        "days": days,
        "nights": nights,
        "tour_type": draft.tour_type.value,
        "price": resolve_price(draft.price, job.price if job is not None else None),
        "currency": options.currency,
        "departure_date": departure,
        "return_date": return_date,
        "available_seats": options.available_seats,
        "min_group_size": options.min_group_size,
        "itinerary": draft.itinerary or options.placeholder_itinerary,
        "highlights": _text(draft.highlights, options),
        "inclusions": _text(draft.inclusions, options),
        "exclusions": _text(draft.exclusions, options),
        "hotels": _text(draft.hotels, options),
        "meals": _text(draft.meals, options),
        "affiliate_link": source_url or "",
        "image_url": draft.image_url or None,
        "source_url": source_url,
        "status": "active",
        "is_published": True,
        "created_at": utcnow(),
    }


def normalize_extracted_tour(
    draft: TourDraft,
    agency_id: int,
    options: NormalizeOptions | None = None,
) -> dict[str, Any]:
    """Record for a draft from free-text batch extraction (no originating page)."""
    options = options or NormalizeOptions()
    days, nights = reconcile_days_nights(draft.days, draft.nights, derive=options.derive_days_nights)
    departure, return_date = _departure_and_return(draft, days)
    source_url = draft.pdf_url or None

    return {
        "agency_id": agency_id,
        "scrape_job_id": draft.job_id,
        "title": draft.title,
        "destination": draft.destination,
        "days": days,
        "nights": nights,
        "tour_type": draft.tour_type.value,
        "price": resolve_price(draft.price, None),
        "currency": options.currency,
        "departure_date": departure,
        "return_date": return_date,
        "available_seats": options.available_seats,
        "min_group_size": options.min_group_size,
        "itinerary": draft.itinerary or draft.highlights or EXTRACTED_ITINERARY_PLACEHOLDER,
        "highlights": _text(draft.highlights, options),
        "inclusions": _text(draft.inclusions, options),
        "exclusions": _text(draft.exclusions, options),
        "hotels": _text(draft.hotels, options),
        "meals": _text(draft.meals, options),
        "affiliate_link": source_url or "",
        "image_url": draft.image_url or None,
        "source_url": source_url,
        "status": "active",
        "is_published": True,
        "created_at": utcnow(),
    }
