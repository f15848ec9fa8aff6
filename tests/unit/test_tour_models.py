from __future__ import annotations

from tour_ingest.domain.models import TourType
from tour_ingest.models.tours import TourDraft, coerce_tour_drafts


def test_loose_llm_values_are_coerced() -> None:
    d = TourDraft.model_validate(
        {
            "title": " 北海道5天 ",
            "destination": "日本",
            "days": "5天",
            "nights": 0,
            "price": "HK$8,399起",
            "highlights": ["溫泉", "", "雪祭"],
            "imageUrl": None,
        }
    )
    assert d.title == "北海道5天"
    assert d.days == 5
    assert d.nights is None
    assert d.price == 8399
    assert d.highlights == "溫泉\n雪祭"
    assert d.image_url == ""
    assert d.tour_type == TourType.PURE_PLAY


def test_zero_price_needs_correction() -> None:
    assert TourDraft(title="t", destination="d", price=0).needs_price
    assert not TourDraft(title="t", destination="d", price=10).needs_price


def test_coerce_drops_invalid_entries() -> None:
    drafts = coerce_tour_drafts([{"title": "A", "destination": "B"}, {"title": "", "destination": "B"}, "junk", {}])
    assert [d.title for d in drafts] == ["A"]


def test_to_raw_uses_camel_case_aliases() -> None:
    raw = TourDraft(title="A", destination="B", departure_date="2025-01-01").to_raw()
    assert raw["departureDate"] == "2025-01-01"
    assert "departure_date" not in raw
