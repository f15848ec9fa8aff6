from __future__ import annotations

from tour_ingest.storage.minio_client import object_key_from_url
from tour_ingest.utils.paths import PREVIEW_PREFIX, build_pdf_preview_key
from tour_ingest.utils.validators import is_pdf_url, sanitize_path_segment


def test_build_pdf_preview_key() -> None:
    assert build_pdf_preview_key(42, 1700000000123) == "scrape-jobs/42/1700000000123.pdf"


def test_object_key_round_trips_through_public_url() -> None:
    key = build_pdf_preview_key(7, 1)
    url = f"https://cdn.example.com/tour-ingest/{key}"
    assert object_key_from_url(url, PREVIEW_PREFIX) == key
    assert object_key_from_url("https://cdn.example.com/other/7/1.pdf", PREVIEW_PREFIX) is None


def test_sanitize_path_segment() -> None:
    assert sanitize_path_segment("../a:b") == "a-b"
    assert sanitize_path_segment("   ") == "untitled"


def test_is_pdf_url_ignores_query_string() -> None:
    assert is_pdf_url("https://x.example.com/files/Brochure.PDF?v=2")
    assert not is_pdf_url("https://x.example.com/pdf/list")
