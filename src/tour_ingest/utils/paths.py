"""Path helpers (object storage naming)."""

from __future__ import annotations

from .validators import sanitize_path_segment

PREVIEW_PREFIX = "scrape-jobs"


def build_pdf_preview_key(job_id: int, timestamp_ms: int) -> str:
    """Key of a re-hosted PDF preview: scrape-jobs/<job_id>/<timestamp>.pdf"""
    return f"{PREVIEW_PREFIX}/{sanitize_path_segment(str(job_id))}/{int(timestamp_ms)}.pdf"
