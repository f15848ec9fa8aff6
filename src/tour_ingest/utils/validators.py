"""Validation helpers."""

from __future__ import annotations

from urllib.parse import urlparse


def is_valid_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except Exception:
        return False


def is_pdf_url(url: str) -> bool:
    """True when the URL path ends in .pdf (query strings allowed)."""
    path = urlparse(url.strip()).path.lower()
    return path.endswith(".pdf")


def sanitize_path_segment(segment: str) -> str:
    """Sanitize a path segment for object storage keys."""
    s = segment.strip().replace("\\", "/")
    for bad in ("..", ":", "|", "?", "#", '"', "<", ">"):
        s = s.replace(bad, "-" if bad in (":", "|") else "")
    return s.strip("/").strip() or "untitled"
