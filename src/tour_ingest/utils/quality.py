"""Content quality heuristics.

Used by the smart scraper to decide whether a plain fetch produced a usable
page or whether the headless browser has to render it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from bs4 import BeautifulSoup


@dataclass(frozen=True)
class QualityReport:
    html_length: int
    word_count: int
    text_length: int
    text_to_html_ratio: float
    challenge_marker: str = ""

    @property
    def is_blocked(self) -> bool:
        return bool(self.challenge_marker)


def assess_quality(html: str, *, challenge_markers: Iterable[str] = ()) -> QualityReport:
    soup = BeautifulSoup(html or "", "lxml")
    # Remove common non-content elements that can heavily skew HTML size.
    for tag in soup.find_all(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text("\n", strip=True)
    text_len = len(text)
    html_len = max(1, len(html or ""))

    lowered = (html or "").lower()
    marker = next((m for m in challenge_markers if m and m.lower() in lowered), "")

    return QualityReport(
        html_length=len(html or ""),
        word_count=len(text.split()),
        text_length=text_len,
        text_to_html_ratio=float(text_len) / float(html_len),
        challenge_marker=marker,
    )
