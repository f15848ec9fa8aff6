"""Content filtering (noise removal + main-content text)."""

from __future__ import annotations

from bs4 import BeautifulSoup

DEFAULT_NOISE_SELECTORS = [
    "script",
    "style",
    "noscript",
    "iframe",
    "svg",
    "nav",
    "footer",
    "header .menu",
    ".cookie",
    ".cookie-banner",
    "#cookie-consent",
]


class ContentFilter:
    """Processing layer component: turns fetched HTML into extraction-ready text.

    Rules:
    - Apply noise filters before content extraction
    - Prefer a main-content container when one holds enough text
    - Never raise on malformed markup
    """

    def __init__(self, noise_selectors: list[str] | None = None, *, min_main_chars: int = 200):
        self._noise_selectors = noise_selectors if noise_selectors is not None else list(DEFAULT_NOISE_SELECTORS)
        self._min_main_chars = min_main_chars
        self._content_selectors = [
            "main",
            "article",
            "#content",
            ".content",
            ".main-content",
            ".tour-detail",
            ".product-detail",
            ".itinerary",
        ]

    def to_text(self, html: str) -> str:
        soup = BeautifulSoup(html or "", "lxml")
        for selector in self._noise_selectors:
            for el in soup.select(selector):
                el.decompose()

        root = self._find_main_content(soup) or soup.body or soup
        lines = (line.strip() for line in root.get_text("\n").splitlines())
        return "\n".join(line for line in lines if line)

    def title(self, html: str) -> str:
        soup = BeautifulSoup(html or "", "lxml")
        if soup.title and soup.title.string:
            return soup.title.string.strip()
        h1 = soup.find("h1")
        return h1.get_text(strip=True) if h1 else ""

    def _find_main_content(self, soup: BeautifulSoup):
        for selector in self._content_selectors:
            candidate = soup.select_one(selector)
            if candidate is None:
                continue
            if len(candidate.get_text(strip=True)) >= self._min_main_chars:
                return candidate
        return None


def looks_like_html(text: str) -> bool:
    head = text.lstrip()[:200].lower()
    return head.startswith("<!doctype html") or head.startswith("<html") or ("<body" in text.lower() and "</" in text)
