"""Duplicate tour removal: newest record per (destination, title, agency) wins."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from ..observability.logger import get_logger
from ..storage.repositories import TourRepository

logger = get_logger(__name__)


def duplicate_key(row: dict[str, Any]) -> str:
    parts = (row.get("destination") or "", row.get("title") or "", row.get("agency_name") or "")
    return "|".join(p.strip().lower() for p in parts)


def select_duplicates(rows: Iterable[dict[str, Any]]) -> list[int]:
    """Ids to delete: every row except the most recent (created_at desc, then id desc) per key."""
    ordered = sorted(
        rows,
        key=lambda r: (r.get("created_at") or datetime.min, r.get("id") or 0),
        reverse=True,
    )
    seen: set[str] = set()
    doomed: list[int] = []
    for row in ordered:
        key = duplicate_key(row)
        if key in seen:
            doomed.append(row["id"])
        else:
            seen.add(key)
    return doomed


class DedupeService:
    def __init__(self, tours: TourRepository):
        self._tours = tours

    async def remove_duplicate_tours(self) -> int:
        rows = await self._tours.list_active_with_agency()
        doomed = select_duplicates(rows)
        deleted = await self._tours.delete_tours(doomed) if doomed else 0
        logger.info("duplicate_tours_removed", scanned=len(rows), deleted=deleted)
        return deleted
