"""Time utilities."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def current_time_ms() -> int:
    return int(time.time() * 1000)


def elapsed_ms(start_time_ms: int) -> int:
    return max(0, current_time_ms() - start_time_ms)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
