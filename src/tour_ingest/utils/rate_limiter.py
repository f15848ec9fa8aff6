"""Per-host politeness delay.

Child fetches of one crawl (detail pages, discovered PDFs) hit the same agency
site back to back; this enforces a minimum gap between requests to a host.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict
from urllib.parse import urlparse


def _now() -> float:
    return time.monotonic()


@dataclass
class _HostState:
    lock: asyncio.Lock
    next_allowed_at: float


class HostThrottle:
    """Minimum interval between requests to the same host.

    Args:
        min_interval_ms: Gap enforced per host. If <= 0, no throttling is applied.
    """

    def __init__(self, min_interval_ms: int):
        self._interval_s = max(0.0, float(min_interval_ms) / 1000.0)
        self._hosts: Dict[str, _HostState] = {}

    @property
    def enabled(self) -> bool:
        return self._interval_s > 0

    def _state(self, host: str) -> _HostState:
        # Single event loop: dict access between awaits is atomic.
        state = self._hosts.get(host)
        if state is None:
            state = _HostState(lock=asyncio.Lock(), next_allowed_at=0.0)
            self._hosts[host] = state
        return state

    async def wait(self, url: str) -> None:
        """Wait until a request to the URL's host is allowed."""
        if not self.enabled:
            return
        host = (urlparse(url).netloc or "").lower()
        if not host:
            return

        state = self._state(host)
        async with state.lock:
            delay = state.next_allowed_at - _now()
            if delay > 0:
                await asyncio.sleep(delay)
            state.next_allowed_at = _now() + self._interval_s
