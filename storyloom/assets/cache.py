"""
Session-scoped fallback cache for asset copies, keyed by the original asset URL.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    value: str
    stored_at: float


class EphemeralCache:
    """
    Plain key/value store without eviction; entries live as long as the session.

    It also holds the "already migrated recently" timestamp used to skip redundant
    library-wide migration sweeps.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._last_sweep: float | None = None
        self._clock = clock

    def get(self, original_url: str) -> str | None:
        entry = self._entries.get(original_url)
        return entry.value if entry is not None else None

    def put(self, original_url: str, value: str) -> None:
        if not original_url or not value:
            return
        self._entries[original_url] = CacheEntry(value=value, stored_at=self._clock())

    def discard(self, original_url: str) -> None:
        self._entries.pop(original_url, None)

    def __contains__(self, original_url: object) -> bool:
        return original_url in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def last_sweep(self) -> float | None:
        return self._last_sweep

    def sweep_due(self, interval_seconds: float) -> bool:
        if self._last_sweep is None:
            return True
        return self._clock() - self._last_sweep > interval_seconds

    def mark_sweep(self) -> None:
        self._last_sweep = self._clock()
