"""
Registry Cache

An in-memory snapshot of the active documents with a monotonic version and
a fixed time-to-live. The cache is never a source of truth: once stale it is
reconciled against the document store, and a stale snapshot is only served
when that reconciliation fails.

Instances are owned by whoever constructs the registry, so independent
registries (e.g. in tests) never share state.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional

from .models import Document

Clock = Callable[[], float]


class RegistryCache:

    def __init__(self, ttl_seconds: float = 300.0, clock: Clock = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._documents: Optional[List[Document]] = None
        self._refreshed_at: Optional[float] = None
        self._version = 0

    @property
    def documents(self) -> List[Document]:
        return list(self._documents or [])

    @property
    def version(self) -> int:
        return self._version

    @property
    def refreshed_at(self) -> Optional[float]:
        return self._refreshed_at

    @property
    def has_snapshot(self) -> bool:
        return self._documents is not None

    def is_stale(self) -> bool:
        if self._documents is None or self._refreshed_at is None:
            return True
        return self._clock() - self._refreshed_at >= self.ttl_seconds

    def replace(self, documents: List[Document]) -> None:
        """Install a fresh snapshot. Concurrent refreshes: last write wins."""
        self._documents = list(documents)
        self._refreshed_at = self._clock()
        self._version += 1

    def invalidate(self) -> None:
        """Mark the snapshot stale while keeping it as a fallback."""
        self._refreshed_at = None
