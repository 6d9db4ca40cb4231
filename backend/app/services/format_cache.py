"""Short-lived cache of secondary-backend formats, keyed by content id.

The secondary backend is slow, so its raw format list (including direct
source URLs) is remembered for a few minutes.  A delivery request that
follows a catalog request for the same content then skips the second
backend call entirely.
"""

import threading
import time
from typing import Any, Callable, Iterable, Optional

from cachetools import TTLCache

from app.core.logging import get_logger
from app.models.catalog import CacheEntry

logger = get_logger(__name__)


class FormatCache:
    """Thread-safe TTL map of content id -> :class:`CacheEntry`.

    Expiry is checked lazily: every lookup purges entries whose TTL has
    passed before reading, so an expired entry is both reported absent
    and removed.
    """

    def __init__(
        self,
        ttl_seconds: float,
        maxsize: int = 256,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timer = timer
        self._entries: TTLCache = TTLCache(
            maxsize=max(1, maxsize), ttl=max(1, ttl_seconds), timer=timer
        )
        self._lock = threading.Lock()

    def get(self, content_id: Optional[str]) -> Optional[CacheEntry]:
        """Return the live entry for *content_id*, or None."""
        if not content_id:
            return None
        with self._lock:
            self._entries.expire()
            entry = self._entries.get(content_id)
        if entry is not None:
            logger.debug(f"Format cache hit for {content_id}")
        return entry

    def put(self, content_id: Optional[str], raw_formats: Iterable[dict[str, Any]]) -> None:
        """Remember *raw_formats* for *content_id*."""
        if not content_id or raw_formats is None:
            return
        entry = CacheEntry(
            content_id=content_id,
            created_at=self._timer(),
            raw_formats=tuple(raw_formats),
        )
        with self._lock:
            self._entries[content_id] = entry

    def invalidate(self, content_id: Optional[str]) -> None:
        """Drop the entry for *content_id* if there is one."""
        if not content_id:
            return
        with self._lock:
            self._entries.pop(content_id, None)

    def __len__(self) -> int:
        """Number of live entries."""
        with self._lock:
            return len(self._entries)
