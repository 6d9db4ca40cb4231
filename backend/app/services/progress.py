"""In-memory progress records for running deliveries.

Each streamed delivery gets a ``DeliveryProgress`` that the response
generator updates as chunks go out.  The SSE endpoint polls the record
and streams progress events to the browser.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

STATUS_STREAMING = "streaming"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Estimates come from source sizes; never claim completion early
_MAX_RUNNING_PROGRESS = 99.0


@dataclass
class DeliveryProgress:
    """Bytes sent so far for one delivery."""

    delivery_id: str
    filename: str = ""
    # Status values: streaming | completed | failed
    status: str = STATUS_STREAMING
    delivered_bytes: int = 0
    # 0 when no size estimate exists
    total_bytes: int = 0
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @property
    def finished(self) -> bool:
        return self.status != STATUS_STREAMING

    @property
    def progress(self) -> Optional[float]:
        """Percent complete, or None when the total is unknown."""
        if self.status == STATUS_COMPLETED:
            return 100.0
        if not self.total_bytes:
            return None
        percent = self.delivered_bytes / self.total_bytes * 100
        return round(min(percent, _MAX_RUNNING_PROGRESS), 2)

    def snapshot(self) -> dict[str, Any]:
        return {
            "delivery_id": self.delivery_id,
            "filename": self.filename,
            "status": self.status,
            "delivered_bytes": self.delivered_bytes,
            "total_bytes": self.total_bytes,
            "progress": self.progress,
            "error": self.error,
        }


class ProgressTracker:
    """Thread-safe store of :class:`DeliveryProgress` records."""

    def __init__(self, max_age_seconds: float | None = None) -> None:
        self._max_age = max_age_seconds or settings.PROGRESS_RETENTION_SECONDS
        self._records: dict[str, DeliveryProgress] = {}
        self._lock = threading.Lock()

    def create(self, filename: str = "", total_bytes: int = 0) -> DeliveryProgress:
        """Register a new delivery and return its record."""
        self.cleanup_stale()
        record = DeliveryProgress(
            delivery_id=uuid.uuid4().hex,
            filename=filename,
            total_bytes=max(0, total_bytes),
        )
        with self._lock:
            self._records[record.delivery_id] = record
        return record

    def get(self, delivery_id: str) -> Optional[DeliveryProgress]:
        with self._lock:
            return self._records.get(delivery_id)

    def snapshot(self, record: DeliveryProgress) -> dict[str, Any]:
        with self._lock:
            return record.snapshot()

    def advance(self, record: DeliveryProgress, size: int) -> None:
        with self._lock:
            record.delivered_bytes += size

    def finish(self, record: DeliveryProgress, error: str | None = None) -> None:
        """Mark *record* completed, or failed when *error* is given; first call wins."""
        with self._lock:
            if record.finished:
                return
            record.status = STATUS_FAILED if error else STATUS_COMPLETED
            record.error = error

    def cleanup_stale(self) -> None:
        """Drop records older than the retention window."""
        cutoff = time.time() - self._max_age
        with self._lock:
            stale_ids = [rid for rid, r in self._records.items() if r.created_at < cutoff]
            for rid in stale_ids:
                del self._records[rid]
        if stale_ids:
            logger.debug(f"Dropped {len(stale_ids)} stale delivery progress records")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
