"""Decide when the primary backend's catalog is good enough.

Some videos only expose low resolutions (≤360p) through the primary
backend.  In that case the secondary backend is asked once, under a hard
timeout, and its video and/or audio lists replace the primary ones
wholesale.  A failing or slow secondary backend never fails the request.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.models.catalog import Catalog
from app.services.backends import PrimaryBackend, PrimaryInfo, SecondaryBackend
from app.services.catalog import build_catalog, merge_catalogs
from app.services.errors import DegradedSourceError
from app.services.format_cache import FormatCache
from app.services.normalizer import normalize_primary, normalize_secondary
from app.services.url_utils import sanitize_url_for_logging

logger = get_logger(__name__)


@dataclass
class ResolvedMedia:
    """Primary metadata plus the final (possibly fallback) catalog."""

    info: PrimaryInfo
    catalog: Catalog
    content_id: str
    used_secondary: bool = False


class FallbackCoordinator:
    """Builds a catalog from the primary backend, falling back when it is thin."""

    def __init__(
        self,
        primary: PrimaryBackend,
        secondary: SecondaryBackend,
        cache: FormatCache,
        max_height: int | None = None,
        timeout_seconds: float | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._cache = cache
        self._max_height = settings.FALLBACK_MAX_HEIGHT if max_height is None else max_height
        self._timeout = timeout_seconds or settings.SECONDARY_BACKEND_TIMEOUT_SECONDS
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.SECONDARY_BACKEND_WORKERS,
            thread_name_prefix="secondary-backend",
        )

    def needs_fallback(self, catalog: Catalog) -> bool:
        """True when there is no video or the best height is at or below the threshold."""
        return not catalog.video_formats or catalog.highest_height <= self._max_height

    def resolve(self, url: str, content_id: Optional[str] = None, use_cache: bool = True) -> ResolvedMedia:
        """Resolve *url* into metadata and a ranked catalog.

        Raises:
            SourceUnavailableError: If the primary backend fails
        """
        info = self._primary.get_info(url)
        content_id = info.content_id or content_id
        catalog = build_catalog(normalize_primary(info.formats))

        if not self.needs_fallback(catalog):
            return ResolvedMedia(info=info, catalog=catalog, content_id=content_id)

        safe_url = sanitize_url_for_logging(url)
        logger.info(
            f"Primary catalog tops out at {catalog.highest_height}p for {safe_url}; "
            "consulting secondary backend"
        )

        raw_formats = self._secondary_formats(url, content_id, use_cache)
        if raw_formats is None:
            return ResolvedMedia(info=info, catalog=catalog, content_id=content_id)

        secondary = build_catalog(normalize_secondary(raw_formats))
        if not secondary.video_formats and not secondary.audio_formats:
            logger.warning(f"Secondary backend yielded no usable formats for {safe_url}")
            return ResolvedMedia(info=info, catalog=catalog, content_id=content_id)

        logger.info(
            f"Secondary catalog for {safe_url}: {len(secondary.video_formats)} video, "
            f"{len(secondary.audio_formats)} audio, top {secondary.highest_height}p"
        )
        return ResolvedMedia(
            info=info,
            catalog=merge_catalogs(catalog, secondary),
            content_id=content_id,
            used_secondary=True,
        )

    def _secondary_formats(
        self, url: str, content_id: Optional[str], use_cache: bool
    ) -> Optional[list[dict[str, Any]]]:
        """Raw secondary formats from the cache or a time-bounded backend call."""
        if use_cache:
            entry = self._cache.get(content_id)
            if entry is not None:
                return list(entry.raw_formats)

        future: Future = self._executor.submit(self._secondary.list_formats, url)
        try:
            listing = future.result(timeout=self._timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                f"Secondary backend timed out after {self._timeout:.0f}s; "
                "keeping primary catalog"
            )
            return None
        except DegradedSourceError as e:
            logger.warning(f"Secondary backend fallback failed: {e.message}")
            return None
        except Exception as e:
            logger.error(f"Secondary backend fallback error: {e}", exc_info=True)
            return None

        self._cache.put(listing.content_id or content_id, listing.formats)
        return listing.formats

    def shutdown(self) -> None:
        """Stop accepting secondary calls; running ones are not waited for."""
        self._executor.shutdown(wait=False, cancel_futures=True)
