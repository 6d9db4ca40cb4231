"""Catalog resolution and delivery, as called by the HTTP layer."""

import subprocess
from dataclasses import dataclass
from typing import Any

from app.core.config import settings
from app.core.logging import get_logger
from app.models.catalog import DeliveryPlan, MediaCatalog, MediaKind
from app.services.backends import PrimaryBackend, SecondaryBackend
from app.services.delivery import DeliveryPlanner, parse_quality_token
from app.services.errors import InvalidInputError, PipelineFailureError
from app.services.fallback import FallbackCoordinator
from app.services.format_cache import FormatCache
from app.services.ladder import build_ladder
from app.services.pipeline import OUTPUT_FORMATS, PipelineAssembler, PipelineJob
from app.services.url_utils import (
    build_download_filename,
    require_content_id,
    sanitize_url_for_logging,
)

logger = get_logger(__name__)


@dataclass
class Delivery:
    """A started pipeline plus what the response needs to describe it."""

    job: PipelineJob
    first_chunk: bytes
    filename: str
    content_type: str
    plan: DeliveryPlan


class MediaService:
    """Facade over the coordinator, planner and assembler."""

    def __init__(
        self,
        coordinator: FallbackCoordinator,
        planner: DeliveryPlanner,
        assembler: PipelineAssembler,
        cache: FormatCache,
        primary: PrimaryBackend,
    ) -> None:
        self.coordinator = coordinator
        self.planner = planner
        self.assembler = assembler
        self.cache = cache
        self.primary = primary

    @classmethod
    def create(
        cls,
        primary: PrimaryBackend | None = None,
        secondary: SecondaryBackend | None = None,
        cache: FormatCache | None = None,
    ) -> "MediaService":
        """Wire up the default collaborators from settings."""
        primary = primary or PrimaryBackend()
        secondary = secondary or SecondaryBackend()
        cache = cache or FormatCache(
            ttl_seconds=settings.FORMATS_CACHE_TTL_SECONDS,
            maxsize=settings.FORMATS_CACHE_MAXSIZE,
        )
        return cls(
            coordinator=FallbackCoordinator(primary, secondary, cache),
            planner=DeliveryPlanner(cache),
            assembler=PipelineAssembler(secondary),
            cache=cache,
            primary=primary,
        )

    def shutdown(self) -> None:
        self.coordinator.shutdown()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def resolve_catalog(self, url: str) -> MediaCatalog:
        """Resolve *url* into metadata, the video ladder and ranked audio.

        Raises:
            InvalidUrlError: If URL is invalid or blocked
            SourceUnavailableError: If the primary backend fails
        """
        normalized, content_id = require_content_id(url)
        resolved = self.coordinator.resolve(normalized, content_id)
        info = resolved.info

        ladder = build_ladder(resolved.catalog.video_formats)
        logger.info(
            f"Catalog for {resolved.content_id}: {len(ladder)} ladder entries "
            f"({sum(e.synthetic for e in ladder)} synthetic), "
            f"{len(resolved.catalog.audio_formats)} audio formats"
        )
        return MediaCatalog(
            content_id=resolved.content_id,
            title=info.title,
            author=info.author,
            duration_seconds=info.duration_seconds,
            view_count=info.view_count,
            thumbnail_url=info.thumbnail_url,
            video_formats=ladder,
            audio_formats=list(resolved.catalog.audio_formats),
        )

    def debug_formats(self, url: str) -> dict[str, Any]:
        """Raw primary-backend formats grouped by height, for diagnosis."""
        normalized, _ = require_content_id(url)
        info = self.primary.get_info(normalized)

        heights: dict[str, list[str]] = {}
        for raw in info.formats:
            key = str(raw.get("height") or "unknown")
            if raw.get("has_video") and raw.get("has_audio"):
                suffix = ":prog"
            elif raw.get("has_video"):
                suffix = ":v"
            elif raw.get("has_audio"):
                suffix = ":a"
            else:
                suffix = ""
            heights.setdefault(key, []).append(f"{raw.get('itag')}{suffix}")

        raw_view = [{k: v for k, v in raw.items() if k != "url"} for raw in info.formats]
        return {
            "content_id": info.content_id,
            "title": info.title,
            "heights": heights,
            "total_formats": len(info.formats),
            "raw": raw_view,
        }

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(self, url: str, kind: str = "video", quality: str | None = None) -> Delivery:
        """Plan and start a delivery, returning once the first bytes exist.

        Raises:
            InvalidInputError: Bad URL, kind or quality token
            SourceUnavailableError: If the primary backend fails
            FormatNotFoundError: If the quality names nothing in the catalog
            NoViableSourceError: If there is nothing to deliver at all
            PipelineFailureError: If the job fails before producing output
        """
        normalized, content_id = require_content_id(url)
        try:
            media_kind = MediaKind(kind)
        except ValueError:
            raise InvalidInputError(f"Unsupported kind '{kind}' (expected video or audio)")
        token = parse_quality_token(quality)

        resolved = self.coordinator.resolve(normalized, content_id)
        plan = self.planner.plan(token, resolved.catalog, resolved.content_id, media_kind)
        try:
            return self._start(plan, normalized, resolved.info.title)
        except PipelineFailureError:
            if not plan.used_cached_url:
                raise
            # Cached direct URLs can expire upstream before our TTL does
            logger.warning(
                f"Cached source URL failed for {resolved.content_id}; retrying with fresh formats"
            )
            self.cache.invalidate(resolved.content_id)

        resolved = self.coordinator.resolve(normalized, content_id, use_cache=False)
        plan = self.planner.plan(
            token, resolved.catalog, resolved.content_id, media_kind, use_cache=False
        )
        return self._start(plan, normalized, resolved.info.title)

    def _start(self, plan: DeliveryPlan, page_url: str, title: str) -> Delivery:
        job = self.assembler.start(plan, page_url)
        try:
            first_chunk = job.read(settings.STREAM_CHUNK_SIZE)
        except OSError as e:
            job.terminate()
            raise PipelineFailureError(f"Media pipeline failed: {e}")

        if not first_chunk:
            try:
                return_code = job.wait(timeout=5)
            except subprocess.TimeoutExpired:
                return_code = None
            job.terminate()
            logger.error(
                f"ffmpeg {job.description} job produced no output (exit {return_code}) "
                f"for {sanitize_url_for_logging(page_url)}: {job.stderr_text[:500]}"
            )
            raise PipelineFailureError("Media pipeline produced no output")

        ext, content_type = OUTPUT_FORMATS[plan.strategy]
        return Delivery(
            job=job,
            first_chunk=first_chunk,
            filename=build_download_filename(title, ext, plan.quality_tag),
            content_type=content_type,
            plan=plan,
        )
