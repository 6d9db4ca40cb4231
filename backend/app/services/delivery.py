"""Quality-token parsing and delivery-strategy selection.

A quality token from the client is parsed exactly once into one of
:class:`BestQuality`, :class:`FormatReference` or :class:`ScaleRequest`;
the planner then walks a fixed decision tree to pick a strategy and the
source formats it needs.
"""

import re
from dataclasses import replace
from typing import Iterable, Optional

from app.core.logging import get_logger
from app.models.catalog import (
    BestQuality,
    CacheEntry,
    Catalog,
    DeliveryPlan,
    DeliveryStrategy,
    FormatKind,
    FormatReference,
    MediaKind,
    QualityToken,
    RankedFormat,
    ScaleRequest,
)
from app.services.errors import FormatNotFoundError, InvalidInputError, NoViableSourceError
from app.services.format_cache import FormatCache
from app.services.ladder import even_width

logger = get_logger(__name__)

BEST_TOKEN = "best"
FORMAT_PREFIX = "itag_"
SCALE_PREFIX = "scale_"

# Format ids end up on a yt-dlp command line; keep them boring
FORMAT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Opened as a streamed fetch when no standalone audio format is known
LAST_RESORT_AUDIO = RankedFormat(
    format_id="bestaudio",
    has_video=False,
    has_audio=True,
    container="m4a",
    kind=FormatKind.AUDIO_ONLY,
)


def parse_quality_token(raw: Optional[str]) -> QualityToken:
    """Parse ``best`` / ``itag_<id>`` / ``scale_<h>`` / bare id.

    Raises:
        InvalidInputError: For tokens that fit none of the forms
    """
    token = (raw or "").strip()
    if not token or token.lower() == BEST_TOKEN:
        return BestQuality()

    if token.startswith(SCALE_PREFIX):
        height = token[len(SCALE_PREFIX):]
        if not height.isdigit() or int(height) <= 0:
            raise InvalidInputError(f"Invalid downscale height in quality '{token}'")
        return ScaleRequest(height=int(height))

    if token.startswith(FORMAT_PREFIX):
        format_id = token[len(FORMAT_PREFIX):]
        if not FORMAT_ID_PATTERN.match(format_id):
            raise InvalidInputError(f"Invalid format id in quality '{token}'")
        return FormatReference(format_id=format_id)

    if FORMAT_ID_PATTERN.match(token):
        return FormatReference(format_id=token, legacy=True)

    raise InvalidInputError(f"Unrecognised quality '{token}'")


def pick_best(formats: Iterable[RankedFormat]) -> Optional[RankedFormat]:
    """Largest pixel area, then highest bitrate; first one wins ties."""
    best: Optional[RankedFormat] = None
    for fmt in formats:
        if best is None or (fmt.area, fmt.bitrate) > (best.area, best.bitrate):
            best = fmt
    return best


def _find(formats: Iterable[RankedFormat], format_id: str) -> Optional[RankedFormat]:
    return next((f for f in formats if f.format_id == format_id), None)


class DeliveryPlanner:
    """Turns a quality token and a catalog into a :class:`DeliveryPlan`."""

    def __init__(self, cache: FormatCache) -> None:
        self._cache = cache

    def plan(
        self,
        token: QualityToken,
        catalog: Catalog,
        content_id: Optional[str] = None,
        kind: MediaKind = MediaKind.VIDEO,
        use_cache: bool = True,
    ) -> DeliveryPlan:
        """Choose a strategy for *token*.

        Raises:
            FormatNotFoundError: The token names nothing in the catalog
            NoViableSourceError: The catalog has no usable source at all
            InvalidInputError: The token does not apply to *kind*
        """
        if kind is MediaKind.AUDIO:
            plan = self._plan_audio(token, catalog)
        else:
            plan = self._plan_video(token, catalog)

        if use_cache:
            plan = self._apply_cached_urls(plan, self._cache.get(content_id))
        logger.info(
            f"Delivery plan for {content_id}: {plan.strategy.value} "
            f"video={plan.video_source.format_id if plan.video_source else None} "
            f"audio={plan.audio_source.format_id if plan.audio_source else None}"
        )
        return plan

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    def _plan_video(self, token: QualityToken, catalog: Catalog) -> DeliveryPlan:
        if not catalog.progressive and not catalog.video_only:
            raise NoViableSourceError("No video formats available for this content")

        if isinstance(token, ScaleRequest):
            return self._plan_downscale(token.height, catalog)

        if isinstance(token, FormatReference):
            source = _find(catalog.progressive, token.format_id) or _find(
                catalog.video_only, token.format_id
            )
            if source is None:
                raise FormatNotFoundError(f"Format '{token.format_id}' not found in video formats")
        else:
            source = pick_best(catalog.progressive) or pick_best(catalog.video_only)

        if source.has_audio:
            return DeliveryPlan(strategy=DeliveryStrategy.PASSTHROUGH, video_source=source)

        audio, degraded = self._audio_for(catalog)
        return DeliveryPlan(
            strategy=DeliveryStrategy.MERGE,
            video_source=source,
            audio_source=audio,
            degraded=degraded,
        )

    def _plan_downscale(self, height: int, catalog: Catalog) -> DeliveryPlan:
        source = pick_best(f for f in catalog.video_only if f.height > height) or pick_best(
            f for f in catalog.progressive if f.height > height
        )
        if source is None:
            raise FormatNotFoundError(f"No source taller than {height}p to downscale from")

        audio, degraded = (None, False) if source.has_audio else self._audio_for(catalog)
        return DeliveryPlan(
            strategy=DeliveryStrategy.TRANSCODE_DOWNSCALE,
            video_source=source,
            audio_source=audio,
            target_width=even_width(height, source.aspect_ratio),
            target_height=height,
            degraded=degraded,
        )

    def _audio_for(self, catalog: Catalog) -> tuple[RankedFormat, bool]:
        """Best standalone audio, or the last-resort stream flagged as degraded."""
        if catalog.audio_formats:
            return catalog.audio_formats[0], False
        logger.warning("No standalone audio format in catalog; planning last-resort audio stream")
        return LAST_RESORT_AUDIO, True

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def _plan_audio(self, token: QualityToken, catalog: Catalog) -> DeliveryPlan:
        if isinstance(token, ScaleRequest):
            raise InvalidInputError("Downscale qualities only apply to video downloads")
        if not catalog.audio_formats:
            raise NoViableSourceError("No audio formats available for this content")

        if isinstance(token, FormatReference):
            source = _find(catalog.audio_formats, token.format_id)
            if source is None:
                raise FormatNotFoundError(f"Format '{token.format_id}' not found in audio formats")
        else:
            source = catalog.audio_formats[0]
        return DeliveryPlan(strategy=DeliveryStrategy.AUDIO_EXTRACT, audio_source=source)

    # ------------------------------------------------------------------
    # Cached direct URLs
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_cached_urls(plan: DeliveryPlan, entry: Optional[CacheEntry]) -> DeliveryPlan:
        """Swap in direct URLs from the secondary cache where the ids match."""
        if entry is None:
            return plan

        used = False

        def _cached(source: Optional[RankedFormat]) -> Optional[RankedFormat]:
            nonlocal used
            if source is None or source is LAST_RESORT_AUDIO:
                return source
            raw = entry.find(source.format_id)
            if raw is None or not raw.get("url"):
                return source
            used = True
            return replace(source, source_url=raw["url"])

        video, audio = _cached(plan.video_source), _cached(plan.audio_source)
        if not used:
            return plan
        logger.debug(f"Using cached direct URL(s) for {entry.content_id}")
        return replace(plan, video_source=video, audio_source=audio, used_cached_url=True)
