"""Backend-agnostic value objects for format catalogs and delivery plans.

These are produced per request and never shared between requests; the
only shared state is the secondary-results cache in
:mod:`app.services.format_cache`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class FormatKind(str, Enum):
    """Which media tracks a format carries."""

    PROGRESSIVE = "progressive"
    VIDEO_ONLY = "video_only"
    AUDIO_ONLY = "audio_only"
    SYNTHETIC = "synthetic_downscale"


class DeliveryStrategy(str, Enum):
    """How a delivery request is turned into bytes."""

    PASSTHROUGH = "passthrough"
    MERGE = "merge"
    TRANSCODE_DOWNSCALE = "transcode_downscale"
    AUDIO_EXTRACT = "audio_extract"


class MediaKind(str, Enum):
    """Requested output kind on the delivery call."""

    VIDEO = "video"
    AUDIO = "audio"


@dataclass(frozen=True)
class FormatRecord:
    """Canonical format descriptor, independent of the backend it came from.

    ``width``/``height`` are both positive or both ``0`` (unknown).
    ``bitrate`` is in bits per second, ``audio_bitrate`` in kbps.
    """

    format_id: str
    has_video: bool
    has_audio: bool
    container: str
    width: int = 0
    height: int = 0
    fps: float = 0
    bitrate: float = 0
    audio_bitrate: float = 0
    approx_size_bytes: int = 0
    source_url: Optional[str] = None

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def has_resolution(self) -> bool:
        return self.width > 0 and self.height > 0

    @property
    def aspect_ratio(self) -> float:
        if not self.has_resolution:
            return 16 / 9
        return self.width / self.height


@dataclass(frozen=True)
class RankedFormat(FormatRecord):
    """A FormatRecord with its quality score and track kind."""

    quality_score: float = 0
    kind: FormatKind = FormatKind.PROGRESSIVE

    @property
    def label(self) -> str:
        if self.kind is FormatKind.AUDIO_ONLY:
            return f"{int(self.audio_bitrate)}kbps" if self.audio_bitrate else "Audio"
        if self.height:
            fps = f"{int(self.fps)}" if self.fps > 30 else ""
            return f"{self.height}p{fps}"
        return "Unknown"


@dataclass(frozen=True)
class Catalog:
    """Ranked formats split by kind.

    ``video_formats`` is progressive followed by video-only, deduplicated;
    ``progressive`` and ``video_only`` keep every ranked record so exact
    format lookups still succeed for duplicates.
    """

    video_formats: tuple[RankedFormat, ...] = ()
    audio_formats: tuple[RankedFormat, ...] = ()
    progressive: tuple[RankedFormat, ...] = ()
    video_only: tuple[RankedFormat, ...] = ()

    @property
    def highest_height(self) -> int:
        return max((f.height for f in self.video_formats), default=0)


@dataclass(frozen=True)
class LadderEntry:
    """One rung of the quality menu exposed to clients."""

    id: str
    target_height: int
    synthetic: bool
    standardized: bool
    width: int
    height: int
    fps: float
    bitrate: float
    has_audio: bool
    container: str
    kind: FormatKind
    label: str
    quality_score: float
    approx_size_bytes: int = 0
    source_format_id: Optional[str] = None


@dataclass(frozen=True)
class CacheEntry:
    """Raw secondary-backend formats remembered for one content id."""

    content_id: str
    created_at: float
    raw_formats: tuple[dict[str, Any], ...]

    def find(self, format_id: str) -> Optional[dict[str, Any]]:
        return next(
            (raw for raw in self.raw_formats if str(raw.get("format_id")) == format_id),
            None,
        )


# ---------------------------------------------------------------------------
# Quality tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BestQuality:
    """``best``: highest quality, progressive preferred."""


@dataclass(frozen=True)
class FormatReference:
    """``itag_<id>`` or a bare legacy id: one exact format."""

    format_id: str
    legacy: bool = False


@dataclass(frozen=True)
class ScaleRequest:
    """``scale_<height>``: a synthetic downscale rung."""

    height: int


QualityToken = Union[BestQuality, FormatReference, ScaleRequest]


@dataclass(frozen=True)
class DeliveryPlan:
    """The chosen strategy and the source(s) it needs."""

    strategy: DeliveryStrategy
    video_source: Optional[RankedFormat] = None
    audio_source: Optional[RankedFormat] = None
    target_width: Optional[int] = None
    target_height: Optional[int] = None
    degraded: bool = False
    used_cached_url: bool = False

    @property
    def quality_tag(self) -> str:
        if self.strategy is DeliveryStrategy.AUDIO_EXTRACT:
            source = self.audio_source
            if source is not None and source.audio_bitrate:
                return f"audio {int(source.audio_bitrate)}kbps"
            return "audio"
        if self.strategy is DeliveryStrategy.TRANSCODE_DOWNSCALE:
            return f"{self.target_height}p"
        source = self.video_source
        if source is None or not source.height:
            return "video"
        tag = f"{source.height}p"
        if source.fps:
            tag += f",{int(source.fps)}fps"
        return tag

    @property
    def estimated_size_bytes(self) -> int:
        """Output size guess from source sizes; 0 when re-encoding makes it unknowable."""
        if self.strategy is DeliveryStrategy.PASSTHROUGH and self.video_source is not None:
            return self.video_source.approx_size_bytes
        if self.strategy is DeliveryStrategy.MERGE:
            sources = (self.video_source, self.audio_source)
            return sum(s.approx_size_bytes for s in sources if s is not None)
        return 0


@dataclass
class MediaCatalog:
    """Result of the catalog-resolution call."""

    content_id: str
    title: str
    author: str
    duration_seconds: Optional[int]
    view_count: Optional[int]
    thumbnail_url: Optional[str]
    video_formats: list[LadderEntry] = field(default_factory=list)
    audio_formats: list[RankedFormat] = field(default_factory=list)
