"""Tests for quality tokens and delivery planning."""
import pytest

from app.models.catalog import (
    BestQuality,
    DeliveryStrategy,
    FormatRecord,
    FormatReference,
    MediaKind,
    ScaleRequest,
)
from app.services.catalog import build_catalog
from app.services.delivery import LAST_RESORT_AUDIO, DeliveryPlanner, parse_quality_token
from app.services.errors import FormatNotFoundError, InvalidInputError, NoViableSourceError
from app.services.format_cache import FormatCache


def fmt(
    format_id: str,
    height: int = 0,
    video: bool = True,
    audio: bool = False,
    kbps: float = 0,
) -> FormatRecord:
    return FormatRecord(
        format_id=format_id,
        has_video=video,
        has_audio=audio,
        container="mp4" if video else "m4a",
        width=height * 16 // 9 if video else 0,
        height=height if video else 0,
        fps=30 if video else 0,
        bitrate=2_000_000 if video else 128_000,
        audio_bitrate=kbps,
        source_url=f"https://primary.example/{format_id}",
    )


SPLIT_CATALOG = build_catalog([
    fmt("18", 360, audio=True),
    fmt("137", 1080),
    fmt("136", 720),
    fmt("140", video=False, audio=True, kbps=128),
    fmt("251", video=False, audio=True, kbps=192),
])
VIDEO_ONLY_CATALOG = build_catalog([fmt("137", 1080), fmt("136", 720)])


class TestParseQualityToken:
    """Tests for quality token parsing."""

    @pytest.mark.parametrize("raw", [None, "", "best", "BEST", "  best "])
    def test_best(self, raw) -> None:
        """Test empty and best tokens."""
        assert parse_quality_token(raw) == BestQuality()

    def test_format_reference(self) -> None:
        """Test prefixed and bare format ids."""
        assert parse_quality_token("itag_137") == FormatReference("137")
        assert parse_quality_token("137") == FormatReference("137", legacy=True)
        assert parse_quality_token("hls-720p") == FormatReference("hls-720p", legacy=True)

    def test_scale_request(self) -> None:
        """Test downscale tokens."""
        assert parse_quality_token("scale_480") == ScaleRequest(480)

    @pytest.mark.parametrize(
        "raw", ["scale_abc", "scale_0", "scale_-1", "itag_", "itag_a b", "rm -rf;", "137/best"]
    )
    def test_invalid_tokens(self, raw: str) -> None:
        """Test malformed tokens are rejected."""
        with pytest.raises(InvalidInputError):
            parse_quality_token(raw)


class TestVideoPlans:
    """Tests for video delivery planning."""

    def test_best_prefers_progressive(self, cache: FormatCache) -> None:
        """Test best picks a progressive format when one exists."""
        plan = DeliveryPlanner(cache).plan(BestQuality(), SPLIT_CATALOG)

        assert plan.strategy is DeliveryStrategy.PASSTHROUGH
        assert plan.video_source.format_id == "18"
        assert plan.audio_source is None

    def test_best_merges_video_only(self, cache: FormatCache) -> None:
        """Test best on a video-only catalog merges the top audio."""
        catalog = build_catalog([
            fmt("137", 1080), fmt("136", 720), fmt("251", video=False, audio=True, kbps=192)
        ])

        plan = DeliveryPlanner(cache).plan(BestQuality(), catalog)

        assert plan.strategy is DeliveryStrategy.MERGE
        assert plan.video_source.format_id == "137"
        assert plan.audio_source.format_id == "251"
        assert not plan.degraded
        assert plan.quality_tag == "1080p,30fps"

    def test_format_reference(self, cache: FormatCache) -> None:
        """Test exact references choose passthrough or merge by tracks."""
        planner = DeliveryPlanner(cache)

        assert planner.plan(FormatReference("18"), SPLIT_CATALOG).strategy is DeliveryStrategy.PASSTHROUGH
        assert planner.plan(FormatReference("18", legacy=True), SPLIT_CATALOG).video_source.format_id == "18"
        merge = planner.plan(FormatReference("136"), SPLIT_CATALOG)
        assert merge.strategy is DeliveryStrategy.MERGE
        assert merge.audio_source.format_id == "251"

    def test_audio_only_reference_not_found_for_video(self, cache: FormatCache) -> None:
        """Test an audio format id cannot be delivered as video."""
        with pytest.raises(FormatNotFoundError):
            DeliveryPlanner(cache).plan(FormatReference("140"), SPLIT_CATALOG)

    def test_unknown_reference(self, cache: FormatCache) -> None:
        """Test an unknown id is not found."""
        with pytest.raises(FormatNotFoundError):
            DeliveryPlanner(cache).plan(FormatReference("999"), SPLIT_CATALOG)

    def test_downscale(self, cache: FormatCache) -> None:
        """Test scale_480 transcodes the tallest source to an even width."""
        plan = DeliveryPlanner(cache).plan(ScaleRequest(480), SPLIT_CATALOG)

        assert plan.strategy is DeliveryStrategy.TRANSCODE_DOWNSCALE
        assert plan.video_source.format_id == "137"
        assert plan.audio_source.format_id == "251"
        assert plan.target_height == 480
        assert plan.target_width == 854
        assert abs(plan.target_width - 480 * 16 / 9) <= 1
        assert plan.quality_tag == "480p"

    def test_downscale_progressive_source_needs_no_audio(self, cache: FormatCache) -> None:
        """Test a progressive source keeps its own audio track."""
        catalog = build_catalog([fmt("22", 720, audio=True)])

        plan = DeliveryPlanner(cache).plan(ScaleRequest(480), catalog)

        assert plan.video_source.format_id == "22"
        assert plan.audio_source is None

    def test_downscale_without_taller_source(self, cache: FormatCache) -> None:
        """Test a downscale must come from a strictly taller source."""
        with pytest.raises(FormatNotFoundError):
            DeliveryPlanner(cache).plan(ScaleRequest(1080), SPLIT_CATALOG)

    def test_last_resort_audio(self, cache: FormatCache) -> None:
        """Test a merge without standalone audio is degraded, not failed."""
        plan = DeliveryPlanner(cache).plan(BestQuality(), VIDEO_ONLY_CATALOG)

        assert plan.strategy is DeliveryStrategy.MERGE
        assert plan.audio_source is LAST_RESORT_AUDIO
        assert plan.degraded

    def test_no_video_formats(self, cache: FormatCache) -> None:
        """Test a catalog without video cannot be delivered as video."""
        catalog = build_catalog([fmt("140", video=False, audio=True, kbps=128)])

        with pytest.raises(NoViableSourceError):
            DeliveryPlanner(cache).plan(BestQuality(), catalog)


class TestAudioPlans:
    """Tests for audio delivery planning."""

    def test_best_audio(self, cache: FormatCache) -> None:
        """Test best picks the top-ranked audio format."""
        plan = DeliveryPlanner(cache).plan(BestQuality(), SPLIT_CATALOG, kind=MediaKind.AUDIO)

        assert plan.strategy is DeliveryStrategy.AUDIO_EXTRACT
        assert plan.audio_source.format_id == "251"
        assert plan.video_source is None
        assert plan.quality_tag == "audio 192kbps"

    def test_audio_reference(self, cache: FormatCache) -> None:
        """Test exact audio references."""
        planner = DeliveryPlanner(cache)

        assert planner.plan(FormatReference("140"), SPLIT_CATALOG, kind=MediaKind.AUDIO).audio_source.format_id == "140"
        with pytest.raises(FormatNotFoundError):
            planner.plan(FormatReference("137"), SPLIT_CATALOG, kind=MediaKind.AUDIO)

    def test_scale_not_allowed_for_audio(self, cache: FormatCache) -> None:
        """Test downscale tokens are rejected for audio."""
        with pytest.raises(InvalidInputError):
            DeliveryPlanner(cache).plan(ScaleRequest(480), SPLIT_CATALOG, kind=MediaKind.AUDIO)

    def test_no_audio_formats(self, cache: FormatCache) -> None:
        """Test a catalog without audio cannot be delivered as audio."""
        with pytest.raises(NoViableSourceError):
            DeliveryPlanner(cache).plan(BestQuality(), VIDEO_ONLY_CATALOG, kind=MediaKind.AUDIO)


class TestCachedUrls:
    """Tests for swapping in cached direct URLs."""

    def test_cached_url_replaces_source_url(self, cache: FormatCache) -> None:
        """Test matching cache entries override source URLs."""
        cache.put("vid", [{"format_id": "137", "url": "https://cached.example/137"}])
        catalog = build_catalog([fmt("137", 1080), fmt("251", video=False, audio=True, kbps=192)])

        plan = DeliveryPlanner(cache).plan(BestQuality(), catalog, content_id="vid")

        assert plan.used_cached_url
        assert plan.video_source.source_url == "https://cached.example/137"
        assert plan.audio_source.source_url == "https://primary.example/251"

    def test_cache_miss_leaves_plan(self, cache: FormatCache) -> None:
        """Test other content ids and bypass leave URLs alone."""
        cache.put("other", [{"format_id": "137", "url": "https://cached.example/137"}])
        cache.put("vid", [{"format_id": "137", "url": "https://cached.example/137"}])
        planner = DeliveryPlanner(cache)

        assert not planner.plan(BestQuality(), VIDEO_ONLY_CATALOG, content_id="none").used_cached_url
        plan = planner.plan(BestQuality(), VIDEO_ONLY_CATALOG, content_id="vid", use_cache=False)
        assert not plan.used_cached_url
        assert plan.video_source.source_url == "https://primary.example/137"

    def test_last_resort_audio_never_cached(self, cache: FormatCache) -> None:
        """Test the last-resort stream is not matched against the cache."""
        cache.put("vid", [{"format_id": "bestaudio", "url": "https://cached.example/a"}])

        plan = DeliveryPlanner(cache).plan(BestQuality(), VIDEO_ONLY_CATALOG, content_id="vid")

        assert plan.audio_source is LAST_RESORT_AUDIO
        assert not plan.used_cached_url
