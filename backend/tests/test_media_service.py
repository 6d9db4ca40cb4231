"""Tests for the MediaService facade."""
from typing import Generator
from unittest.mock import MagicMock

import pytest

from app.models.catalog import DeliveryStrategy
from app.services.errors import InvalidInputError, InvalidUrlError, PipelineFailureError
from app.services.format_cache import FormatCache
from app.services.media_service import MediaService
from app.services.pipeline import PipelineAssembler
from fakes import VIDEO_ID, VIDEO_URL, FakeJob, FakePrimary, FakeSecondary, primary_format, secondary_format

LOW_RES = [
    primary_format(18, height=360, has_audio=True),
    primary_format(140, has_video=False, has_audio=True, audio_bitrate=128),
]
HIGH_RES = [
    primary_format(18, height=360, has_audio=True),
    primary_format(137, height=1080),
    primary_format(140, has_video=False, has_audio=True, audio_bitrate=128),
]


@pytest.fixture
def assembler() -> MagicMock:
    return MagicMock(spec=PipelineAssembler)


def build_service(
    primary: FakePrimary,
    secondary: FakeSecondary,
    cache: FormatCache,
    assembler: MagicMock,
) -> MediaService:
    service = MediaService.create(primary=primary, secondary=secondary, cache=cache)
    service.assembler = assembler
    return service


@pytest.fixture
def services() -> Generator[list[MediaService], None, None]:
    created: list[MediaService] = []
    yield created
    for service in created:
        service.shutdown()


class TestResolveCatalog:
    """Tests for catalog resolution."""

    def test_catalog_with_ladder(self, services, cache: FormatCache, assembler: MagicMock) -> None:
        """Test metadata, ladder and audio list are returned."""
        service = build_service(FakePrimary(HIGH_RES), FakeSecondary(), cache, assembler)
        services.append(service)

        catalog = service.resolve_catalog(VIDEO_URL)

        assert catalog.content_id == VIDEO_ID
        assert catalog.title == "My: Test/Video?"
        assert [e.id for e in catalog.video_formats] == [
            "scale_144", "scale_240", "itag_18", "scale_480", "scale_720", "itag_137",
        ]
        assert [f.format_id for f in catalog.audio_formats] == ["140"]

    def test_rejects_non_video_urls(self, services, cache: FormatCache, assembler: MagicMock) -> None:
        """Test URLs without a content id are rejected before any backend call."""
        primary = FakePrimary(HIGH_RES)
        service = build_service(primary, FakeSecondary(), cache, assembler)
        services.append(service)

        with pytest.raises(InvalidUrlError):
            service.resolve_catalog("https://example.com/not-a-video")
        assert primary.calls == 0

    def test_debug_formats(self, services, cache: FormatCache, assembler: MagicMock) -> None:
        """Test raw formats are grouped by height without URLs."""
        service = build_service(FakePrimary(HIGH_RES), FakeSecondary(), cache, assembler)
        services.append(service)

        result = service.debug_formats(VIDEO_URL)

        assert result["heights"] == {"360": ["18:prog"], "1080": ["137:v"], "unknown": ["140:a"]}
        assert result["total_formats"] == 3
        assert all("url" not in raw for raw in result["raw"])


class TestDeliver:
    """Tests for starting deliveries."""

    def test_video_delivery(self, services, cache: FormatCache, assembler: MagicMock) -> None:
        """Test a delivery carries the first chunk and a tagged filename."""
        assembler.start.return_value = FakeJob([b"first", b"rest"])
        service = build_service(FakePrimary(HIGH_RES), FakeSecondary(), cache, assembler)
        services.append(service)

        delivery = service.deliver(VIDEO_URL, "video", "itag_137")

        assert delivery.first_chunk == b"first"
        assert delivery.plan.strategy is DeliveryStrategy.MERGE
        assert delivery.filename == "My Test Video [1080p,30fps].mp4"
        assert delivery.content_type == "video/mp4"

    def test_audio_delivery(self, services, cache: FormatCache, assembler: MagicMock) -> None:
        """Test audio deliveries are MP3."""
        assembler.start.return_value = FakeJob([b"id3"])
        service = build_service(FakePrimary(HIGH_RES), FakeSecondary(), cache, assembler)
        services.append(service)

        delivery = service.deliver(VIDEO_URL, "audio")

        assert delivery.plan.strategy is DeliveryStrategy.AUDIO_EXTRACT
        assert delivery.filename == "My Test Video [audio 128kbps].mp3"
        assert delivery.content_type == "audio/mpeg"

    def test_invalid_kind(self, services, cache: FormatCache, assembler: MagicMock) -> None:
        """Test unknown kinds are rejected."""
        service = build_service(FakePrimary(HIGH_RES), FakeSecondary(), cache, assembler)
        services.append(service)

        with pytest.raises(InvalidInputError):
            service.deliver(VIDEO_URL, "gif")

    def test_no_output_is_pipeline_failure(self, services, cache: FormatCache, assembler: MagicMock) -> None:
        """Test a job that closes without bytes fails before streaming."""
        job = FakeJob([], returncode=1)
        assembler.start.return_value = job
        service = build_service(FakePrimary(HIGH_RES), FakeSecondary(), cache, assembler)
        services.append(service)

        with pytest.raises(PipelineFailureError, match="no output"):
            service.deliver(VIDEO_URL)
        assert job.terminated
        assembler.start.assert_called_once()

    def test_cached_url_failure_retries_fresh(
        self, services, cache: FormatCache, assembler: MagicMock
    ) -> None:
        """Test a failing cached URL invalidates the cache and retries once."""
        secondary = FakeSecondary([
            secondary_format("137", height=1080),
            secondary_format("251", acodec="opus", abr=160, ext="webm"),
        ])
        service = build_service(FakePrimary(LOW_RES), secondary, cache, assembler)
        services.append(service)
        service.resolve_catalog(VIDEO_URL)
        assert secondary.calls == 1

        assembler.start.side_effect = [FakeJob([]), FakeJob([b"ok"])]

        delivery = service.deliver(VIDEO_URL, "video", "itag_137")

        first_plan = assembler.start.call_args_list[0].args[0]
        assert first_plan.used_cached_url
        assert not delivery.plan.used_cached_url
        assert delivery.first_chunk == b"ok"
        assert secondary.calls == 2

    def test_fresh_plan_failure_not_retried(
        self, services, cache: FormatCache, assembler: MagicMock
    ) -> None:
        """Test failures without cached URLs propagate immediately."""
        assembler.start.side_effect = PipelineFailureError("Failed to start media pipeline")
        service = build_service(FakePrimary(HIGH_RES), FakeSecondary(), cache, assembler)
        services.append(service)

        with pytest.raises(PipelineFailureError):
            service.deliver(VIDEO_URL)
        assembler.start.assert_called_once()
