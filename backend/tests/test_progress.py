"""Tests for delivery progress tracking."""
import time

from app.models.catalog import DeliveryPlan, DeliveryStrategy, FormatRecord, RankedFormat
from app.services.catalog import rank
from app.services.progress import ProgressTracker


def sized(format_id: str, size: int, video: bool = True) -> RankedFormat:
    return rank(FormatRecord(
        format_id=format_id,
        has_video=video,
        has_audio=not video,
        container="mp4",
        width=1280 if video else 0,
        height=720 if video else 0,
        approx_size_bytes=size,
    ))


class TestProgressTracker:
    """Tests for progress records and their lifecycle."""

    def test_running_progress(self) -> None:
        """Test progress is bytes delivered over the estimate."""
        tracker = ProgressTracker()
        record = tracker.create(filename="Clip.mp4", total_bytes=1000)

        tracker.advance(record, 250)
        tracker.advance(record, 125)

        assert tracker.get(record.delivery_id) is record
        snapshot = tracker.snapshot(record)
        assert snapshot["status"] == "streaming"
        assert snapshot["delivered_bytes"] == 375
        assert snapshot["progress"] == 37.5

    def test_progress_capped_until_completed(self) -> None:
        """Test an undersized estimate never reports 100% while streaming."""
        tracker = ProgressTracker()
        record = tracker.create(total_bytes=100)

        tracker.advance(record, 150)
        assert record.progress == 99.0

        tracker.finish(record)
        assert record.progress == 100.0

    def test_unknown_total(self) -> None:
        """Test progress is None without a size estimate."""
        tracker = ProgressTracker()
        record = tracker.create(total_bytes=0)
        tracker.advance(record, 4096)

        assert record.progress is None

    def test_first_finish_wins(self) -> None:
        """Test a later finish call does not overwrite the outcome."""
        tracker = ProgressTracker()
        record = tracker.create()

        tracker.finish(record, error="Media pipeline exited with code 1")
        tracker.finish(record)
        tracker.finish(record, error="Client disconnected")

        assert record.status == "failed"
        assert record.error == "Media pipeline exited with code 1"

    def test_stale_records_dropped(self) -> None:
        """Test records older than the retention window are removed on create."""
        tracker = ProgressTracker(max_age_seconds=60)
        old = tracker.create()
        old.created_at = time.time() - 120

        fresh = tracker.create()

        assert tracker.get(old.delivery_id) is None
        assert tracker.get(fresh.delivery_id) is fresh
        assert len(tracker) == 1


class TestEstimatedSize:
    """Tests for delivery size estimates."""

    def test_passthrough_uses_source_size(self) -> None:
        """Test pass-through output is about the source size."""
        plan = DeliveryPlan(DeliveryStrategy.PASSTHROUGH, video_source=sized("22", 5000))
        assert plan.estimated_size_bytes == 5000

    def test_merge_sums_sources(self) -> None:
        """Test merged output is about video plus audio."""
        plan = DeliveryPlan(
            DeliveryStrategy.MERGE,
            video_source=sized("137", 8000),
            audio_source=sized("140", 1000, video=False),
        )
        assert plan.estimated_size_bytes == 9000

    def test_reencoded_output_unknown(self) -> None:
        """Test downscale and audio extraction have no estimate."""
        downscale = DeliveryPlan(
            DeliveryStrategy.TRANSCODE_DOWNSCALE,
            video_source=sized("137", 8000),
            target_width=854,
            target_height=480,
        )
        audio = DeliveryPlan(
            DeliveryStrategy.AUDIO_EXTRACT, audio_source=sized("140", 1000, video=False)
        )

        assert downscale.estimated_size_bytes == 0
        assert audio.estimated_size_bytes == 0
