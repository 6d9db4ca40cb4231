"""Comparable quality scores for canonical format records."""

from app.models.catalog import FormatRecord

# Subtracted from video-only scores so a progressive stream wins when the
# quality is otherwise equal (it needs no merge step).
VIDEO_ONLY_PENALTY = 5

# (minimum pixel count, points), highest first
RESOLUTION_BANDS = (
    (3840 * 2160, 100),
    (1920 * 1080, 80),
    (1280 * 720, 60),
    (854 * 480, 40),
)
RESOLUTION_FLOOR = 20

FPS_BANDS = ((60, 20), (30, 15), (24, 10))
FPS_FLOOR = 5

BITRATE_POINTS_CAP = 20

# (minimum kbps, points), highest first
AUDIO_BANDS = ((320, 100), (256, 80), (192, 60), (128, 40))
AUDIO_FLOOR = 20


def _band(value: float, bands: tuple[tuple[float, int], ...], floor: int) -> int:
    for threshold, points in bands:
        if value >= threshold:
            return points
    return floor


def resolution_band(pixels: int) -> int:
    """Points for a pixel count; 0 when the resolution is unknown."""
    if pixels <= 0:
        return 0
    return _band(pixels, RESOLUTION_BANDS, RESOLUTION_FLOOR)


def fps_band(fps: float) -> int:
    """Points for a frame rate; 0 when the frame rate is unknown."""
    if fps <= 0:
        return 0
    return _band(fps, FPS_BANDS, FPS_FLOOR)


def video_score(record: FormatRecord) -> float:
    """Score a video-bearing record: resolution, then fps, then bitrate."""
    score = resolution_band(record.area) + fps_band(record.fps)
    if record.bitrate > 0:
        score += min(record.bitrate / 1000, BITRATE_POINTS_CAP)
    return score


def video_only_score(record: FormatRecord) -> float:
    """Score a record that needs a separate audio track."""
    return video_score(record) - VIDEO_ONLY_PENALTY


def audio_score(record: FormatRecord) -> float:
    """Score an audio-only record by its bitrate band."""
    if record.audio_bitrate <= 0:
        return 0
    return _band(record.audio_bitrate, AUDIO_BANDS, AUDIO_FLOOR)
