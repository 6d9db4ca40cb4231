"""Map raw backend format descriptors onto :class:`FormatRecord`.

The primary backend (pytubefix adapter) reports explicit ``has_video`` /
``has_audio`` booleans and a ``content_length``; the secondary backend
(yt-dlp) reports codec strings and may leave any field out.  Each shape
gets its own pure mapping function so nothing downstream has to know
which backend a record came from.
"""

from typing import Any, Iterable, Optional

from app.core.logging import get_logger
from app.models.catalog import FormatRecord

logger = get_logger(__name__)

CODEC_NONE = "none"


def _number(value: Any) -> float:
    """Coerce a possibly-missing numeric field to a non-negative number."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


def _dimensions(width: Any, height: Any) -> tuple[int, int]:
    w, h = int(_number(width)), int(_number(height))
    if w and h:
        return w, h
    return 0, 0


def _has_codec(codec: Optional[str]) -> bool:
    return bool(codec) and codec != CODEC_NONE


def normalize_primary_format(raw: dict[str, Any]) -> Optional[FormatRecord]:
    """Normalize one primary-backend descriptor, or None to drop it."""
    itag = raw.get("itag")
    container = raw.get("container")
    has_video = bool(raw.get("has_video"))
    has_audio = bool(raw.get("has_audio"))
    if itag is None or not container or not (has_video or has_audio):
        return None

    width, height = _dimensions(raw.get("width"), raw.get("height"))
    return FormatRecord(
        format_id=str(itag),
        has_video=has_video,
        has_audio=has_audio,
        container=str(container),
        width=width,
        height=height,
        fps=_number(raw.get("fps")),
        bitrate=_number(raw.get("bitrate")),
        audio_bitrate=_number(raw.get("audio_bitrate")),
        approx_size_bytes=int(_number(raw.get("content_length"))),
        source_url=raw.get("url") or None,
    )


def normalize_secondary_format(raw: dict[str, Any]) -> Optional[FormatRecord]:
    """Normalize one yt-dlp format dict, or None to drop it."""
    ext = raw.get("ext")
    if not ext or raw.get("format_id") is None:
        return None

    width, height = _dimensions(raw.get("width"), raw.get("height"))
    vcodec = raw.get("vcodec")
    if vcodec is None:
        has_video = bool(height)
    else:
        has_video = _has_codec(vcodec)
    has_audio = _has_codec(raw.get("acodec"))
    if not (has_video or has_audio):
        return None

    fps = raw.get("fps") or raw.get("video_fps")
    return FormatRecord(
        format_id=str(raw["format_id"]),
        has_video=has_video,
        has_audio=has_audio,
        container=str(ext),
        width=width if has_video else 0,
        height=height if has_video else 0,
        fps=_number(fps) if has_video else 0,
        # tbr is reported in kbps
        bitrate=_number(raw.get("tbr")) * 1000,
        audio_bitrate=_number(raw.get("abr")),
        approx_size_bytes=int(_number(raw.get("filesize") or raw.get("filesize_approx"))),
        source_url=raw.get("url") or None,
    )


def normalize_primary(raw_formats: Iterable[dict[str, Any]]) -> list[FormatRecord]:
    """Normalize a primary-backend format list, keeping discovery order."""
    return _normalize_all(raw_formats, normalize_primary_format)


def normalize_secondary(raw_formats: Iterable[dict[str, Any]]) -> list[FormatRecord]:
    """Normalize a yt-dlp format list, keeping discovery order."""
    return _normalize_all(raw_formats, normalize_secondary_format)


def _normalize_all(raw_formats, mapper) -> list[FormatRecord]:
    records: list[FormatRecord] = []
    dropped = 0
    for raw in raw_formats or ():
        if not isinstance(raw, dict):
            dropped += 1
            continue
        record = mapper(raw)
        if record is None:
            dropped += 1
            continue
        records.append(record)
    if dropped:
        logger.debug(f"Dropped {dropped} format descriptors without an id, container or tracks")
    return records
