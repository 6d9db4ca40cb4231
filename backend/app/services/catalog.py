"""Group, rank and deduplicate normalized format records."""

from dataclasses import asdict
from typing import Iterable

from app.core.logging import get_logger
from app.models.catalog import Catalog, FormatKind, FormatRecord, RankedFormat
from app.services.scoring import audio_score, video_only_score, video_score

logger = get_logger(__name__)


def classify(record: FormatRecord) -> FormatKind:
    """Return the track kind for a record with at least one track."""
    if record.has_video and record.has_audio:
        return FormatKind.PROGRESSIVE
    if record.has_video:
        return FormatKind.VIDEO_ONLY
    return FormatKind.AUDIO_ONLY


_SCORERS = {
    FormatKind.PROGRESSIVE: video_score,
    FormatKind.VIDEO_ONLY: video_only_score,
    FormatKind.AUDIO_ONLY: audio_score,
}


def rank(record: FormatRecord) -> RankedFormat:
    """Attach a quality score and kind to a record."""
    kind = classify(record)
    fields = asdict(record)
    fields.pop("quality_score", None)
    fields.pop("kind", None)
    return RankedFormat(**fields, quality_score=_SCORERS[kind](record), kind=kind)


def sort_by_score(formats: Iterable[RankedFormat]) -> tuple[RankedFormat, ...]:
    """Highest score first; ties keep their discovery order."""
    return tuple(sorted(formats, key=lambda f: f.quality_score, reverse=True))


def dedupe_video(formats: Iterable[RankedFormat]) -> tuple[RankedFormat, ...]:
    """Keep the first record for each (resolution, fps, kind) key."""
    seen: set[tuple] = set()
    deduped: list[RankedFormat] = []
    for fmt in formats:
        key = (fmt.width, fmt.height, fmt.fps, fmt.kind)
        if key in seen:
            continue
        seen.add(key)
        deduped.append(fmt)
    return tuple(deduped)


def build_catalog(records: Iterable[FormatRecord]) -> Catalog:
    """Partition records by kind, rank each partition and dedupe the video list."""
    ranked = [rank(record) for record in records if record.has_video or record.has_audio]

    progressive = sort_by_score(f for f in ranked if f.kind is FormatKind.PROGRESSIVE)
    video_only = sort_by_score(f for f in ranked if f.kind is FormatKind.VIDEO_ONLY)
    audio_only = sort_by_score(f for f in ranked if f.kind is FormatKind.AUDIO_ONLY)

    catalog = Catalog(
        video_formats=dedupe_video(progressive + video_only),
        audio_formats=audio_only,
        progressive=progressive,
        video_only=video_only,
    )
    logger.debug(
        "Catalog built: "
        f"progressive={[f'{f.label}:{f.format_id}' for f in progressive] or 'NONE'} "
        f"video_only={[f'{f.label}:{f.format_id}' for f in video_only] or 'NONE'} "
        f"audio={len(audio_only)}"
    )
    return catalog


def merge_catalogs(primary: Catalog, secondary: Catalog) -> Catalog:
    """Replace whole sides of *primary* with *secondary* where it has records.

    Video and audio are replaced independently and never mixed.
    """
    video_formats, progressive, video_only = (
        primary.video_formats, primary.progressive, primary.video_only
    )
    if secondary.video_formats:
        video_formats, progressive, video_only = (
            secondary.video_formats, secondary.progressive, secondary.video_only
        )
    audio_formats = secondary.audio_formats or primary.audio_formats
    return Catalog(
        video_formats=video_formats,
        audio_formats=audio_formats,
        progressive=progressive,
        video_only=video_only,
    )
