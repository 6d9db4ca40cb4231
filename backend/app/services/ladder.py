"""Expand a ranked video catalog into a standard resolution ladder.

Missing rungs below the best source become synthetic ``scale_<h>``
entries that are served by transcoding that source down.  Nothing is
ever offered above the tallest real format.
"""

from typing import Optional, Sequence

from app.models.catalog import FormatKind, LadderEntry, RankedFormat

LADDER_RUNGS: tuple[int, ...] = (144, 240, 360, 480, 720, 1080, 1440, 2160, 4320)

SYNTHETIC_CONTAINER = "mp4"


def even_width(height: int, aspect_ratio: float) -> int:
    """Width for *height* at *aspect_ratio*, rounded half-up to an even number."""
    return max(2, int(height * aspect_ratio / 2 + 0.5) * 2)


def format_token(format_id: str) -> str:
    return f"itag_{format_id}"


def scale_token(height: int) -> str:
    return f"scale_{height}"


def best_source(formats: Sequence[RankedFormat]) -> Optional[RankedFormat]:
    """The format with the largest pixel area; the first one wins ties."""
    best: Optional[RankedFormat] = None
    for fmt in formats:
        if best is None or fmt.area > best.area:
            best = fmt
    return best


def _actual_entry(fmt: RankedFormat, standardized: bool) -> LadderEntry:
    return LadderEntry(
        id=format_token(fmt.format_id),
        target_height=fmt.height,
        synthetic=False,
        standardized=standardized,
        width=fmt.width,
        height=fmt.height,
        fps=fmt.fps,
        bitrate=fmt.bitrate,
        has_audio=fmt.has_audio,
        container=fmt.container,
        kind=fmt.kind,
        label=fmt.label,
        quality_score=fmt.quality_score,
        approx_size_bytes=fmt.approx_size_bytes,
        source_format_id=fmt.format_id,
    )


def _synthetic_entry(rung: int, source: RankedFormat) -> LadderEntry:
    return LadderEntry(
        id=scale_token(rung),
        target_height=rung,
        synthetic=True,
        standardized=True,
        width=even_width(rung, source.aspect_ratio),
        height=rung,
        fps=source.fps,
        bitrate=source.bitrate,
        # always delivered through a transcode that adds audio
        has_audio=True,
        container=SYNTHETIC_CONTAINER,
        kind=FormatKind.SYNTHETIC,
        label=f"{rung}p (Downscale)",
        quality_score=rung,
        source_format_id=source.format_id,
    )


def _index_by_height(formats: Sequence[RankedFormat]) -> dict[int, RankedFormat]:
    """One representative per height: the first with audio, else the first seen."""
    by_height: dict[int, RankedFormat] = {}
    for fmt in formats:
        if not fmt.height:
            continue
        existing = by_height.get(fmt.height)
        if existing is None or (not existing.has_audio and fmt.has_audio):
            by_height[fmt.height] = fmt
    return by_height


def build_ladder(
    video_formats: Sequence[RankedFormat],
    rungs: Sequence[int] = LADDER_RUNGS,
) -> list[LadderEntry]:
    """Build the ascending quality ladder for a deduplicated video list."""
    if not video_formats:
        return []

    highest_actual = max((f.height for f in video_formats), default=0)
    if highest_actual <= 0:
        return [_actual_entry(fmt, standardized=False) for fmt in video_formats]

    target_heights = [h for h in sorted(rungs) if h <= highest_actual]
    by_height = _index_by_height(video_formats)
    source = best_source(video_formats)

    entries: list[LadderEntry] = []
    for rung in target_heights:
        if rung in by_height:
            entries.append(_actual_entry(by_height[rung], standardized=True))
        elif source is not None and source.height > rung:
            entries.append(_synthetic_entry(rung, source))

    # Off-rung heights (e.g. 432p, 1050p) are listed as they are, once each
    for height, fmt in sorted(by_height.items()):
        if height not in target_heights:
            entries.append(_actual_entry(fmt, standardized=False))

    entries.sort(key=lambda e: (e.height, e.synthetic))
    return entries
