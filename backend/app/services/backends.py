"""Adapters around the two extraction backends.

* :class:`PrimaryBackend` wraps pytubefix.  It is fast and exposes explicit
  track flags, but for some videos only lists low resolutions.
* :class:`SecondaryBackend` wraps yt-dlp.  It is slower and only used as a
  fallback, plus for opening streamed fetches the transcoder can read from
  a pipe.

Both return plain dicts; :mod:`app.services.normalizer` turns them into
canonical records.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import yt_dlp
from pytubefix import YouTube
from pytubefix import exceptions as pytube_exceptions

from app.core.config import settings
from app.core.logging import get_logger
from app.services.errors import DegradedSourceError, SourceUnavailableError
from app.services.url_utils import sanitize_url_for_logging

logger = get_logger(__name__)

_HEIGHT_RE = re.compile(r"(\d{3,4})p")
_KBPS_RE = re.compile(r"(\d+)\s*kbps")


@dataclass
class PrimaryInfo:
    """Metadata and raw formats from the primary backend."""

    content_id: str
    title: str
    author: str = ""
    duration_seconds: Optional[int] = None
    view_count: Optional[int] = None
    thumbnail_url: Optional[str] = None
    formats: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class SecondaryListing:
    """Raw yt-dlp formats for one piece of content."""

    content_id: Optional[str]
    formats: list[dict[str, Any]] = field(default_factory=list)


def _parse_int(pattern: re.Pattern, value: Optional[str]) -> int:
    match = pattern.search(value or "")
    return int(match.group(1)) if match else 0


def stream_descriptor(stream: Any) -> dict[str, Any]:
    """Flatten a pytubefix ``Stream`` into the primary descriptor shape."""
    has_video = bool(getattr(stream, "includes_video_track", False))
    has_audio = bool(getattr(stream, "includes_audio_track", False))
    height = getattr(stream, "height", None) or (
        _parse_int(_HEIGHT_RE, getattr(stream, "resolution", None)) if has_video else 0
    )
    return {
        "itag": getattr(stream, "itag", None),
        "has_video": has_video,
        "has_audio": has_audio,
        "width": getattr(stream, "width", None),
        "height": height,
        "fps": getattr(stream, "fps", None) if has_video else None,
        "bitrate": getattr(stream, "bitrate", None),
        "audio_bitrate": _parse_int(_KBPS_RE, getattr(stream, "abr", None)) if has_audio else 0,
        "container": getattr(stream, "subtype", None),
        "content_length": getattr(stream, "_filesize", None),
        "url": getattr(stream, "url", None),
    }


class PrimaryBackend:
    """pytubefix-based metadata and format extraction."""

    def __init__(self, client: str | None = None) -> None:
        self._client = client or settings.PYTUBE_CLIENT

    def get_info(self, url: str) -> PrimaryInfo:
        """Fetch title, counters and the raw stream list for *url*.

        Raises:
            SourceUnavailableError: If the content cannot be resolved
        """
        safe_url = sanitize_url_for_logging(url)
        logger.info(f"Primary backend fetching info for: {safe_url}")
        try:
            yt = YouTube(url, client=self._client)
            formats = [stream_descriptor(s) for s in yt.streams]
            info = PrimaryInfo(
                content_id=yt.video_id,
                title=yt.title or "Unknown Title",
                author=yt.author or "",
                duration_seconds=yt.length,
                view_count=yt.views,
                thumbnail_url=yt.thumbnail_url,
                formats=formats,
            )
        except pytube_exceptions.VideoUnavailable as e:
            logger.warning(f"Video unavailable: {safe_url}: {e}")
            raise SourceUnavailableError()
        except Exception as e:
            logger.error(f"Primary backend failed for {safe_url}: {e}", exc_info=True)
            raise SourceUnavailableError(f"Failed to fetch video information: {e}")

        logger.info(f"Primary backend returned {len(formats)} streams for: {safe_url}")
        return info


class SecondaryBackend:
    """yt-dlp-based format listing and streamed fetches."""

    @staticmethod
    def _build_ydl_options() -> dict[str, Any]:
        """Build yt-dlp configuration options for format extraction."""
        ydl_opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "extract_flat": False,
            "socket_timeout": settings.YTDLP_SOCKET_TIMEOUT,
            "retries": settings.YTDLP_RETRIES,
        }

        if settings.YTDLP_USER_AGENT:
            ydl_opts["http_headers"] = {"User-Agent": settings.YTDLP_USER_AGENT}

        if settings.YTDLP_COOKIES_FROM_BROWSER:
            ydl_opts["cookiesfrombrowser"] = (settings.YTDLP_COOKIES_FROM_BROWSER,)

        if settings.YTDLP_PROXY:
            ydl_opts["proxy"] = settings.YTDLP_PROXY

        return ydl_opts

    def list_formats(self, url: str) -> SecondaryListing:
        """Return yt-dlp's raw format dicts for *url*.

        Raises:
            DegradedSourceError: If yt-dlp fails; callers keep what they have
        """
        safe_url = sanitize_url_for_logging(url)
        logger.info(f"Secondary backend listing formats for: {safe_url}")
        try:
            with yt_dlp.YoutubeDL(self._build_ydl_options()) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as e:
            raise DegradedSourceError(f"yt-dlp could not list formats: {e}")
        except Exception as e:
            raise DegradedSourceError(f"Unexpected yt-dlp error: {e}")

        if not info:
            raise DegradedSourceError("yt-dlp returned no information")

        formats = [f for f in info.get("formats") or [] if isinstance(f, dict)]
        logger.info(f"Secondary backend returned {len(formats)} formats for: {safe_url}")
        return SecondaryListing(content_id=info.get("id"), formats=formats)

    @staticmethod
    def stream_command(url: str, selector: str) -> list[str]:
        """Build a yt-dlp command that writes one format to stdout."""
        cmd: list[str] = [
            settings.YTDLP_BINARY,
            "-f", selector,
            "-o", "-",
            "--no-warnings",
            "--quiet",
            "--no-playlist",
            "--no-part",
            "--socket-timeout", str(settings.YTDLP_SOCKET_TIMEOUT),
            "--retries", str(settings.YTDLP_RETRIES),
        ]

        if settings.YTDLP_USER_AGENT:
            cmd.extend(["--user-agent", settings.YTDLP_USER_AGENT])
        if settings.YTDLP_COOKIES_FROM_BROWSER:
            cmd.extend(["--cookies-from-browser", settings.YTDLP_COOKIES_FROM_BROWSER])
        if settings.YTDLP_PROXY:
            cmd.extend(["--proxy", settings.YTDLP_PROXY])

        cmd.append(url)
        return cmd
