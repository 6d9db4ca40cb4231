"""URL validation, content ids and download filenames."""

import hashlib
import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

from app.core.config import settings
from app.core.logging import get_logger
from app.services.errors import InvalidUrlError

logger = get_logger(__name__)

BLOCKED_HOSTNAMES = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}

CONTENT_ID_PATTERN = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|shorts/|embed/|live/)|youtu\.be/)([A-Za-z0-9_-]{6,})"
)

_ILLEGAL_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]+')
_CONTROL_WHITESPACE = re.compile(r"[\r\n\t]+")
_MULTI_SPACE = re.compile(r"\s{2,}")
MAX_TITLE_LENGTH = 180


def normalize_url(url: str) -> str:
    """Normalize and validate a URL for safety.

    Args:
        url: Raw URL string from user input

    Returns:
        Normalized URL string

    Raises:
        InvalidUrlError: If URL is malformed or blocked
    """
    url = (url or "").strip()
    if not url:
        raise InvalidUrlError("URL is required")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        logger.warning(f"Failed to parse URL: {e}")
        raise InvalidUrlError("Malformed URL")

    if parsed.scheme.lower() not in settings.allowed_schemes_list:
        raise InvalidUrlError(
            f"URL scheme not allowed. Allowed schemes: "
            f"{', '.join(settings.allowed_schemes_list)}"
        )

    if not parsed.hostname:
        raise InvalidUrlError("URL must have a valid hostname")

    # SSRF protection: block private networks
    if settings.BLOCK_PRIVATE_NETWORKS:
        try:
            ip = ipaddress.ip_address(parsed.hostname)
        except ValueError:
            ip = None
        if ip is not None and (ip.is_private or ip.is_loopback or ip.is_link_local):
            logger.warning(f"Blocked private network URL: {parsed.hostname}")
            raise InvalidUrlError("Private network URLs are not allowed")

        if parsed.hostname.lower() in BLOCKED_HOSTNAMES:
            raise InvalidUrlError("Localhost URLs are not allowed")

    return url


def extract_content_id(url: str) -> Optional[str]:
    """Return the video id embedded in *url*, or None."""
    match = CONTENT_ID_PATTERN.search(url or "")
    return match.group(1) if match else None


def require_content_id(url: str) -> tuple[str, str]:
    """Validate *url* and return ``(normalized_url, content_id)``."""
    normalized = normalize_url(url)
    content_id = extract_content_id(normalized)
    if not content_id:
        raise InvalidUrlError("Not a recognised YouTube video URL")
    return normalized, content_id


def sanitize_url_for_logging(url: str) -> str:
    """Create a safe version of URL for logging (hide query params)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "invalid-url"
    url_hash = hashlib.sha256(url.encode()).hexdigest()[:8]
    return f"{parsed.scheme}://{parsed.hostname}{parsed.path} (hash:{url_hash})"


def build_safe_base_title(raw_title: Optional[str]) -> str:
    """Strip filesystem-illegal characters while keeping case and spaces."""
    if not raw_title:
        return "video"
    title = _ILLEGAL_FILENAME_CHARS.sub(" ", raw_title)
    title = _CONTROL_WHITESPACE.sub(" ", title)
    title = _MULTI_SPACE.sub(" ", title).strip()
    return title[:MAX_TITLE_LENGTH].strip() or "video"


def build_download_filename(title: Optional[str], ext: str, quality_tag: str = "") -> str:
    """``<safe title> [<quality tag>].<ext>``"""
    tag = f" [{quality_tag}]" if quality_tag else ""
    return f"{build_safe_base_title(title)}{tag}.{ext}"
