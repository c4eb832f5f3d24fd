from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from .errors import InvalidUrl
from .models import Platform

YOUTUBE_PATTERNS = [
    re.compile(r"^https?://(www\.)?youtube\.com/watch\?v=[\w-]+"),
    re.compile(r"^https?://(www\.)?youtube\.com/shorts/[\w-]+"),
    re.compile(r"^https?://youtu\.be/[\w-]+"),
    re.compile(r"^https?://(www\.)?youtube\.com/embed/[\w-]+"),
    re.compile(r"^https?://m\.youtube\.com/watch\?v=[\w-]+"),
]

_VIDEO_ID_PATTERNS = [
    re.compile(r"(?:youtube\.com/watch\?(?:.*&)?v=)([\w-]{11})"),
    re.compile(r"(?:youtu\.be/)([\w-]{11})"),
    re.compile(r"(?:youtube\.com/(?:shorts|embed)/)([\w-]{11})"),
]

# host suffix -> platform
_HOSTS = {
    "youtube.com": Platform.YOUTUBE,
    "youtu.be": Platform.YOUTUBE,
    "tiktok.com": Platform.TIKTOK,
    "instagram.com": Platform.INSTAGRAM,
    "twitter.com": Platform.TWITTER,
    "x.com": Platform.TWITTER,
    "reddit.com": Platform.REDDIT,
    "redd.it": Platform.REDDIT,
    "soundcloud.com": Platform.SOUNDCLOUD,
}


def validate_youtube_url(url: str) -> None:
    url = (url or "").strip()
    if not any(p.match(url) for p in YOUTUBE_PATTERNS):
        raise InvalidUrl()


def detect_platform(url: str) -> Optional[Platform]:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    host = (parsed.hostname or "").lower()
    for suffix, platform in _HOSTS.items():
        if host == suffix or host.endswith("." + suffix):
            return platform
    return None


def validate_url(url: str) -> Platform:
    """Return the platform for a supported URL or raise InvalidUrl.

    YouTube links must additionally point at a single video.
    """
    platform = detect_platform(url)
    if platform is None:
        raise InvalidUrl()
    if platform is Platform.YOUTUBE:
        validate_youtube_url(url)
    return platform


def extract_video_id(url: str) -> Optional[str]:
    for pattern in _VIDEO_ID_PATTERNS:
        m = pattern.search(url.strip())
        if m:
            return m.group(1)
    return None


def normalize_video_url(url: str) -> str:
    # Drop time offsets, playlist context and tracking params from YouTube links
    url = url.strip()
    if detect_platform(url) is not Platform.YOUTUBE:
        return url
    parsed = urlparse(url)
    if parsed.path == "/watch":
        vid = parse_qs(parsed.query).get("v", [None])[0]
        if vid:
            return f"{parsed.scheme}://{parsed.netloc}/watch?v={vid}"
        return url
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


__all__ = [
    "validate_youtube_url",
    "validate_url",
    "detect_platform",
    "extract_video_id",
    "normalize_video_url",
]
