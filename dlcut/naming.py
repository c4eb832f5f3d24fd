from __future__ import annotations

import datetime as _dt
import re
import warnings
from typing import Any, Dict

from .models import DownloadMode, VideoInfo

SAFE_SUB = "_"
INVALID_CHARS = re.compile(r"[\\/:*?\"<>|]")
MAX_STEM = 200

ALLOWED_TOKENS = {"title", "video_id", "uploader", "quality", "mode", "date"}


class UnknownTokenWarning(UserWarning):
    pass


def sanitize_filename(name: str) -> str:
    name = INVALID_CHARS.sub(SAFE_SUB, name).strip()
    # Nothing but dots (or nothing at all) is not a usable name
    if not name.strip("."):
        name = "untitled"
    return name


def generate_filename(title: str, format_ext: str) -> str:
    stem = sanitize_filename(title)[:MAX_STEM].strip()
    return f"{stem}.{format_ext.lstrip('.')}"


def expand_template(
    template: str,
    info: VideoInfo,
    quality: str = "",
    mode: DownloadMode = DownloadMode.VIDEO_WITH_AUDIO,
    date: _dt.date | None = None,
) -> str:
    """Render a naming template into a sanitized file stem (no extension)."""
    date = date or _dt.date.today()
    mapping: Dict[str, Any] = {
        "title": info.title,
        "video_id": info.id,
        "uploader": info.uploader or "",
        "quality": quality,
        "mode": "audio" if mode is DownloadMode.AUDIO_ONLY else "video",
        "date": date.isoformat(),
    }
    for match in re.findall(r"{([^{}]*)}", template):
        token = re.split(r"[:!]", match, maxsplit=1)[0]
        if token not in ALLOWED_TOKENS:
            warnings.warn(f"Unknown filename token '{token}'", UnknownTokenWarning)
            template = template.replace("{" + match + "}", "")
    try:
        rendered = template.format(**mapping)
    except (IndexError, KeyError, ValueError) as e:
        warnings.warn(f"Unusable filename template '{template}': {e}", UnknownTokenWarning)
        rendered = info.title
    return sanitize_filename(rendered)[:MAX_STEM].strip()


__all__ = [
    "expand_template",
    "generate_filename",
    "sanitize_filename",
    "UnknownTokenWarning",
]
