"""Timestamp parsing, duration and size formatting."""

from __future__ import annotations

import re
from typing import Optional, Tuple

from .errors import InvalidTimestamp

KB = 1024
MB = KB * 1024
GB = MB * 1024

_PART_RE = re.compile(r"-?\d+(?:\.\d+)?")


def format_duration(seconds: float) -> str:
    total = int(max(seconds, 0))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def parse_timestamp(text: str) -> Optional[float]:
    """Parse ``SS``, ``MM:SS`` or ``HH:MM:SS`` into seconds.

    Fractional seconds are accepted in the last component. Returns None
    when the text is not a timestamp.
    """
    parts = text.strip().split(":")
    if len(parts) > 3:
        return None
    if not all(_PART_RE.fullmatch(p) for p in parts):
        return None
    values = [float(p) for p in parts]
    total = 0.0
    for value in values:
        total = total * 60 + value
    return total


def format_bytes(size: int) -> str:
    if size >= GB:
        return f"{size / GB:.1f} GB"
    if size >= MB:
        return f"{size / MB:.1f} MB"
    if size >= KB:
        return f"{size / KB:.0f} KB"
    return f"{size} B"


def _parse_optional(value: Optional[str], which: str) -> Optional[float]:
    if value is None or not str(value).strip():
        return None
    secs = parse_timestamp(str(value))
    if secs is None:
        raise InvalidTimestamp(f"Invalid {which} time: {value}")
    return secs


def validate_timestamps(
    start: Optional[str], end: Optional[str], duration: float
) -> Tuple[Optional[float], Optional[float]]:
    """Validate a trim range against the media duration.

    Blank values mean "not set". Returns the parsed (start, end) in seconds.
    """
    start_secs = _parse_optional(start, "start")
    end_secs = _parse_optional(end, "end")

    if start_secs is not None:
        if start_secs < 0:
            raise InvalidTimestamp("Start time cannot be negative")
        if start_secs >= duration:
            raise InvalidTimestamp("Start time exceeds video duration")

    if end_secs is not None:
        if end_secs <= 0:
            raise InvalidTimestamp("End time must be positive")
        if end_secs > duration:
            raise InvalidTimestamp("End time exceeds video duration")

    if start_secs is not None and end_secs is not None and start_secs >= end_secs:
        raise InvalidTimestamp("Start time must be before end time")

    return start_secs, end_secs


__all__ = [
    "format_duration",
    "parse_timestamp",
    "format_bytes",
    "validate_timestamps",
]
