"""Error types surfaced across the IPC boundary.

Only ``str(error)`` ever reaches the frontend; the full repr is logged.
"""

from __future__ import annotations


class AppError(Exception):
    message = "Application error"

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(self._render())

    def _render(self) -> str:
        if self.detail is None or "{0}" not in self.message:
            return self.message.replace(": {0}", "")
        return self.message.format(self.detail)

    def __str__(self) -> str:
        return self._render()


class InvalidUrl(AppError):
    message = "Invalid YouTube URL"


class FetchError(AppError):
    message = "Failed to fetch video information: {0}"


class DownloadError(AppError):
    message = "Download failed: {0}"


class CutError(AppError):
    message = "Failed to cut video: {0}"


class InvalidTimestamp(AppError):
    message = "Invalid timestamp: {0}"


class YtDlpNotFound(AppError):
    message = "yt-dlp not found. Please ensure yt-dlp is installed"


class FfmpegNotFound(AppError):
    message = "ffmpeg not found. Please ensure ffmpeg is installed and in PATH"


class DependencyError(AppError):
    message = "Dependency error: {0}"


class FileMissing(AppError):
    message = "File not found: {0}"


class Cancelled(AppError):
    message = "Operation cancelled"


class Internal(AppError):
    # detail is kept for logs only
    message = "Internal error"


__all__ = [
    "AppError",
    "InvalidUrl",
    "FetchError",
    "DownloadError",
    "CutError",
    "InvalidTimestamp",
    "YtDlpNotFound",
    "FfmpegNotFound",
    "DependencyError",
    "FileMissing",
    "Cancelled",
    "Internal",
]
