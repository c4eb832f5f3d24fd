"""yt-dlp integration: metadata extraction and single-video downloads."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import AppConfig
from .deps import DependencyManager
from .errors import Cancelled, DownloadError, FetchError, YtDlpNotFound
from .logging_utils import get_logger
from .models import (
    AUDIO_QUALITIES,
    DownloadMode,
    DownloadRequest,
    Platform,
    ProgressStage,
    ProgressUpdate,
    VideoFormat,
    VideoInfo,
    VideoQuality,
)
from .timecodes import format_bytes, format_duration
from .urls import normalize_video_url, validate_url

ProgressCallback = Callable[[ProgressUpdate], None]

DEFAULT_HEIGHT = 1080
MAX_OPTIONS = 8

# audio quality id -> ffmpeg VBR quality (0 best, 9 worst)
AUDIO_VBR = {"high": "0", "medium": "5", "low": "9"}


def load_ytdlp():
    """Import yt-dlp on first use; raises YtDlpNotFound when it is not installed."""
    try:
        import yt_dlp
        import yt_dlp.utils
    except ImportError as e:
        raise YtDlpNotFound() from e
    return yt_dlp


class FormatSelector:
    """
    Build the yt-dlp format selector for a download.

    Video+audio:
      - bestvideo[height<=H]+bestaudio   (separate streams, merged)
      - best[height<=H]                  (pre-muxed fallback)
    Audio only:
      - bestaudio/best
    """

    def __init__(self, mode: DownloadMode, quality: str):
        self.mode = mode
        self.quality = quality

    def build(self) -> str:
        if self.mode is DownloadMode.AUDIO_ONLY:
            return "bestaudio/best"
        height = quality_height(self.quality) or DEFAULT_HEIGHT
        return f"bestvideo[height<={height}]+bestaudio/best[height<={height}]"

    def audio_quality(self) -> str:
        return AUDIO_VBR.get(self.quality, "0")


def quality_height(quality: str) -> int:
    """'1080p' / '1080' -> 1080; anything else -> 0."""
    try:
        return int(str(quality).strip().rstrip("p"))
    except ValueError:
        return 0


def _has_codec(value: Optional[str]) -> bool:
    return value is not None and value != "none"


def convert_format(raw: Dict[str, Any]) -> Optional[VideoFormat]:
    """Map a yt-dlp format dict to a VideoFormat; audio-only formats are skipped."""
    has_video = _has_codec(raw.get("vcodec"))
    if not has_video:
        return None
    height = raw.get("height")
    width = raw.get("width")
    resolution = raw.get("resolution")
    if not resolution:
        resolution = f"{width}x{height}" if width and height else "unknown"
    if isinstance(height, int):
        quality = f"{height}p"
    else:
        quality = raw.get("format_note") or "unknown"
    filesize = raw.get("filesize") or raw.get("filesize_approx")
    return VideoFormat(
        format_id=str(raw.get("format_id", "")),
        ext=raw.get("ext") or "",
        resolution=resolution,
        quality=quality,
        fps=raw.get("fps"),
        vcodec=raw.get("vcodec"),
        acodec=raw.get("acodec"),
        filesize=int(filesize) if filesize else None,
        filesize_approx=format_bytes(int(filesize)) if filesize else None,
        has_video=has_video,
        has_audio=_has_codec(raw.get("acodec")),
    )


def filter_formats(formats: List[VideoFormat]) -> List[VideoFormat]:
    """One format per quality label, highest first."""
    ordered = sorted(formats, key=lambda f: quality_height(f.quality), reverse=True)
    seen: set[str] = set()
    result: List[VideoFormat] = []
    for fmt in ordered:
        if fmt.quality in seen:
            continue
        seen.add(fmt.quality)
        result.append(fmt)
    return result[:MAX_OPTIONS]


def extract_video_qualities(raw_formats: List[Dict[str, Any]]) -> List[VideoQuality]:
    candidates = [
        f for f in raw_formats
        if _has_codec(f.get("vcodec")) and isinstance(f.get("height"), int)
    ]
    candidates.sort(key=lambda f: f["height"], reverse=True)
    seen: set[int] = set()
    qualities: List[VideoQuality] = []
    for f in candidates:
        height = f["height"]
        if height in seen:
            continue
        seen.add(height)
        size = f.get("filesize") or f.get("filesize_approx")
        qualities.append(
            VideoQuality(
                height=height,
                label=f"{height}p",
                filesize_approx=format_bytes(int(size)) if size else None,
            )
        )
    return qualities[:MAX_OPTIONS]


def build_video_info(info: Dict[str, Any], platform: Platform) -> VideoInfo:
    raw_formats = info.get("formats") or []
    formats = [f for f in (convert_format(r) for r in raw_formats) if f]
    duration = float(info.get("duration") or 0.0)
    return VideoInfo(
        id=str(info.get("id", "")),
        title=info.get("title") or str(info.get("id", "")),
        duration=duration,
        duration_string=format_duration(duration),
        platform=platform,
        thumbnail=info.get("thumbnail"),
        uploader=info.get("uploader"),
        formats=filter_formats(formats),
        video_qualities=extract_video_qualities(raw_formats),
        audio_qualities=list(AUDIO_QUALITIES),
    )


def _first_error_line(exc: Exception) -> str:
    text = str(exc).strip().splitlines()
    line = text[0] if text else "Unknown error"
    return line[len("ERROR: "):] if line.startswith("ERROR: ") else line


class VideoDownloader:
    def __init__(self, config: AppConfig, deps: DependencyManager | None = None):
        self.config = config
        self.deps = deps or DependencyManager(config)
        self._log = get_logger()

    def _base_opts(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "noplaylist": True,
            "socket_timeout": self.config.socket_timeout,
        }
        ffmpeg = self.deps.resolve_ffmpeg()
        if ffmpeg is not None:
            opts["ffmpeg_location"] = str(ffmpeg)
        return opts

    # Public API
    def fetch_video_info(self, url: str) -> VideoInfo:
        platform = validate_url(url)
        url = normalize_video_url(url)
        ytdlp = load_ytdlp()
        attempts = 0
        retries = max(1, self.config.retry_attempts)
        last_exc: Exception | None = None
        info: Dict[str, Any] | None = None
        while attempts < retries:
            try:
                with ytdlp.YoutubeDL(self._base_opts()) as ydl:  # type: ignore[arg-type]
                    info = ydl.extract_info(url, download=False)
                break
            except (ytdlp.utils.DownloadError, OSError) as e:
                last_exc = e
                attempts += 1
                self._log.warning("Metadata attempt %d/%d failed: %s", attempts, retries, e)
                if attempts >= retries:
                    break
                time.sleep(1 * attempts)
        if last_exc is not None and info is None:
            raise FetchError(_first_error_line(last_exc)) from last_exc
        if not info:
            raise FetchError("No metadata returned")
        if info.get("entries"):
            # Some extractors wrap a single post in a playlist
            info = next((e for e in info["entries"] if e), None) or {}
        return build_video_info(info, platform)

    def build_options(
        self,
        request: DownloadRequest,
        progress_hook: Callable[[Dict[str, Any]], None],
        postprocessor_hook: Callable[[Dict[str, Any]], None],
    ) -> Dict[str, Any]:
        selector = FormatSelector(request.mode, request.quality)
        out = Path(request.output_path)
        stem = out.with_suffix("") if out.suffix else out
        opts = self._base_opts()
        opts.update({
            "format": selector.build(),
            # yt-dlp picks the extension; the stem is the caller's
            "outtmpl": f"{stem}.%(ext)s",
            "progress_hooks": [progress_hook],
            "postprocessor_hooks": [postprocessor_hook],
        })
        if request.mode is DownloadMode.AUDIO_ONLY:
            opts["postprocessors"] = [{
                "key": "FFmpegExtractAudio",
                "preferredcodec": "mp3",
                "preferredquality": selector.audio_quality(),
            }]
        else:
            opts["merge_output_format"] = "mp4"

        start, end = request.start_time, request.end_time
        if start is not None or end is not None:
            section = (start or 0.0, end if end is not None else float("inf"))
            opts["download_ranges"] = load_ytdlp().utils.download_range_func(None, [section])
            opts["force_keyframes_at_cuts"] = True
        self._log.debug("Format selector: %s", opts["format"])
        return opts

    def download(
        self,
        request: DownloadRequest,
        on_progress: ProgressCallback,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Download one video; returns the final file path."""
        platform = validate_url(request.url)
        if request.mode is DownloadMode.VIDEO_WITH_AUDIO and not platform.supports_video:
            raise DownloadError(f"{platform.value} only supports audio downloads")
        url = normalize_video_url(request.url)
        ytdlp = load_ytdlp()
        cancel_event = cancel_event or threading.Event()
        final_path: Dict[str, str] = {}

        def progress_hook(d: Dict[str, Any]) -> None:
            if cancel_event.is_set():
                raise ytdlp.utils.DownloadCancelled()
            if d.get("status") == "downloading":
                on_progress(progress_from_hook(d))
            elif d.get("status") == "finished" and d.get("filename"):
                final_path["path"] = d["filename"]

        def postprocessor_hook(d: Dict[str, Any]) -> None:
            if cancel_event.is_set():
                raise ytdlp.utils.DownloadCancelled()
            if d.get("status") == "started":
                on_progress(ProgressUpdate(
                    stage=ProgressStage.DOWNLOADING,
                    percent=100.0,
                    message="Processing...",
                ))
            elif d.get("status") == "finished":
                path = (d.get("info_dict") or {}).get("filepath")
                if path:
                    final_path["path"] = path

        opts = self.build_options(request, progress_hook, postprocessor_hook)
        on_progress(ProgressUpdate(
            stage=ProgressStage.DOWNLOADING, percent=0.0, message="Starting download..."
        ))
        self._log.info("Downloading %s -> %s", url, request.output_path)
        try:
            with ytdlp.YoutubeDL(opts) as ydl:  # type: ignore[arg-type]
                retcode = ydl.download([url])
        except ytdlp.utils.DownloadCancelled as e:
            raise Cancelled() from e
        except ytdlp.utils.DownloadError as e:
            if cancel_event.is_set():
                raise Cancelled() from e
            raise DownloadError(_first_error_line(e)) from e
        if retcode:
            raise DownloadError(f"yt-dlp exited with code {retcode}")

        result = final_path.get("path") or str(
            Path(request.output_path).with_suffix("." + request.mode.extension)
        )
        on_progress(ProgressUpdate(
            stage=ProgressStage.COMPLETE, percent=100.0, message="Download complete!"
        ))
        return result


def progress_from_hook(d: Dict[str, Any]) -> ProgressUpdate:
    """Translate a yt-dlp progress hook payload into a ProgressUpdate."""
    done = d.get("downloaded_bytes") or 0
    total = d.get("total_bytes") or d.get("total_bytes_estimate") or 0
    if total:
        percent = min(done / total * 100.0, 100.0)
    elif d.get("fragment_count"):
        percent = min((d.get("fragment_index") or 0) / d["fragment_count"] * 100.0, 100.0)
    else:
        percent = 0.0
    speed = d.get("speed")
    eta = d.get("eta")
    return ProgressUpdate(
        stage=ProgressStage.DOWNLOADING,
        percent=round(percent, 1),
        message=f"Downloading... {percent:.1f}%",
        speed=f"{format_bytes(int(speed))}/s" if speed else None,
        eta=format_duration(eta) if eta is not None else None,
    )


__all__ = [
    "VideoDownloader",
    "FormatSelector",
    "convert_format",
    "filter_formats",
    "extract_video_qualities",
    "build_video_info",
    "progress_from_hook",
    "quality_height",
]
