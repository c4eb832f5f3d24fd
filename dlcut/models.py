from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Data exchanged with the frontend. to_dict() output is JSON-ready.


class Platform(str, Enum):
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    REDDIT = "reddit"
    SOUNDCLOUD = "soundcloud"

    @property
    def supports_video(self) -> bool:
        return self is not Platform.SOUNDCLOUD


class DownloadMode(str, Enum):
    VIDEO_WITH_AUDIO = "video_with_audio"  # merged .mp4
    AUDIO_ONLY = "audio_only"  # extracted .mp3

    @property
    def extension(self) -> str:
        return "mp3" if self is DownloadMode.AUDIO_ONLY else "mp4"


class ProgressStage(str, Enum):
    FETCHING = "fetching"
    DOWNLOADING = "downloading"
    CUTTING = "cutting"
    COMPLETE = "complete"
    ERROR = "error"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))  # type: ignore[call-overload]


@dataclass
class VideoQuality(_Serializable):
    height: int
    label: str
    filesize_approx: Optional[str] = None


@dataclass
class AudioQuality(_Serializable):
    quality_id: str  # high | medium | low
    label: str
    bitrate: int  # kbps, approximate


AUDIO_QUALITIES: List[AudioQuality] = [
    AudioQuality("high", "High Quality (320kbps)", 320),
    AudioQuality("medium", "Medium Quality (192kbps)", 192),
    AudioQuality("low", "Low Quality (128kbps)", 128),
]


@dataclass
class VideoFormat(_Serializable):
    format_id: str
    ext: str
    resolution: str
    quality: str
    fps: Optional[float] = None
    vcodec: Optional[str] = None
    acodec: Optional[str] = None
    filesize: Optional[int] = None
    filesize_approx: Optional[str] = None
    has_video: bool = False
    has_audio: bool = False

    def label(self) -> str:
        parts = [self.quality]
        if self.vcodec and self.vcodec != "none":
            parts.append(self.vcodec)
        if self.filesize_approx:
            parts.append(f"~{self.filesize_approx}")
        return " • ".join(parts)


@dataclass
class VideoInfo(_Serializable):
    id: str
    title: str
    duration: float
    duration_string: str
    platform: Platform = Platform.YOUTUBE
    thumbnail: Optional[str] = None
    uploader: Optional[str] = None
    formats: List[VideoFormat] = field(default_factory=list)
    video_qualities: List[VideoQuality] = field(default_factory=list)
    audio_qualities: List[AudioQuality] = field(default_factory=list)


@dataclass
class DownloadRequest(_Serializable):
    url: str
    # video mode: height ("1080"); audio mode: quality_id ("high")
    quality: str
    mode: DownloadMode
    output_path: str
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DownloadRequest":
        try:
            mode = DownloadMode(data.get("mode", DownloadMode.VIDEO_WITH_AUDIO.value))
            return cls(
                url=str(data["url"]),
                quality=str(data.get("quality", "")),
                mode=mode,
                output_path=str(data["output_path"]),
                start_time=_opt_float(data.get("start_time")),
                end_time=_opt_float(data.get("end_time")),
            )
        except KeyError as e:
            raise ValueError(f"Missing field {e.args[0]!r} in download request") from e


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid time value: {value!r}")
    result = float(value)
    if not math.isfinite(result):
        raise ValueError(f"Invalid time value: {value!r}")
    return result


@dataclass
class ProgressUpdate(_Serializable):
    stage: ProgressStage
    percent: float
    message: str
    speed: Optional[str] = None
    eta: Optional[str] = None


@dataclass
class DepsStatus(_Serializable):
    ytdlp_installed: bool
    ffmpeg_installed: bool
    ytdlp_version: Optional[str] = None
    ffmpeg_path: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.ytdlp_installed and self.ffmpeg_installed

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["ready"] = self.ready
        return data


__all__ = [
    "Platform",
    "DownloadMode",
    "ProgressStage",
    "VideoQuality",
    "AudioQuality",
    "AUDIO_QUALITIES",
    "VideoFormat",
    "VideoInfo",
    "DownloadRequest",
    "ProgressUpdate",
    "DepsStatus",
]
