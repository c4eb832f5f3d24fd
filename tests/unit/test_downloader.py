import sys
import threading
from unittest.mock import MagicMock, patch

import pytest
from yt_dlp.utils import DownloadError as YtDlpDownloadError

from dlcut.commands import Backend
from dlcut.config import AppConfig
from dlcut.downloader import (
    FormatSelector,
    VideoDownloader,
    build_video_info,
    convert_format,
    extract_video_qualities,
    filter_formats,
    progress_from_hook,
)
from dlcut.deps import DependencyManager
from dlcut.errors import Cancelled, DownloadError, FetchError, InvalidUrl, YtDlpNotFound
from dlcut.models import DownloadMode, DownloadRequest, Platform, ProgressStage

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def downloader(config, no_deps):
    return VideoDownloader(config, no_deps)


def make_request(tmp_path, **kw):
    data = dict(
        url=VIDEO_URL,
        quality="720",
        mode=DownloadMode.VIDEO_WITH_AUDIO,
        output_path=str(tmp_path / "clip.mp4"),
    )
    data.update(kw)
    return DownloadRequest(**data)


@pytest.mark.parametrize("mode,quality,expected", [
    (DownloadMode.VIDEO_WITH_AUDIO, "720", "bestvideo[height<=720]+bestaudio/best[height<=720]"),
    (DownloadMode.VIDEO_WITH_AUDIO, "480p", "bestvideo[height<=480]+bestaudio/best[height<=480]"),
    (DownloadMode.VIDEO_WITH_AUDIO, "", "bestvideo[height<=1080]+bestaudio/best[height<=1080]"),
    (DownloadMode.AUDIO_ONLY, "high", "bestaudio/best"),
])
def test_format_selector(mode, quality, expected):
    assert FormatSelector(mode, quality).build() == expected


@pytest.mark.parametrize("quality,vbr", [("high", "0"), ("medium", "5"), ("low", "9"), ("weird", "0")])
def test_audio_quality(quality, vbr):
    assert FormatSelector(DownloadMode.AUDIO_ONLY, quality).audio_quality() == vbr


def test_convert_format_skips_audio_only():
    assert convert_format({"format_id": "140", "vcodec": "none", "acodec": "mp4a"}) is None


def test_convert_format_video(sample_info):
    fmt = convert_format(sample_info["formats"][1])
    assert fmt.quality == "1080p"
    assert fmt.resolution == "1920x1080"
    assert fmt.filesize_approx == "50.0 MB"
    assert fmt.has_video and not fmt.has_audio


def test_filter_formats_one_per_quality(sample_info):
    formats = [convert_format(f) for f in sample_info["formats"][1:]]
    result = filter_formats(formats)
    assert [f.quality for f in result] == ["1080p", "720p"]


def test_extract_video_qualities(sample_info):
    qualities = extract_video_qualities(sample_info["formats"])
    assert [q.height for q in qualities] == [1080, 720]
    assert qualities[0].filesize_approx == "50.0 MB"
    assert qualities[1].filesize_approx == "20.0 MB"


def test_build_video_info(sample_info):
    info = build_video_info(sample_info, Platform.YOUTUBE)
    assert info.title == "Sample Clip"
    assert info.duration_string == "03:32"
    assert len(info.audio_qualities) == 3


def test_progress_from_hook_bytes():
    update = progress_from_hook({
        "status": "downloading",
        "downloaded_bytes": 50,
        "total_bytes": 200,
        "speed": 1048576,
        "eta": 65,
    })
    assert update.stage is ProgressStage.DOWNLOADING
    assert update.percent == 25.0
    assert update.message == "Downloading... 25.0%"
    assert update.speed == "1.0 MB/s"
    assert update.eta == "01:05"


def test_progress_from_hook_fragments_and_unknown():
    assert progress_from_hook({"fragment_index": 3, "fragment_count": 4}).percent == 75.0
    empty = progress_from_hook({"status": "downloading"})
    assert empty.percent == 0.0 and empty.speed is None and empty.eta is None


def test_fetch_video_info(downloader, sample_info):
    with patch("yt_dlp.YoutubeDL") as mock_ydl:
        ydl = MagicMock()
        ydl.extract_info.return_value = dict(sample_info)
        mock_ydl.return_value.__enter__.return_value = ydl
        info = downloader.fetch_video_info(VIDEO_URL + "&list=PL1")
    ydl.extract_info.assert_called_once_with(VIDEO_URL, download=False)
    opts = mock_ydl.call_args[0][0]
    assert opts["noplaylist"] is True
    assert info.id == "dQw4w9WgXcQ"
    assert [q.label for q in info.video_qualities] == ["1080p", "720p"]


def test_fetch_video_info_unwraps_entries(downloader, fake_ytdl, sample_info):
    fake_ytdl.info = {"entries": [None, dict(sample_info, title="Inner")]}
    info = downloader.fetch_video_info("https://x.com/user/status/1")
    assert info.title == "Inner"
    assert info.platform is Platform.TWITTER


def test_fetch_video_info_retries_then_fails(config, no_deps, fake_ytdl, monkeypatch):
    config.retry_attempts = 2
    sleeps = []
    monkeypatch.setattr("dlcut.downloader.time.sleep", sleeps.append)
    fake_ytdl.fail_with = YtDlpDownloadError("ERROR: Video unavailable\nmore detail")
    with pytest.raises(FetchError) as exc:
        VideoDownloader(config, no_deps).fetch_video_info(VIDEO_URL)
    assert str(exc.value) == "Failed to fetch video information: Video unavailable"
    assert len(fake_ytdl.instances) == 2
    assert sleeps == [1]


def test_fetch_video_info_rejects_bad_url(downloader, fake_ytdl):
    with pytest.raises(InvalidUrl):
        downloader.fetch_video_info("https://example.com/video")
    assert fake_ytdl.instances == []


def test_build_options_video_range(downloader, tmp_path):
    req = make_request(tmp_path, start_time=10.0, end_time=20.0)
    opts = downloader.build_options(req, lambda d: None, lambda d: None)
    assert opts["outtmpl"] == str(tmp_path / "clip") + ".%(ext)s"
    assert opts["merge_output_format"] == "mp4"
    assert opts["force_keyframes_at_cuts"] is True
    assert callable(opts["download_ranges"])
    assert "postprocessors" not in opts


def test_build_options_audio_without_range(downloader, tmp_path):
    req = make_request(tmp_path, mode=DownloadMode.AUDIO_ONLY, quality="medium",
                       output_path=str(tmp_path / "song.mp3"))
    opts = downloader.build_options(req, lambda d: None, lambda d: None)
    assert opts["format"] == "bestaudio/best"
    assert opts["postprocessors"][0]["key"] == "FFmpegExtractAudio"
    assert opts["postprocessors"][0]["preferredcodec"] == "mp3"
    assert opts["postprocessors"][0]["preferredquality"] == "5"
    assert "download_ranges" not in opts
    assert "merge_output_format" not in opts


def test_download_success(downloader, fake_ytdl, tmp_path):
    updates = []
    path = downloader.download(make_request(tmp_path), updates.append)
    assert path == str(tmp_path / "clip.mp4")
    messages = [u.message for u in updates]
    assert messages[0] == "Starting download..."
    assert "Downloading... 50.0%" in messages
    assert "Processing..." in messages
    assert messages[-1] == "Download complete!"
    assert updates[-1].stage is ProgressStage.COMPLETE


def test_download_cancelled(downloader, fake_ytdl, tmp_path):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(Cancelled):
        downloader.download(make_request(tmp_path), lambda u: None, cancel)


def test_download_error_maps_first_line(downloader, fake_ytdl, tmp_path):
    fake_ytdl.fail_with = YtDlpDownloadError("ERROR: HTTP Error 403: Forbidden")
    with pytest.raises(DownloadError) as exc:
        downloader.download(make_request(tmp_path), lambda u: None)
    assert str(exc.value) == "Download failed: HTTP Error 403: Forbidden"


def test_download_audio_only_platform_rejects_video(downloader, fake_ytdl, tmp_path):
    req = make_request(tmp_path, url="https://soundcloud.com/artist/track")
    with pytest.raises(DownloadError):
        downloader.download(req, lambda u: None)
    assert fake_ytdl.instances == []


def test_missing_ytdlp_is_reported_not_fatal(config, no_deps, tmp_path, monkeypatch):
    monkeypatch.setitem(sys.modules, "yt_dlp", None)
    downloader = VideoDownloader(config, no_deps)
    with pytest.raises(YtDlpNotFound):
        downloader.fetch_video_info(VIDEO_URL)
    with pytest.raises(YtDlpNotFound):
        downloader.download(make_request(tmp_path), lambda u: None)

    assert DependencyManager.ytdlp_version() is None
    monkeypatch.setattr(DependencyManager, "ffmpeg_works", lambda self: False)
    status = Backend(config, downloader=downloader).check_dependencies()
    assert not status.ytdlp_installed
    assert not status.ready
