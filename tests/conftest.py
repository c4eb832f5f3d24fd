import copy
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Ensure project root on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dlcut.config import AppConfig  # noqa: E402
from dlcut.logging_utils import get_logger  # noqa: E402

# Bind the log handler to the session stderr rather than a per-test capture
get_logger()


SAMPLE_INFO = {
    "id": "dQw4w9WgXcQ",
    "title": "Sample Clip",
    "duration": 212,
    "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg",
    "uploader": "Sample Channel",
    "formats": [
        {"format_id": "140", "ext": "m4a", "vcodec": "none", "acodec": "mp4a.40.2"},
        {
            "format_id": "137",
            "ext": "mp4",
            "height": 1080,
            "width": 1920,
            "vcodec": "avc1.640028",
            "acodec": "none",
            "filesize": 52428800,
        },
        {
            "format_id": "22",
            "ext": "mp4",
            "height": 720,
            "width": 1280,
            "vcodec": "avc1.64001F",
            "acodec": "mp4a.40.2",
            "filesize_approx": 20971520,
        },
        {
            "format_id": "136",
            "ext": "mp4",
            "height": 720,
            "width": 1280,
            "vcodec": "avc1.4d401f",
            "acodec": "none",
        },
    ],
}

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


class FakeYoutubeDL:
    """Stand-in for yt_dlp.YoutubeDL that drives the configured hooks."""

    info = SAMPLE_INFO
    fail_with = None
    instances: list = []

    def __init__(self, opts=None):
        self.opts = opts or {}
        type(self).instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=False):
        if self.fail_with is not None:
            raise self.fail_with
        return copy.deepcopy(self.info)

    def download(self, urls):
        if self.fail_with is not None:
            raise self.fail_with
        ext = "mp3" if self.opts.get("postprocessors") else "mp4"
        path = self.opts["outtmpl"].replace("%(ext)s", ext)
        Path(path).write_bytes(b"media")
        for hook in self.opts.get("progress_hooks", []):
            hook({
                "status": "downloading",
                "downloaded_bytes": 512,
                "total_bytes": 1024,
                "speed": 2048,
                "eta": 3,
            })
            hook({"status": "finished", "filename": path})
        for hook in self.opts.get("postprocessor_hooks", []):
            hook({"status": "started", "postprocessor": "Merger"})
            hook({"status": "finished", "postprocessor": "Merger", "info_dict": {"filepath": path}})
        return 0


@pytest.fixture()
def fake_ytdl():
    cls = type("FakeYDL", (FakeYoutubeDL,), {"instances": [], "fail_with": None})
    with patch("yt_dlp.YoutubeDL", cls):
        yield cls


@pytest.fixture()
def config(tmp_path):
    return AppConfig(output_dir=tmp_path / "downloads", deps_dir=tmp_path / "bin")


@pytest.fixture()
def no_deps():
    deps = MagicMock()
    deps.resolve_ffmpeg.return_value = None
    deps.ffmpeg_command.return_value = "ffmpeg"
    return deps


@pytest.fixture()
def temp_output_dir(tmp_path):
    d = tmp_path / "out"
    d.mkdir()
    return d


@pytest.fixture()
def run_cli(tmp_path, capsys):
    from dlcut.cli import run_cli as _run_cli

    config_path = tmp_path / "config.json"

    def run(args):
        try:
            code = _run_cli(["--config", str(config_path)] + list(args))
        except SystemExit as e:
            code = e.code
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return run


class Recorder:
    """Event bus listener that keeps (channel, payload) pairs."""

    def __init__(self):
        self.events = []

    def __call__(self, channel, payload):
        self.events.append((channel, payload))

    def on(self, channel):
        return [p for c, p in self.events if c == channel]

    def channels(self):
        return [c for c, _ in self.events]


@pytest.fixture()
def recorder():
    return Recorder()


@pytest.fixture()
def sample_info():
    return copy.deepcopy(SAMPLE_INFO)
