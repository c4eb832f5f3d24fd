"""Dependency manager for yt-dlp and ffmpeg.

yt-dlp is used as a Python library, so "installing" it means installing the
``yt-dlp`` distribution into the running interpreter. ffmpeg is a binary:
it is resolved from the app's local bin directory first, then from PATH, and
can be downloaded as a static build into the bin directory.
"""

from __future__ import annotations

import importlib
import importlib.util
import os
import shutil
import stat
import subprocess
import sys
import tarfile
import urllib.request
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import AppConfig
from .errors import DependencyError
from .logging_utils import get_logger
from .models import DepsStatus

ProgressCallback = Callable[[str, float], None]

YTDLP_DIST = "yt-dlp"

FFMPEG_URLS = {
    "win32": "https://github.com/BtbN/FFmpeg-Builds/releases/download/latest/ffmpeg-master-latest-win64-gpl.zip",
    "darwin": "https://evermeet.cx/ffmpeg/getrelease/zip",
    "linux": "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-amd64-static.tar.xz",
}

CHUNK_SIZE = 64 * 1024
CREATE_NO_WINDOW = 0x08000000


def no_window_kwargs() -> Dict[str, Any]:
    """Popen kwargs that keep a console window from flashing up on Windows."""
    if os.name == "nt":
        return {"creationflags": CREATE_NO_WINDOW}
    return {}


def _tool_filename(tool: str) -> str:
    if os.name == "nt":
        return f"{tool}.exe"
    return tool


def _is_executable(path: Path) -> bool:
    if not path.exists() or not path.is_file():
        return False
    if os.name == "nt":
        return True
    return os.access(path, os.X_OK)


def _platform_key() -> str:
    if sys.platform.startswith("win"):
        return "win32"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


class DependencyManager:
    def __init__(self, config: AppConfig):
        self.config = config
        self._log = get_logger()

    @property
    def bin_dir(self) -> Path:
        return self.config.deps_dir

    def local_ffmpeg_path(self) -> Path:
        return self.bin_dir / _tool_filename("ffmpeg")

    def resolve_ffmpeg(self) -> Optional[Path]:
        """Local bin directory first, then PATH."""
        local = self.local_ffmpeg_path()
        if _is_executable(local):
            return local
        system = shutil.which("ffmpeg")
        if system:
            return Path(system)
        return None

    def ffmpeg_command(self) -> str:
        path = self.resolve_ffmpeg()
        return str(path) if path else "ffmpeg"

    def ffmpeg_works(self) -> bool:
        path = self.resolve_ffmpeg()
        if path is None:
            return False
        try:
            result = subprocess.run(
                [str(path), "-version"],
                capture_output=True,
                timeout=15,
                **no_window_kwargs(),
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return result.returncode == 0

    @staticmethod
    def ytdlp_version() -> Optional[str]:
        if importlib.util.find_spec("yt_dlp") is None:
            return None
        try:
            version_mod = importlib.import_module("yt_dlp.version")
        except ImportError:
            return None
        return getattr(version_mod, "__version__", "unknown")

    def check_status(self) -> DepsStatus:
        version = self.ytdlp_version()
        ffmpeg = self.resolve_ffmpeg() if self.ffmpeg_works() else None
        status = DepsStatus(
            ytdlp_installed=version is not None,
            ffmpeg_installed=ffmpeg is not None,
            ytdlp_version=version,
            ffmpeg_path=str(ffmpeg) if ffmpeg else None,
        )
        self._log.debug("Dependency status: %s", status)
        return status

    # --- installation ---------------------------------------------------
    def install(self, on_progress: ProgressCallback) -> DepsStatus:
        """Install whatever is missing; yt-dlp covers 0-50%, ffmpeg 50-100%."""
        status = self.check_status()
        if not status.ytdlp_installed:
            self.install_ytdlp(on_progress)
        if not status.ffmpeg_installed:
            self.install_ffmpeg(on_progress)
        on_progress("All dependencies ready", 100.0)
        return self.check_status()

    def install_ytdlp(self, on_progress: ProgressCallback) -> None:
        on_progress("Installing yt-dlp...", 0.0)
        command = [sys.executable, "-m", "pip", "install", "-U", YTDLP_DIST]
        self._log.info("Running %s", " ".join(command))
        try:
            result = subprocess.run(
                command, capture_output=True, text=True, timeout=600, **no_window_kwargs()
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise DependencyError(f"Failed to run pip: {e}") from e
        if result.returncode != 0:
            self._log.error("pip failed: %s", result.stderr.strip())
            raise DependencyError(f"pip exited with code {result.returncode}")
        importlib.invalidate_caches()
        on_progress("yt-dlp ready!", 50.0)

    def install_ffmpeg(self, on_progress: ProgressCallback) -> Path:
        key = _platform_key()
        url = FFMPEG_URLS[key]
        try:
            self.bin_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DependencyError(f"Failed to create deps directory: {e}") from e

        archive = self.bin_dir / ("ffmpeg.tar.xz" if key == "linux" else "ffmpeg.zip")
        on_progress("Downloading ffmpeg...", 50.0)
        self.download_file(
            url, archive, lambda pct: on_progress("Downloading ffmpeg...", 50.0 + pct * 0.4)
        )
        on_progress("Extracting ffmpeg...", 90.0)
        try:
            target = self.extract_ffmpeg(archive)
        finally:
            archive.unlink(missing_ok=True)
        _make_executable(target)
        on_progress("ffmpeg ready!", 100.0)
        return target

    def download_file(self, url: str, target: Path, on_progress: Callable[[float], None]) -> None:
        self._log.info("Downloading %s -> %s", url, target)
        try:
            with urllib.request.urlopen(url, timeout=self.config.socket_timeout) as response:
                total = int(response.headers.get("Content-Length") or 0)
                done = 0
                with open(target, "wb") as fh:
                    while True:
                        chunk = response.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        fh.write(chunk)
                        done += len(chunk)
                        if total > 0:
                            on_progress(done / total * 100.0)
        except OSError as e:
            # URLError and HTTPError are OSError subclasses
            raise DependencyError(f"Download failed: {e}") from e

    def extract_ffmpeg(self, archive: Path) -> Path:
        """Pull the ffmpeg executable out of a downloaded archive."""
        binary = _tool_filename("ffmpeg")
        target = self.bin_dir / binary
        try:
            if archive.name.endswith(".zip"):
                with zipfile.ZipFile(archive) as zf:
                    for name in zf.namelist():
                        if name == binary or name.endswith("/" + binary):
                            with zf.open(name) as src, open(target, "wb") as dst:
                                shutil.copyfileobj(src, dst)
                            return target
            else:
                with tarfile.open(archive, "r:*") as tf:
                    for member in tf.getmembers():
                        if member.isfile() and member.name.endswith("/" + binary):
                            src = tf.extractfile(member)
                            if src is None:
                                continue
                            with src, open(target, "wb") as dst:
                                shutil.copyfileobj(src, dst)
                            return target
        except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
            raise DependencyError(f"Failed to extract ffmpeg: {e}") from e
        raise DependencyError(f"{binary} not found in archive")


def _make_executable(path: Path) -> None:
    if os.name == "nt":
        return
    try:
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as e:
        raise DependencyError(f"Failed to set permissions: {e}") from e


__all__ = ["DependencyManager", "no_window_kwargs", "FFMPEG_URLS"]
