"""Backend command surface.

Every public method here is an IPC endpoint. Long-running work (downloads,
local cuts) runs on a worker thread and reports through the event bus; the
command itself returns as soon as the job is accepted.
"""

from __future__ import annotations

import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from . import events
from .config import AppConfig
from .deps import DependencyManager
from .downloader import VideoDownloader
from .errors import AppError, Cancelled, CutError, DownloadError, FileMissing, Internal
from .events import EventBus
from .ffmpeg import VideoCutter
from .fileserver import FileServer
from .logging_utils import get_logger
from .models import DepsStatus, DownloadRequest, ProgressStage, ProgressUpdate, VideoInfo
from .naming import generate_filename
from .timecodes import validate_timestamps
from .urls import validate_url


@dataclass
class Job:
    name: str
    thread: threading.Thread
    cancel: threading.Event


class Backend:
    def __init__(
        self,
        config: AppConfig | None = None,
        bus: EventBus | None = None,
        deps: DependencyManager | None = None,
        downloader: VideoDownloader | None = None,
        cutter: VideoCutter | None = None,
    ):
        self.config = config or AppConfig()
        self.bus = bus or EventBus()
        self.deps = deps or DependencyManager(self.config)
        self.downloader = downloader or VideoDownloader(self.config, self.deps)
        self.cutter = cutter or VideoCutter(self.config, self.deps)
        self._lock = threading.Lock()
        self._download: Optional[Job] = None
        self._cut: Optional[Job] = None
        self._server: Optional[FileServer] = None
        self._log = get_logger()

    # --- dependencies -----------------------------------------------------
    def check_dependencies(self) -> DepsStatus:
        status = self.deps.check_status()
        self._log.info(
            "Dependencies: yt-dlp=%s ffmpeg=%s",
            status.ytdlp_version or "missing",
            status.ffmpeg_path or "missing",
        )
        return status

    def install_dependencies(self) -> DepsStatus:
        def report(message: str, percent: float) -> None:
            self.bus.emit(events.SETUP_PROGRESS, {"message": message, "percent": percent})

        self._log.info("Installing missing dependencies")
        return self.deps.install(report)

    # --- metadata ---------------------------------------------------------
    def fetch_video_info(self, url: str) -> VideoInfo:
        self.bus.emit(events.PROGRESS, ProgressUpdate(
            stage=ProgressStage.FETCHING, percent=0.0, message="Fetching video information..."
        ))
        info = self.downloader.fetch_video_info(url)
        self.bus.emit(events.PROGRESS, ProgressUpdate(
            stage=ProgressStage.FETCHING, percent=100.0, message="Video information loaded"
        ))
        self._log.info("Fetched '%s' (%s, %s)", info.title, info.id, info.duration_string)
        return info

    def validate_timestamps(
        self, start: Optional[str], end: Optional[str], duration: float
    ) -> Tuple[Optional[float], Optional[float]]:
        result = validate_timestamps(_as_text(start), _as_text(end), float(duration))
        self._log.debug("Validated range %r-%r against %.3fs: %s", start, end, float(duration), result)
        return result

    # --- downloads --------------------------------------------------------
    def start_download(self, request: DownloadRequest | Dict[str, Any]) -> None:
        if not isinstance(request, DownloadRequest):
            try:
                request = DownloadRequest.from_dict(request)
            except ValueError as e:
                raise DownloadError(str(e)) from e
        validate_url(request.url)
        with self._lock:
            if self._download is not None:
                raise DownloadError("A download is already in progress")
            cancel = threading.Event()
            self._download = self._spawn(
                "download", lambda: self._run_download(request, cancel), cancel
            )

    def cancel_download(self) -> None:
        with self._lock:
            job = self._download
        if job is None:
            raise Cancelled()
        self._log.info("Cancelling active download")
        job.cancel.set()

    def _run_download(self, request: DownloadRequest, cancel: threading.Event) -> None:
        def forward(update: ProgressUpdate) -> None:
            self.bus.emit(events.PROGRESS, update)

        path, error = self._guarded(
            "download", lambda: self.downloader.download(request, forward, cancel)
        )
        with self._lock:
            self._download = None
        if error is None:
            self._log.info("Download complete: %s", path)
            self.bus.emit(events.DOWNLOAD_COMPLETE, path)
            return
        self.bus.emit(events.PROGRESS, ProgressUpdate(
            stage=ProgressStage.ERROR, percent=0.0, message=str(error)
        ))
        self.bus.emit(events.DOWNLOAD_ERROR, str(error))

    # --- local cuts -------------------------------------------------------
    def get_video_duration(self, path: str) -> float:
        duration = self.cutter.probe_duration(path)
        self._log.info("Duration of %s: %.3fs", path, duration)
        return duration

    def cut_local_video(
        self,
        input_path: str,
        output_path: str,
        start_time: Any = None,
        end_time: Any = None,
    ) -> None:
        if not Path(input_path).is_file():
            raise CutError("Input file not found")
        duration = self.cutter.probe_duration(input_path)
        start, end = validate_timestamps(_as_text(start_time), _as_text(end_time), duration)
        start = start if start is not None else 0.0
        end = end if end is not None else duration
        with self._lock:
            if self._cut is not None:
                raise CutError("A cut is already in progress")
            cancel = threading.Event()
            self._cut = self._spawn(
                "cut",
                lambda: self._run_cut(input_path, output_path, start, end, cancel),
                cancel,
            )

    def _run_cut(
        self, input_path: str, output_path: str, start: float, end: float, cancel: threading.Event
    ) -> None:
        def forward(update: ProgressUpdate) -> None:
            self.bus.emit(events.CUT_PROGRESS, update)

        path, error = self._guarded(
            "cut",
            lambda: self.cutter.cut_video(input_path, output_path, start, end, forward, cancel),
        )
        with self._lock:
            self._cut = None
        if error is None:
            self._log.info("Cut complete: %s", path)
            self.bus.emit(events.CUT_COMPLETE, path)
        else:
            self.bus.emit(events.CUT_ERROR, str(error))

    # --- files ------------------------------------------------------------
    def generate_filename(self, title: str, format_ext: str) -> str:
        name = generate_filename(title, format_ext)
        self._log.debug("Generated filename %s", name)
        return name

    def get_default_download_dir(self) -> Optional[str]:
        directory = self.config.download_dir()
        self._log.debug("Default download directory: %s", directory)
        return str(directory) if directory else None

    def show_in_folder(self, path: str) -> None:
        target = Path(path)
        if not target.exists():
            raise FileMissing(path)
        reveal_in_file_manager(target)

    def serve_local_file(self, path: str) -> str:
        if not Path(path).is_file():
            raise FileMissing(path)
        with self._lock:
            previous, self._server = self._server, None
        if previous is not None:
            previous.stop()
        server = FileServer(path).start()
        with self._lock:
            self._server = server
        return server.url

    # --- lifecycle --------------------------------------------------------
    def wait(self, timeout: float | None = None) -> None:
        """Block until active jobs finish."""
        with self._lock:
            jobs = [j for j in (self._download, self._cut) if j is not None]
        for job in jobs:
            job.thread.join(timeout)

    def shutdown(self) -> None:
        with self._lock:
            jobs = [j for j in (self._download, self._cut) if j is not None]
            server, self._server = self._server, None
        for job in jobs:
            job.cancel.set()
        for job in jobs:
            job.thread.join(timeout=5.0)
        if server is not None:
            server.stop()
        self._log.debug("Backend shut down")

    # --- helpers ----------------------------------------------------------
    def _spawn(self, name: str, target: Callable[[], None], cancel: threading.Event) -> Job:
        thread = threading.Thread(target=target, name=f"dlcut-{name}", daemon=True)
        job = Job(name=name, thread=thread, cancel=cancel)
        thread.start()
        return job

    def _guarded(self, name: str, work: Callable[[], str]) -> Tuple[Optional[str], Optional[AppError]]:
        try:
            return work(), None
        except Cancelled as e:
            self._log.info("%s cancelled", name.capitalize())
            return None, e
        except AppError as e:
            self._log.error("%s failed: %r (detail=%s)", name.capitalize(), e, e.detail)
            return None, e
        except Exception as e:
            self._log.exception("Unexpected %s failure", name)
            return None, Internal(str(e))

    def command_table(self) -> Dict[str, Callable[..., Any]]:
        return {name: getattr(self, name) for name in COMMANDS}


COMMANDS = (
    "check_dependencies",
    "install_dependencies",
    "fetch_video_info",
    "validate_timestamps",
    "start_download",
    "cancel_download",
    "cut_local_video",
    "get_video_duration",
    "generate_filename",
    "get_default_download_dir",
    "show_in_folder",
    "serve_local_file",
)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return f"{float(value):f}"
    return str(value)


def reveal_in_file_manager(path: Path) -> None:
    """Open the OS file manager with ``path`` selected where supported."""
    try:
        if sys.platform.startswith("win"):
            subprocess.Popen(["explorer", f"/select,{path}"])
        elif sys.platform == "darwin":
            subprocess.Popen(["open", "-R", str(path)], close_fds=True)
        else:
            folder = path if path.is_dir() else path.parent
            subprocess.Popen(["xdg-open", str(folder)], close_fds=True)
    except OSError as e:
        raise Internal(f"Failed to open file manager: {e}") from e


__all__ = ["Backend", "COMMANDS", "reveal_in_file_manager"]
