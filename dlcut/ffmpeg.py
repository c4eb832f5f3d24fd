"""ffmpeg integration for trimming local files.

Cuts try a stream copy first (fast, lossless) and fall back to a
libx264/aac re-encode when ffmpeg rejects the copy.
"""

from __future__ import annotations

import re
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, List

from .config import AppConfig
from .deps import DependencyManager, no_window_kwargs
from .errors import Cancelled, CutError, FfmpegNotFound
from .logging_utils import get_logger
from .models import ProgressStage, ProgressUpdate

ProgressCallback = Callable[[ProgressUpdate], None]

OUT_TIME_RE = re.compile(r"out_time_ms=(\d+)")
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

STDERR_TAIL = 20


class VideoCutter:
    def __init__(self, config: AppConfig, deps: DependencyManager | None = None):
        self.config = config
        self.deps = deps or DependencyManager(config)
        self._log = get_logger()

    def _ffmpeg(self) -> str:
        return self.deps.ffmpeg_command()

    def check_ffmpeg(self) -> None:
        try:
            result = subprocess.run(
                [self._ffmpeg(), "-version"],
                capture_output=True,
                stdin=subprocess.DEVNULL,
                timeout=15,
                **no_window_kwargs(),
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise FfmpegNotFound() from e
        if result.returncode != 0:
            raise FfmpegNotFound()

    def probe_duration(self, path: str) -> float:
        """Duration in seconds, read from the ``Duration:`` line of ``ffmpeg -i``."""
        if not Path(path).is_file():
            raise CutError("Input file not found")
        try:
            # ffmpeg exits non-zero without an output file; only stderr matters
            result = subprocess.run(
                [self._ffmpeg(), "-hide_banner", "-nostdin", "-i", path],
                capture_output=True,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                timeout=30,
                **no_window_kwargs(),
            )
        except FileNotFoundError as e:
            raise FfmpegNotFound() from e
        except (OSError, subprocess.SubprocessError) as e:
            raise CutError(f"Failed to run ffmpeg: {e}") from e
        m = DURATION_RE.search(result.stderr or "")
        if not m:
            raise CutError("Could not determine video duration")
        hours, minutes, seconds = m.groups()
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)

    def cut_video(
        self,
        input_path: str,
        output_path: str,
        start_time: float,
        end_time: float,
        on_progress: ProgressCallback,
        cancel_event: threading.Event | None = None,
    ) -> str:
        if not Path(input_path).is_file():
            raise CutError("Input file not found")
        if end_time <= start_time:
            raise CutError("End time must be after start time")
        if Path(input_path).resolve() == Path(output_path).resolve():
            raise CutError("Output must differ from input")
        cancel_event = cancel_event or threading.Event()
        duration = end_time - start_time

        on_progress(ProgressUpdate(
            stage=ProgressStage.CUTTING, percent=0.0, message="Starting video cut..."
        ))
        code = self._run(
            copy_args(input_path, output_path, start_time, duration),
            duration, "Cutting video...", on_progress, cancel_event,
        )
        if code != 0:
            self._log.warning("Stream copy failed (exit %s); re-encoding", code)
            on_progress(ProgressUpdate(
                stage=ProgressStage.CUTTING,
                percent=0.0,
                message="Re-encoding video (this may take longer)...",
            ))
            code = self._run(
                reencode_args(input_path, output_path, start_time, duration),
                duration, "Re-encoding...", on_progress, cancel_event,
            )
            if code != 0:
                raise CutError("ffmpeg encoding failed")

        on_progress(ProgressUpdate(
            stage=ProgressStage.COMPLETE, percent=100.0, message="Cut complete!"
        ))
        return output_path

    def _run(
        self,
        args: List[str],
        duration: float,
        label: str,
        on_progress: ProgressCallback,
        cancel_event: threading.Event,
    ) -> int:
        cmd = [self._ffmpeg()] + args
        self._log.debug("Running %s", cmd)
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
                **no_window_kwargs(),
            )
        except FileNotFoundError as e:
            raise FfmpegNotFound() from e
        except OSError as e:
            raise CutError(f"Failed to start ffmpeg: {e}") from e

        tail: deque[str] = deque(maxlen=STDERR_TAIL)

        def drain_stderr():
            for line in iter(proc.stderr.readline, ""):
                tail.append(line.rstrip())

        drainer = threading.Thread(target=drain_stderr, daemon=True)
        drainer.start()

        total_us = duration * 1_000_000
        assert proc.stdout is not None
        for line in iter(proc.stdout.readline, ""):
            if cancel_event.is_set():
                proc.terminate()
                break
            percent = progress_percent(line, total_us)
            if percent is not None:
                on_progress(ProgressUpdate(
                    stage=ProgressStage.CUTTING,
                    percent=percent,
                    message=f"{label} {percent:.0f}%",
                ))
        code = proc.wait()
        drainer.join(timeout=1.0)
        if cancel_event.is_set():
            Path(args[-1]).unlink(missing_ok=True)
            raise Cancelled()
        if code != 0:
            self._log.debug("ffmpeg stderr tail:\n%s", "\n".join(tail))
        return code


def progress_percent(line: str, total_us: float) -> float | None:
    # ffmpeg reports out_time_ms in microseconds despite the name
    m = OUT_TIME_RE.search(line)
    if not m:
        return None
    if total_us <= 0:
        return 0.0
    return min(int(m.group(1)) / total_us * 100.0, 100.0)


def copy_args(input_path: str, output_path: str, start: float, duration: float) -> List[str]:
    return [
        "-y", "-nostdin",
        "-ss", f"{start:.3f}",
        "-i", input_path,
        "-t", f"{duration:.3f}",
        "-c", "copy",
        "-avoid_negative_ts", "make_zero",
        "-progress", "pipe:1",
        output_path,
    ]


def reencode_args(input_path: str, output_path: str, start: float, duration: float) -> List[str]:
    return [
        "-y", "-nostdin",
        "-ss", f"{start:.3f}",
        "-i", input_path,
        "-t", f"{duration:.3f}",
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", "23",
        "-c:a", "aac",
        "-b:a", "128k",
        "-progress", "pipe:1",
        output_path,
    ]


__all__ = ["VideoCutter", "progress_percent", "copy_args", "reencode_args"]
