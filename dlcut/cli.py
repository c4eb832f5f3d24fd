"""Command-line interface: one-shot commands and the IPC bridge."""

from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path
from typing import Callable, Optional

from rich import print as rprint
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeRemainingColumn
from rich.table import Table

from .commands import Backend
from .config import AppConfig
from .errors import AppError, Cancelled, DownloadError, Internal
from .ipc import IpcBridge
from .logging_utils import get_logger, set_level
from .models import DownloadMode, DownloadRequest, ProgressUpdate
from .naming import expand_template
from .timecodes import validate_timestamps

err_console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dlcut", description="Download and cut online videos")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument("--config", type=Path, default=None, help="Config JSON path")
    sub = p.add_subparsers(dest="command", required=True)

    info = sub.add_parser("info", help="Show video metadata")
    info.add_argument("url")
    info.add_argument("--json", action="store_true", help="Print raw JSON")

    dl = sub.add_parser("download", help="Download a video (optionally trimmed)")
    dl.add_argument("url")
    dl.add_argument("-q", "--quality", default=None, help="Max height (e.g. 720) or audio quality (high|medium|low)")
    dl.add_argument(
        "-m", "--mode", choices=["video", "audio"], default=None, help="Video+audio or audio only"
    )
    dl.add_argument("-o", "--output", type=Path, default=None, help="Output directory")
    dl.add_argument("--start", default=None, help="Start time (SS, MM:SS or HH:MM:SS)")
    dl.add_argument("--end", default=None, help="End time (SS, MM:SS or HH:MM:SS)")

    cut = sub.add_parser("cut", help="Trim a local media file with ffmpeg")
    cut.add_argument("input")
    cut.add_argument("output")
    cut.add_argument("--start", default=None)
    cut.add_argument("--end", default=None)

    deps = sub.add_parser("deps", help="Check or install yt-dlp / ffmpeg")
    deps.add_argument("--install", action="store_true", help="Install missing dependencies")

    sub.add_parser("serve", help="Run the JSON-lines IPC bridge on stdin/stdout")
    return p


def _progress_bar() -> Progress:
    return Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        "[progress.percentage]{task.percentage:>3.0f}%",
        TextColumn("{task.fields[speed]}"),
        TimeRemainingColumn(),
        console=err_console,
    )


def _run_cancellable(work: Callable[[threading.Event], str]) -> str:
    """Run ``work`` on a worker thread so Ctrl+C can cancel it cleanly."""
    cancel = threading.Event()
    outcome: dict = {}

    def target():
        try:
            outcome["result"] = work(cancel)
        except AppError as e:
            outcome["error"] = e
        except Exception as e:
            get_logger().exception("Unexpected failure")
            outcome["error"] = Internal(str(e))

    worker = threading.Thread(target=target, daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            rprint("[yellow]Cancelling...[/yellow]")
            cancel.set()
    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def cmd_info(backend: Backend, args) -> int:
    info = backend.fetch_video_info(args.url)
    if args.json:
        print(json.dumps(info.to_dict(), indent=2))
        return 0
    rprint(f"[bold]{info.title}[/bold] [dim]({info.id})[/dim]")
    rprint(f"Uploader: {info.uploader or 'unknown'}  Duration: {info.duration_string}")
    table = Table("Quality", "Approx. size")
    for q in info.video_qualities:
        table.add_row(q.label, q.filesize_approx or "-")
    for a in info.audio_qualities:
        table.add_row(a.label, "-")
    rprint(table)
    return 0


def cmd_download(backend: Backend, args) -> int:
    config = backend.config
    mode_name = args.mode or ("audio" if config.default_mode == DownloadMode.AUDIO_ONLY.value else "video")
    mode = DownloadMode.AUDIO_ONLY if mode_name == "audio" else DownloadMode.VIDEO_WITH_AUDIO
    quality = args.quality or ("high" if mode is DownloadMode.AUDIO_ONLY else config.default_quality)

    info = backend.fetch_video_info(args.url)
    start, end = validate_timestamps(args.start, args.end, info.duration)
    out_dir: Optional[Path] = args.output or config.download_dir()
    if out_dir is None:
        raise DownloadError("No output directory available")
    out_dir.mkdir(parents=True, exist_ok=True)
    stem = expand_template(config.naming_template, info, quality=quality, mode=mode)
    request = DownloadRequest(
        url=args.url,
        quality=quality,
        mode=mode,
        output_path=str(out_dir / f"{stem}.{mode.extension}"),
        start_time=start,
        end_time=end,
    )

    with _progress_bar() as progress:
        task = progress.add_task(info.title[:50], total=100, speed="")

        def on_progress(update: ProgressUpdate) -> None:
            progress.update(task, completed=update.percent, speed=update.speed or "")

        path = _run_cancellable(
            lambda cancel: backend.downloader.download(request, on_progress, cancel)
        )
    rprint(f"[bold green]Saved[/] {path}")
    return 0


def cmd_cut(backend: Backend, args) -> int:
    duration = backend.get_video_duration(args.input)
    start, end = validate_timestamps(args.start, args.end, duration)
    start = start if start is not None else 0.0
    end = end if end is not None else duration

    with _progress_bar() as progress:
        task = progress.add_task(Path(args.input).name[:50], total=100, speed="")

        def on_progress(update: ProgressUpdate) -> None:
            progress.update(task, completed=update.percent)

        path = _run_cancellable(
            lambda cancel: backend.cutter.cut_video(
                args.input, args.output, start, end, on_progress, cancel
            )
        )
    rprint(f"[bold green]Saved[/] {path}")
    return 0


def cmd_deps(backend: Backend, args) -> int:
    if args.install:
        def report(message: str, percent: float) -> None:
            rprint(f"[cyan]{percent:5.1f}%[/] {message}")

        status = backend.deps.install(report)
    else:
        status = backend.check_dependencies()
    ytdlp = f"[green]{status.ytdlp_version}[/]" if status.ytdlp_installed else "[red]missing[/]"
    ffmpeg = f"[green]{status.ffmpeg_path}[/]" if status.ffmpeg_installed else "[red]missing[/]"
    rprint(f"yt-dlp: {ytdlp}")
    rprint(f"ffmpeg: {ffmpeg}")
    return 0 if status.ready else 1


def cmd_serve(backend: Backend, args) -> int:
    IpcBridge(backend, sys.stdin, sys.stdout).serve()
    return 0


HANDLERS = {
    "info": cmd_info,
    "download": cmd_download,
    "cut": cmd_cut,
    "deps": cmd_deps,
    "serve": cmd_serve,
}


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = AppConfig.from_file(args.config) if args.config else AppConfig.from_file()
    set_level("DEBUG" if args.verbose else config.log_level)
    log = get_logger()
    log.debug("Running '%s' with config %s", args.command, config)

    backend = Backend(config)
    try:
        return HANDLERS[args.command](backend, args)
    except Cancelled as e:
        rprint(f"[yellow]{e}[/yellow]")
        return 1
    except AppError as e:
        log.debug("Command failed: %r (detail=%s)", e, e.detail)
        rprint(f"[bold red]Error:[/] {e}")
        return 1
    finally:
        if args.command != "serve":
            backend.shutdown()


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
