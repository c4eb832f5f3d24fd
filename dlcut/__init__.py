"""DLCut backend: yt-dlp downloads, ffmpeg cuts and a JSON-lines IPC bridge."""

from .commands import Backend
from .config import AppConfig
from .errors import AppError
from .events import EventBus

__all__ = [
    "AppConfig",
    "AppError",
    "Backend",
    "EventBus",
]


def main():
    """Run the command-line interface."""
    from .cli import main as cli_main

    cli_main()
