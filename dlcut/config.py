"""Configuration management for the DLCut backend."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from .models import DownloadMode

APP_DIR_NAME = "DLCut"
CONFIG_PATH = Path.home() / ".config" / "dlcut" / "config.json"


def local_data_dir() -> Path:
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA")
        return Path(base) if base else Path.home() / "AppData" / "Local"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    xdg = os.environ.get("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


def default_download_dir() -> Optional[Path]:
    downloads = Path.home() / "Downloads"
    if downloads.is_dir():
        return downloads
    home = Path.home()
    return home if home.is_dir() else None


@dataclass
class AppConfig:
    output_dir: Optional[Path] = None  # None -> ~/Downloads or home
    naming_template: str = "{title}"
    default_mode: str = DownloadMode.VIDEO_WITH_AUDIO.value
    default_quality: str = "1080"
    retry_attempts: int = 3
    socket_timeout: int = 20
    deps_dir: Path = field(default_factory=lambda: local_data_dir() / APP_DIR_NAME / "bin")
    log_level: str = "INFO"

    def __post_init__(self):
        if self.output_dir is not None and not isinstance(self.output_dir, Path):
            self.output_dir = Path(self.output_dir)
        if not isinstance(self.deps_dir, Path):
            self.deps_dir = Path(self.deps_dir)

    def download_dir(self) -> Optional[Path]:
        return self.output_dir or default_download_dir()

    def save(self, path: Path = CONFIG_PATH) -> None:
        """Saves the configuration to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2, cls=PathEncoder)

    @classmethod
    def from_file(cls, path: Path = CONFIG_PATH) -> "AppConfig":
        """Loads configuration from a JSON file, ignoring unknown keys."""
        if not path.exists():
            return cls()
        with open(path, "r") as f:
            data = json.load(f)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class PathEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:
        if isinstance(o, Path):
            return str(o)
        return super().default(o)
