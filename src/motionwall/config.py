"""Line-oriented ``key=value`` configuration file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path

CONFIG_DIR = Path.home() / ".config" / "motionwall"
CONFIG_FILE = CONFIG_DIR / "config"

log = logging.getLogger("motionwall.config")


@dataclass
class MotionWallConfig:
    """Persistent settings. Field names double as the file's keys."""
    media_player: str = "mpv"
    playlist_duration: int = 30
    playlist_shuffle: bool = False
    playlist_loop: bool = True
    multi_monitor: bool = False
    seamless_transitions: bool = False
    per_monitor_content: bool = False

    @classmethod
    def from_file(cls, path: Path = CONFIG_FILE) -> MotionWallConfig:
        config = cls()
        config.load(path)
        return config

    def load(self, path: Path = CONFIG_FILE) -> None:
        """Overlay values from *path*. A missing file is not an error."""
        path = Path(path)
        if not path.exists():
            return

        try:
            lines = path.read_text().splitlines()
        except OSError as e:
            log.warning(f"Failed to read config {path}: {e}")
            return

        types = {f.name: f.type for f in fields(self)}

        for line in lines:
            if not line or line.startswith("#"):
                continue

            key, sep, value = line.partition("=")
            if not sep or key not in types:
                continue

            kind = types[key]
            if kind == "bool":
                setattr(self, key, value == "true")
            elif kind == "int":
                try:
                    setattr(self, key, int(value))
                except ValueError:
                    log.warning(f"Invalid {key}: {value}")
            elif value:
                setattr(self, key, value)

        log.debug(f"Loaded config from {path}")

    def save(self, path: Path = CONFIG_FILE) -> None:
        path = Path(path)
        lines = ["# MotionWall Configuration File"]
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool):
                value = "true" if value else "false"
            lines.append(f"{f.name}={value}")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(lines) + "\n")
        except OSError as e:
            log.warning(f"Failed to save config {path}: {e}")
            return

        log.debug(f"Configuration saved to: {path}")
