"""Media playlists: building from a path and advancing through items."""

from __future__ import annotations

import glob
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Optional

log = logging.getLogger("motionwall.playlist")

MAX_PLAYLIST = 1024
MAX_PATH = 4096

MEDIA_PATTERNS = ("*.mp4", "*.avi", "*.mkv", "*.mov", "*.webm", "*.gif", "*.mp3", "*.wav")


@dataclass
class Playlist:
    """Ordered media paths with a current position.

    ``0 <= current < count`` holds whenever the playlist is non-empty. An
    empty playlist is unusable and must never be handed to a player.
    """
    paths: list[str] = field(default_factory=list)
    current: int = 0
    shuffle: bool = False
    loop: bool = True
    duration: int = 30
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)
    # Index reserved by peek_next() so advance() lands on the pre-staged item
    _reserved: Optional[int] = field(default=None, repr=False, compare=False)

    @property
    def count(self) -> int:
        return len(self.paths)

    @property
    def usable(self) -> bool:
        return self.count > 0

    def current_path(self) -> str:
        return self.paths[self.current]

    def _choose_next(self) -> int:
        if self.shuffle:
            return self.rng.randrange(self.count)
        return (self.current + 1) % self.count

    def peek_next(self) -> str:
        """Path that the next advance() will select, without moving."""
        if self.count <= 1:
            return self.paths[self.current]
        if self._reserved is None:
            self._reserved = self._choose_next()
        return self.paths[self._reserved]

    def advance(self) -> None:
        if self.count <= 1:
            return

        if self._reserved is not None:
            self.current = self._reserved
            self._reserved = None
        else:
            self.current = self._choose_next()

        log.debug(f"Switching to: {self.current_path()}")

    def copy(self) -> Playlist:
        """Independent playlist over the same items, rewound to the start."""
        return Playlist(
            paths=list(self.paths),
            shuffle=self.shuffle,
            loop=self.loop,
            duration=self.duration,
        )


def build_playlist(path: str, shuffle: bool = False, loop: bool = True, duration: int = 30) -> Playlist:
    """Build a playlist from a media file or a directory of media files.

    Directories are scanned non-recursively, one pattern at a time, keeping
    the order the filesystem returns. The result may be empty; callers must
    check ``usable``.
    """
    playlist = Playlist(shuffle=shuffle, loop=loop, duration=duration)

    if not os.path.exists(path):
        log.error(f"Cannot access path: {path}")
        return playlist

    if not os.path.isdir(path):
        if _path_fits(path):
            playlist.paths.append(path)
        return playlist

    base = glob.escape(path)
    for pattern in MEDIA_PATTERNS:
        for match in glob.glob(os.path.join(base, pattern)):
            if playlist.count >= MAX_PLAYLIST:
                log.warning(f"Playlist capped at {MAX_PLAYLIST} items")
                return playlist
            if _path_fits(match):
                playlist.paths.append(match)

    log.debug(f"Created playlist with {playlist.count} items")
    for i, item in enumerate(playlist.paths):
        log.debug(f"  {i}: {item}")

    return playlist


def _path_fits(path: str) -> bool:
    if len(os.fsencode(path)) >= MAX_PATH:
        log.warning(f"Skipping path longer than {MAX_PATH} bytes: {path[:64]}...")
        return False
    return True
