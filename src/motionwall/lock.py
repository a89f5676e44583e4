"""Single-instance advisory lock."""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

log = logging.getLogger("motionwall.lock")


def default_lock_path() -> Path:
    return Path(os.environ.get("XDG_RUNTIME_DIR") or tempfile.gettempdir()) / "motionwall.lock"


class InstanceLock:
    """Exclusive, non-blocking ``flock`` held for the life of the process."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_lock_path()
        self._file = None

    def acquire(self) -> bool:
        lock_file = open(self.path, "a+")
        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            return False
        except OSError:
            lock_file.close()
            raise

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        self._file = lock_file
        log.debug(f"Acquired instance lock {self.path}")
        return True

    def release(self) -> None:
        if self._file is None:
            return
        fcntl.flock(self._file, fcntl.LOCK_UN)
        self._file.close()
        self._file = None

    @property
    def held(self) -> bool:
        return self._file is not None
