"""
Player process supervision: spawn, health-check, terminate, resume.

Players run detached in their own session and are only ever touched through
process lifecycle operations, plus a best-effort resume nudge for seamless
transitions.
"""

from __future__ import annotations

import itertools
import json
import logging
import os
import signal
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import psutil

from .players import LaunchRequest, PlayerFamily, family_for

log = logging.getLogger("motionwall.process")

MAX_CMD_ARGS = 64
TERMINATE_GRACE = 0.5
IPC_TIMEOUT = 0.5


class Health(Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    DEAD = "dead"


@dataclass
class PlayerRecord:
    pid: int = 0
    active: bool = False
    started_at: float = 0.0
    ipc_path: Optional[str] = None
    process: Optional[subprocess.Popen] = field(default=None, repr=False, compare=False)

    @property
    def empty(self) -> bool:
        return not self.pid

    def clear(self) -> None:
        self.pid = 0
        self.active = False
        self.started_at = 0.0
        self.ipc_path = None
        self.process = None


@dataclass
class CrashTracker:
    """Tracks crash frequency for rate limiting restarts."""
    count: int = 0
    last_time: float = 0.0
    window: float = 5.0  # Reset count if no crash within this window
    max_before_backoff: int = 5

    def record_crash(self, now: float) -> float:
        """Record a crash, return backoff time (0 if no backoff needed)."""
        if now - self.last_time > self.window:
            self.count = 1
        else:
            self.count += 1

        self.last_time = now

        if self.count > self.max_before_backoff:
            return min(30.0, self.count * 2.0)
        return 0.0

    def reset_if_stable(self, now: float) -> None:
        if now - self.last_time > 30:
            self.count = 0


def _runtime_dir() -> str:
    return os.environ.get("XDG_RUNTIME_DIR") or tempfile.gettempdir()


class PlayerController:
    """Spawns and reaps external player processes bound to X windows."""

    def __init__(self, binary: str, loop: bool = True, verbose: bool = False, clock=time.monotonic):
        self.binary = binary
        self.loop = loop
        self.verbose = verbose
        self.family: PlayerFamily = family_for(binary)
        self._clock = clock
        self._serial = itertools.count(1)
        # Killed processes that had not exited yet; polled by reap()
        self._zombies: list[subprocess.Popen] = []

    # ─── spawn ────────────────────────────────────────────────────────────

    def _ipc_path(self) -> str:
        return os.path.join(_runtime_dir(), f"motionwall-{os.getpid()}-{next(self._serial)}.sock")

    def build_command(self, window: int, media_path: str, paused: bool = False,
                      ipc_path: Optional[str] = None) -> list[str]:
        req = LaunchRequest(
            binary=self.binary,
            window=window,
            media_path=media_path,
            loop=self.loop,
            paused=paused,
            ipc_path=ipc_path,
        )
        return self.family.build_args(req)

    def spawn(self, slot, media_path: str, paused: bool = False) -> PlayerRecord:
        """Start a player in *slot*'s window. Failure yields an empty record."""
        if not slot.window:
            log.error(f"Slot {slot.output_index} has no window, not starting player")
            return PlayerRecord()

        ipc_path = self._ipc_path() if paused and self.family.native_pause else None
        cmd = self.build_command(slot.window, media_path, paused, ipc_path)
        if len(cmd) > MAX_CMD_ARGS:
            log.error(f"Too many command arguments ({len(cmd)})")
            return PlayerRecord()

        log.debug(f"Starting: {' '.join(cmd)}")
        output = None if self.verbose else subprocess.DEVNULL

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
                start_new_session=True,
            )
        except OSError as e:
            log.error(f"Failed to start {self.binary}: {e}")
            return PlayerRecord()

        if paused and not self.family.native_pause:
            self._signal(process.pid, signal.SIGSTOP)

        log.info(f"Started {self.binary} (pid={process.pid}) for slot {slot.output_index} "
                 f"with file: {media_path}{' (paused)' if paused else ''}")

        return PlayerRecord(
            pid=process.pid,
            active=True,
            started_at=self._clock(),
            ipc_path=ipc_path,
            process=process,
        )

    # ─── health ───────────────────────────────────────────────────────────

    def _identity_matches(self, names: list[str]) -> bool:
        wanted = {os.path.basename(self.binary), self.family.name}
        for name in names:
            base = os.path.basename(name)
            if any(w and w in base for w in wanted):
                return True
        return False

    def check(self, record: PlayerRecord) -> Health:
        """Best-effort liveness and identity check.

        Racy by nature: a pid can exit or be reused between calls. When the
        executable cannot be inspected the process is assumed to be ours.
        """
        if record.empty:
            return Health.DEAD

        if record.process is not None and record.process.poll() is not None:
            return Health.DEAD

        try:
            proc = psutil.Process(record.pid)
            if proc.status() == psutil.STATUS_ZOMBIE:
                return Health.DEAD
        except psutil.NoSuchProcess:
            return Health.DEAD
        except psutil.Error:
            return Health.UNVERIFIED

        try:
            exe = proc.exe()
            if exe and self._identity_matches([exe]):
                return Health.VERIFIED
            cmdline = proc.cmdline()
        except psutil.NoSuchProcess:
            return Health.DEAD
        except psutil.Error:
            return Health.UNVERIFIED

        if not cmdline:
            return Health.UNVERIFIED
        if self._identity_matches(cmdline[:1]):
            return Health.VERIFIED

        log.warning(f"pid {record.pid} is no longer {self.binary} ({exe or cmdline[0]})")
        return Health.DEAD

    def is_healthy(self, record: PlayerRecord) -> bool:
        return self.check(record) is not Health.DEAD

    # ─── terminate ────────────────────────────────────────────────────────

    def _signal(self, pid: int, sig: int) -> bool:
        try:
            os.kill(pid, sig)
            return True
        except ProcessLookupError:
            return False
        except PermissionError as e:
            log.warning(f"Cannot signal pid {pid}: {e}")
            return False

    def terminate(self, record: PlayerRecord, grace: float = TERMINATE_GRACE) -> None:
        """SIGTERM, wait up to *grace*, then SIGKILL. No-op on an empty record."""
        if record.empty:
            return

        pid = record.pid
        process = record.process
        if process is not None and process.poll() is not None:
            # Already reaped: the pid may belong to someone else by now
            log.debug(f"Process {pid} already exited")
            self._remove_ipc(record.ipc_path)
            record.clear()
            return

        self._signal(pid, signal.SIGTERM)
        # A stopped (pre-staged) process only acts on SIGTERM once continued
        self._signal(pid, signal.SIGCONT)

        if process is not None:
            try:
                process.wait(timeout=grace)
                log.debug(f"Process {pid} terminated gracefully")
            except subprocess.TimeoutExpired:
                log.warning(f"Process {pid} didn't terminate, killing...")
                process.kill()
                if process.poll() is None:
                    self._zombies.append(process)
        else:
            deadline = time.monotonic() + grace
            while time.monotonic() < deadline and psutil.pid_exists(pid):
                time.sleep(0.05)
            if psutil.pid_exists(pid):
                log.warning(f"Process {pid} didn't terminate, killing...")
                self._signal(pid, signal.SIGKILL)
            self._waitpid(pid)

        self._remove_ipc(record.ipc_path)
        record.clear()

    def _waitpid(self, pid: int) -> None:
        try:
            os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            pass

    def _remove_ipc(self, path: Optional[str]) -> None:
        if path:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                log.debug(f"Failed to remove {path}: {e}")

    def reap(self) -> None:
        """Collect killed players that had not exited when terminate() returned."""
        self._zombies = [p for p in self._zombies if p.poll() is None]

    # ─── resume ───────────────────────────────────────────────────────────

    def resume(self, record: PlayerRecord) -> bool:
        """Unpause a pre-staged player. Delivery is not guaranteed."""
        if record.empty:
            return False

        delivered = self._signal(record.pid, signal.SIGCONT)

        if record.ipc_path:
            payload = json.dumps({"command": ["set_property", "pause", False]}) + "\n"
            try:
                with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                    sock.settimeout(IPC_TIMEOUT)
                    sock.connect(record.ipc_path)
                    sock.sendall(payload.encode())
                delivered = True
            except OSError as e:
                log.debug(f"IPC resume to pid {record.pid} failed: {e}")
                delivered = False

        return delivered
