"""
External player command lines.

Each supported player family has its own argument builder. Adding a player
means adding one entry to PLAYER_FAMILIES.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class LaunchRequest:
    """Everything a player needs to know at spawn time."""
    binary: str
    window: int
    media_path: str
    loop: bool = True
    paused: bool = False
    ipc_path: Optional[str] = None

    @property
    def wid(self) -> str:
        return f"0x{self.window:x}"


def _mpv_args(req: LaunchRequest) -> list[str]:
    args = [
        req.binary,
        "--wid", req.wid,
        "--really-quiet",
        "--no-audio",
        "--loop-file", "inf" if req.loop else "no",
        "--panscan=1.0",
        "--keepaspect=no",
        "--hwdec=auto",
    ]
    if req.paused:
        args.append("--pause")
        if req.ipc_path:
            args.append(f"--input-ipc-server={req.ipc_path}")
    args.append(req.media_path)
    return args


def _mplayer_args(req: LaunchRequest) -> list[str]:
    args = [
        req.binary,
        "-wid", req.wid,
        "-nosound",
        "-panscan", "1.0",
        "-framedrop",
    ]
    if req.loop:
        args += ["-loop", "0"]
    args.append(req.media_path)
    return args


def _vlc_args(req: LaunchRequest) -> list[str]:
    args = [
        req.binary,
        "--intf", "dummy",
        "--no-audio",
        "--drawable-xid", req.wid,
    ]
    if req.loop:
        args.append("--loop")
    args.append(req.media_path)
    return args


def _generic_args(req: LaunchRequest) -> list[str]:
    return [req.binary, req.media_path]


@dataclass(frozen=True)
class PlayerFamily:
    name: str
    build_args: Callable[[LaunchRequest], list[str]]
    # Starts paused on its own and can be resumed over a JSON IPC socket.
    # Other families are frozen with SIGSTOP and resumed with SIGCONT.
    native_pause: bool = False


PLAYER_FAMILIES = {
    "mpv": PlayerFamily("mpv", _mpv_args, native_pause=True),
    "mplayer": PlayerFamily("mplayer", _mplayer_args),
    "vlc": PlayerFamily("vlc", _vlc_args),
}

GENERIC = PlayerFamily("generic", _generic_args)


def family_for(binary: str) -> PlayerFamily:
    """Pick the family whose name appears in the binary's basename."""
    name = os.path.basename(binary)
    for key, family in PLAYER_FAMILIES.items():
        if key in name:
            return family
    return GENERIC
