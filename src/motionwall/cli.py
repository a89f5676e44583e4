#!/usr/bin/env python3
"""
MotionWall - video and animation desktop backgrounds.

Puts a bottom-stacked, input-transparent window on each monitor and keeps an
external player (mpv, mplayer or vlc) running inside it, following monitor
hot-plug, restarting crashed players and cycling through a playlist.

Usage:
    motionwall [OPTIONS] <media-file-or-directory> [more paths...]

Examples:
    motionwall video.mp4                    # Single video
    motionwall -m ~/Videos/                 # Multi-monitor playlist
    motionwall -p mpv -s -l ~/Wallpapers/   # Shuffled looping playlist
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import CONFIG_FILE, MotionWallConfig
from .lock import InstanceLock
from .playlist import build_playlist
from .process import PlayerController
from .supervisor import StartupError, Supervisor
from .xdisplay import X11Backend

log = logging.getLogger("motionwall")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="motionwall",
        description=f"motionwall v{__version__} - Advanced Desktop Background Animation Tool",
    )
    parser.add_argument("paths", nargs="*", metavar="PATH",
                        help="Media file or directory; extra paths feed further monitors with --per-monitor")
    parser.add_argument("-m", "--multi-monitor", action="store_true", help="Enable multi-monitor support")
    parser.add_argument("-p", "--player", help="Media player to use (mpv, mplayer, vlc)")
    parser.add_argument("-s", "--shuffle", action="store_true", help="Shuffle playlist")
    parser.add_argument("-l", "--loop", action="store_true", help="Loop playlist")
    parser.add_argument("-d", "--duration", type=int, help="Duration per video in playlist (default: 30)")
    parser.add_argument("-c", "--config", type=Path, help="Use custom config file")
    parser.add_argument("--seamless", action="store_true", help="Pre-start the next video before switching")
    parser.add_argument("--per-monitor", action="store_true", help="Independent playlist per monitor")
    parser.add_argument("--daemon", action="store_true", help="Run as daemon")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    return parser


def resolve_config(args: argparse.Namespace, default_path: Path = CONFIG_FILE) -> MotionWallConfig:
    """Defaults, then the default file, then --config, then flags."""
    config = MotionWallConfig.from_file(default_path)
    if args.config:
        config.load(args.config)

    if args.multi_monitor:
        config.multi_monitor = True
    if args.player:
        config.media_player = args.player
    if args.shuffle:
        config.playlist_shuffle = True
    if args.loop:
        config.playlist_loop = True
    if args.duration is not None:
        config.playlist_duration = args.duration
    if args.seamless:
        config.seamless_transitions = True
    if args.per_monitor:
        config.per_monitor_content = True
    return config


def daemonize(debug: bool) -> None:
    pid = os.fork()
    if pid > 0:
        print(f"MotionWall daemon started with PID: {pid}")
        sys.stdout.flush()
        os._exit(0)

    os.umask(0)
    os.setsid()
    os.chdir("/")

    if not debug:
        devnull = os.open(os.devnull, os.O_RDWR)
        for fd in (0, 1, 2):
            os.dup2(devnull, fd)
        os.close(devnull)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.ERROR,
        format="motionwall: %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    if not args.paths:
        print("motionwall: Error: No media file or directory specified", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    config = resolve_config(args)

    if args.daemon:
        # The daemon runs from /, so media paths are anchored here first
        args.paths = [os.path.abspath(path) for path in args.paths]
        daemonize(args.debug)

    lock = InstanceLock()
    try:
        acquired = lock.acquire()
    except OSError as e:
        log.error(f"Cannot use lock file {lock.path}: {e}")
        return 1
    if not acquired:
        log.error(f"Another instance is already running (lock: {lock.path})")
        return 1

    try:
        return _run(config, args)
    finally:
        lock.release()


def _run(config: MotionWallConfig, args: argparse.Namespace) -> int:
    try:
        if shutil.which(config.media_player) is None:
            raise StartupError(f"Media player not found: {config.media_player}")

        def make(path: str):
            return build_playlist(path, config.playlist_shuffle, config.playlist_loop, config.playlist_duration)

        playlist = make(args.paths[0])
        if not playlist.usable:
            raise StartupError("No compatible media files found")
        extra = [make(path) for path in args.paths[1:]] if config.per_monitor_content else []

        try:
            backend = X11Backend()
        except ConnectionError as e:
            raise StartupError(str(e)) from e
    except StartupError as e:
        log.error(str(e))
        return 1

    controller = PlayerController(config.media_player, loop=config.playlist_loop, verbose=args.debug)
    supervisor = Supervisor(config, backend, controller, playlist, extra)

    try:
        supervisor.start()
    except StartupError as e:
        log.error(str(e))
        supervisor.shutdown()
        return 1

    supervisor.install_signal_handlers()
    config.save()
    return supervisor.run()


if __name__ == "__main__":
    sys.exit(main())
