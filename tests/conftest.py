from __future__ import annotations

import itertools
from dataclasses import dataclass

import pytest

from motionwall.config import MotionWallConfig
from motionwall.playlist import Playlist
from motionwall.process import PlayerRecord
from motionwall.supervisor import Supervisor
from motionwall.topology import Output, TopologySnapshot


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Window system stand-in: hands out window ids and records calls."""

    def __init__(self, snapshot: TopologySnapshot):
        self.snapshot = snapshot
        self.windows: dict[int, Output] = {}
        self.destroyed: list[int] = []
        self.tagged: list[int] = []
        self.moved: list[tuple[int, Output]] = []
        self.events: list = []
        self.connected = True
        self.closed = False
        self.fail_create: set[str] = set()
        self._ids = itertools.count(0x400001)

    def detect_topology(self) -> TopologySnapshot:
        return self.snapshot

    def create_window(self, output: Output) -> int:
        if output.name in self.fail_create:
            raise OSError("BadAlloc")
        window = next(self._ids)
        self.windows[window] = output
        return window

    def move_resize(self, window: int, output: Output) -> None:
        self.windows[window] = output
        self.moved.append((window, output))

    def tag(self, window: int) -> None:
        self.tagged.append(window)

    def destroy_window(self, window: int) -> None:
        self.windows.pop(window, None)
        self.destroyed.append(window)

    def pending(self) -> int:
        return len(self.events)

    def next_event(self):
        event = self.events.pop(0)
        if isinstance(event, Exception):
            raise event
        return event

    def is_connected(self) -> bool:
        return self.connected

    def close(self) -> None:
        self.closed = True


@dataclass
class Spawn:
    pid: int
    window: int
    path: str
    paused: bool


class FakeController:
    """Player controller that never touches real processes."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._pids = itertools.count(1000)
        self.spawns: list[Spawn] = []
        self.terminated: list[int] = []
        self.resumed: list[int] = []
        self.dead: set[int] = set()
        self.fail_spawn = False

    def spawn(self, slot, media_path: str, paused: bool = False) -> PlayerRecord:
        if self.fail_spawn or not slot.window:
            return PlayerRecord()
        pid = next(self._pids)
        self.spawns.append(Spawn(pid, slot.window, media_path, paused))
        return PlayerRecord(pid=pid, active=True, started_at=self.clock())

    def is_healthy(self, record: PlayerRecord) -> bool:
        return not record.empty and record.pid not in self.dead

    def terminate(self, record: PlayerRecord) -> None:
        if record.empty:
            return
        self.terminated.append(record.pid)
        record.clear()

    def resume(self, record: PlayerRecord) -> bool:
        self.resumed.append(record.pid)
        return True

    def reap(self) -> None:
        pass

    def alive(self) -> set[int]:
        return {s.pid for s in self.spawns} - set(self.terminated) - self.dead


def make_output(name: str, x: int = 0, width: int = 1920, height: int = 1080, primary: bool = False) -> Output:
    return Output(name=name, x=x, y=0, width=width, height=height, primary=primary)


def make_snapshot(*outputs: Output) -> TopologySnapshot:
    primary = next((i for i, o in enumerate(outputs) if o.primary), 0 if outputs else -1)
    return TopologySnapshot(tuple(outputs), primary)


def run_until(supervisor: Supervisor, clock: FakeClock, until: float, step: float = 0.5) -> None:
    while clock.now < until:
        clock.sleep(step)
        supervisor.step(clock())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dual_head():
    return make_snapshot(
        make_output("DP-1", primary=True),
        make_output("HDMI-1", x=1920),
    )


@pytest.fixture
def make_supervisor(clock):
    """Build a started supervisor over fake backend and controller."""

    def factory(snapshot, paths=("a.mp4", "b.mp4", "c.mp4"), extra=None, start=True, **options):
        config = MotionWallConfig(**options)
        backend = FakeBackend(snapshot)
        controller = FakeController(clock)
        playlist = Playlist(paths=list(paths), duration=config.playlist_duration)
        supervisor = Supervisor(config, backend, controller, playlist, extra,
                                clock=clock, sleep=clock.sleep)
        if start:
            supervisor.start()
        return supervisor, backend, controller

    return factory
