import os
import shutil
import signal
import time
from types import SimpleNamespace

import psutil
import pytest

from motionwall.process import CrashTracker, Health, PlayerController, PlayerRecord

needs_sleep = pytest.mark.skipif(shutil.which("sleep") is None, reason="sleep binary not available")

SLOT = SimpleNamespace(window=0x400001, output_index=0)


@pytest.fixture
def controller():
    return PlayerController("sleep")


@pytest.fixture
def spawned(controller):
    records = []

    def spawn(**kwargs):
        record = controller.spawn(SLOT, "30", **kwargs)
        records.append(record)
        return record

    yield spawn

    for record in records:
        controller.terminate(record)


@needs_sleep
def test_spawn_starts_detached_process(controller, spawned):
    record = spawned()

    assert not record.empty
    assert record.active
    assert record.process.args == ["sleep", "30"]
    assert os.getsid(record.pid) == record.pid
    assert controller.check(record) in (Health.VERIFIED, Health.UNVERIFIED)
    assert controller.is_healthy(record)


@needs_sleep
def test_terminate_stops_and_clears(controller, spawned):
    record = spawned()
    process = record.process

    controller.terminate(record)

    assert record.empty
    assert process.poll() is not None


@needs_sleep
def test_externally_killed_player_is_dead(controller, spawned):
    record = spawned()

    os.kill(record.pid, signal.SIGKILL)
    record.process.wait(timeout=5)

    assert controller.check(record) is Health.DEAD
    assert not controller.is_healthy(record)


@needs_sleep
def test_reaped_player_is_not_signalled(controller, spawned, monkeypatch, tmp_path):
    record = spawned()
    os.kill(record.pid, signal.SIGKILL)
    record.process.wait(timeout=5)
    ipc = tmp_path / "player.sock"
    ipc.write_text("")
    record.ipc_path = str(ipc)

    sent = []
    monkeypatch.setattr(os, "kill", lambda pid, sig: sent.append((pid, sig)))
    controller.terminate(record)

    assert sent == []
    assert record.empty
    assert not ipc.exists()


@needs_sleep
def test_paused_generic_player_is_stopped_then_resumed(controller, spawned):
    record = spawned(paused=True)

    deadline = time.monotonic() + 5
    while psutil.Process(record.pid).status() != psutil.STATUS_STOPPED and time.monotonic() < deadline:
        time.sleep(0.01)
    assert psutil.Process(record.pid).status() == psutil.STATUS_STOPPED
    assert controller.is_healthy(record)

    assert controller.resume(record)
    deadline = time.monotonic() + 5
    while psutil.Process(record.pid).status() == psutil.STATUS_STOPPED and time.monotonic() < deadline:
        time.sleep(0.01)
    assert psutil.Process(record.pid).status() != psutil.STATUS_STOPPED


@needs_sleep
def test_stopped_player_still_terminates(controller, spawned):
    record = spawned(paused=True)
    process = record.process

    controller.terminate(record)

    assert process.poll() is not None


@needs_sleep
def test_other_program_is_never_verified(spawned):
    record = spawned()

    assert PlayerController("mpv").check(record) is not Health.VERIFIED


def test_spawn_failure_yields_empty_record():
    controller = PlayerController("/nonexistent/motionwall-player")

    assert controller.spawn(SLOT, "clip.mp4").empty


def test_spawn_without_window_yields_empty_record(controller):
    assert controller.spawn(SimpleNamespace(window=None, output_index=0), "30").empty


def test_empty_record_operations_are_noops(controller):
    record = PlayerRecord()

    controller.terminate(record)

    assert record.empty
    assert controller.check(record) is Health.DEAD
    assert not controller.resume(record)


def test_mpv_pre_stage_gets_ipc_socket():
    controller = PlayerController("mpv", loop=False)
    cmd = controller.build_command(0x10, "clip.mp4", paused=True, ipc_path="/tmp/x.sock")

    assert "--pause" in cmd
    assert "--input-ipc-server=/tmp/x.sock" in cmd
    assert controller._ipc_path() != controller._ipc_path()


def test_crash_tracker_backs_off_after_repeated_crashes():
    tracker = CrashTracker()

    backoffs = [tracker.record_crash(100.0 + i) for i in range(7)]

    assert backoffs[:5] == [0.0] * 5
    assert backoffs[5] == 12.0
    assert tracker.record_crash(200.0) == 0.0
    assert tracker.count == 1
