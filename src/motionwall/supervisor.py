"""
The supervision loop.

A single thread of control owns the EngineState and drives everything on a
fixed cadence: display connectivity, a bounded event pump, topology
reconciliation, player health checks and playlist transitions, in that
order within each iteration.
"""

from __future__ import annotations

import logging
import signal
import time
from dataclasses import dataclass, field
from typing import Optional

from Xlib.error import ConnectionClosedError

from . import topology
from .config import MotionWallConfig
from .playlist import Playlist
from .process import PlayerRecord
from .topology import Output, TopologySnapshot
from .transitions import TransitionController, playlist_groups
from .windows import SlotManager, WindowSlot
from .xdisplay import EventKind

log = logging.getLogger("motionwall.supervisor")

CONNECTION_CHECK_INTERVAL = 5.0
TOPOLOGY_CHECK_INTERVAL = 5.0
HEALTH_CHECK_INTERVAL = 2.0
SPAWN_GRACE = 3.0
SETTLE_DELAY = 0.5
RETAG_DELAY = 0.5
PRESTAGE_LEAD = 3.0
MAX_EVENTS_PER_ITERATION = 32
MAX_CONSECUTIVE_ERRORS = 10
MIN_SLEEP = 0.01
MAX_SLEEP = 0.5


class StartupError(RuntimeError):
    """A condition that prevents the supervisor from starting."""


@dataclass
class EngineState:
    topology: TopologySnapshot
    playlist: Playlist
    slots: list[WindowSlot] = field(default_factory=list)
    running: bool = False


class Supervisor:
    """Keeps one background window and player alive per output."""

    def __init__(self, config: MotionWallConfig, backend, controller, playlist: Playlist,
                 extra_playlists: Optional[list[Playlist]] = None,
                 clock=time.monotonic, sleep=time.sleep):
        self.config = config
        self.backend = backend
        self.controller = controller
        self.slot_manager = SlotManager(backend)
        self.transitions = TransitionController(controller, seamless=config.seamless_transitions)
        self.state = EngineState(topology=TopologySnapshot(), playlist=playlist)

        self._clock = clock
        self._sleep = sleep
        self._extra_playlists = list(extra_playlists or [])
        self._slot_playlists: dict[str, Playlist] = {}

        now = clock()
        self._next_connection_check = now
        self._next_topology_check = now
        self._next_health_check = now
        self._next_transition = now
        self._retag_at: Optional[float] = None
        self._prestaged = False

        self._consecutive_errors = 0
        self._fatal = False
        self._stopped = False

        # Signal flags (written by signal handlers, read by the loop)
        self._shutdown_requested = False
        self._rescan_requested = False

    # ─── setup ────────────────────────────────────────────────────────────

    def _wanted_outputs(self, snapshot: TopologySnapshot) -> list[tuple[int, Output]]:
        if self.config.multi_monitor:
            return list(enumerate(snapshot.outputs))
        if snapshot.primary is None:
            return []
        index = snapshot.primary_index if snapshot.primary_index >= 0 else 0
        return [(index, snapshot.primary)]

    def _playlist_for(self, output: Output) -> Optional[Playlist]:
        """Per-output playlist, or None when every slot shares the global one.

        The primary output plays the first path. The remaining outputs take
        the extra paths in topology order, falling back to a copy of the
        first playlist.
        """
        if not self.config.per_monitor_content:
            return None

        if output.name not in self._slot_playlists:
            primary = self.state.topology.primary
            others = [o.name for o in self.state.topology.outputs
                      if primary is None or o.name != primary.name]
            extra = others.index(output.name) if output.name in others else -1
            if 0 <= extra < len(self._extra_playlists) and self._extra_playlists[extra].usable:
                playlist = self._extra_playlists[extra]
            else:
                playlist = self.state.playlist.copy()
            self._slot_playlists[output.name] = playlist

        return self._slot_playlists[output.name]

    def _playlist_of(self, slot: WindowSlot) -> Playlist:
        return slot.playlist if slot.playlist is not None else self.state.playlist

    def _create(self, index: int, output: Output) -> Optional[WindowSlot]:
        slot = self.slot_manager.create_slot(index, output)
        if slot is not None:
            slot.playlist = self._playlist_for(output)
        return slot

    def _spawn(self, slot: WindowSlot) -> None:
        slot.player = self.controller.spawn(slot, self._playlist_of(slot).current_path())

    def start(self) -> None:
        """Detect outputs, create windows and start the first players."""
        if not self.state.playlist.usable:
            raise StartupError("No compatible media files found")

        snapshot = self.backend.detect_topology()
        if not snapshot:
            raise StartupError("No monitors detected")
        self.state.topology = snapshot

        for index, output in self._wanted_outputs(snapshot):
            slot = self._create(index, output)
            if slot is not None:
                self.state.slots.append(slot)

        if not self.state.slots:
            raise StartupError("Could not create any window")

        for slot in self.state.slots:
            self.slot_manager.tag(slot)
        for slot in self.state.slots:
            self._spawn(slot)

        now = self._clock()
        self._retag_at = now + RETAG_DELAY
        self._next_connection_check = now + CONNECTION_CHECK_INTERVAL
        self._next_topology_check = now + TOPOLOGY_CHECK_INTERVAL
        self._next_health_check = now + HEALTH_CHECK_INTERVAL
        self._next_transition = now + self.config.playlist_duration
        self.state.running = True

        log.info(f"Setup complete. Running with {len(self.state.slots)} window(s).")

    # ─── loop ─────────────────────────────────────────────────────────────

    def install_signal_handlers(self) -> None:

        def on_sigterm(signum, frame):
            self.request_shutdown()

        def on_sighup(signum, frame):
            self._rescan_requested = True

        signal.signal(signal.SIGTERM, on_sigterm)
        signal.signal(signal.SIGINT, on_sigterm)
        signal.signal(signal.SIGHUP, on_sighup)

    def request_shutdown(self) -> None:
        self._shutdown_requested = True

    def run(self) -> int:
        """Loop until stopped, then shut down. Returns the exit code."""
        try:
            while self.state.running:
                if self._shutdown_requested:
                    log.info("Shutting down...")
                    break
                self.step(self._clock())
                self._sleep(self.sleep_interval(self._clock()))
        finally:
            self.shutdown()

        return 1 if self._fatal else 0

    def step(self, now: float) -> None:
        """One iteration of the loop."""
        if now >= self._next_connection_check:
            self._next_connection_check = now + CONNECTION_CHECK_INTERVAL
            if not self.backend.is_connected():
                self._fail("Lost connection to the display")
                return

        topology_event = self.pump_events()
        if not self.state.running:
            return

        if self._retag_at is not None and now >= self._retag_at:
            self._retag_at = None
            for slot in self.state.slots:
                self.slot_manager.tag(slot)

        rescan = self._rescan_requested
        self._rescan_requested = False

        if topology_event or rescan or now >= self._next_topology_check:
            self._next_topology_check = now + TOPOLOGY_CHECK_INTERVAL
            self.reconcile()
            now = self._clock()

        if rescan or now >= self._next_health_check:
            self._next_health_check = now + HEALTH_CHECK_INTERVAL
            self.health_check(now)

        self.playlist_tick(now)

    def sleep_interval(self, now: float) -> float:
        """Short sleeps near a scheduled switch, long ones otherwise."""
        if not self._transition_scheduled():
            return MAX_SLEEP

        target = self._next_transition
        if self.transitions.seamless and not self._prestaged:
            target -= PRESTAGE_LEAD
        remaining = target - now
        return max(MIN_SLEEP, min(MAX_SLEEP, remaining / 2))

    def _fail(self, reason: str) -> None:
        log.error(reason)
        self._fatal = True
        self.state.running = False

    # ─── events ───────────────────────────────────────────────────────────

    def pump_events(self) -> bool:
        """Drain a bounded number of events. Returns True on a topology notification."""
        topology_event = False

        try:
            for _ in range(MAX_EVENTS_PER_ITERATION):
                if not self.backend.pending():
                    break

                event = self.backend.next_event()
                if event.kind is EventKind.DESTROYED:
                    log.info(f"Window 0x{event.window:x} was destroyed, stopping")
                    self.state.running = False
                    break
                if event.kind is EventKind.CLOSE_REQUEST:
                    log.info("Window manager asked us to close, stopping")
                    self.state.running = False
                    break
                if event.kind is EventKind.TOPOLOGY:
                    log.debug(f"Topology notification: {event.name}")
                    topology_event = True
                else:
                    log.debug(f"Ignoring event {event.name}")

        except ConnectionClosedError as e:
            self._fail(f"Lost connection to the display: {e}")
            return False
        except Exception as e:
            self._consecutive_errors += 1
            log.debug(f"Event processing error ({self._consecutive_errors}): {e}")
            if self._consecutive_errors > MAX_CONSECUTIVE_ERRORS:
                self._fail(f"Too many consecutive event errors ({self._consecutive_errors})")
            return False

        self._consecutive_errors = 0
        return topology_event

    # ─── topology ─────────────────────────────────────────────────────────

    def _teardown(self, slot: WindowSlot) -> None:
        self.controller.terminate(slot.staged)
        slot.staged = PlayerRecord()
        self.controller.terminate(slot.player)
        slot.player = PlayerRecord()
        self.slot_manager.destroy_slot(slot)

    def reconcile(self) -> bool:
        """Bring the slot list in line with the current outputs.

        Outputs are matched to slots by name. Unchanged slots are left alone,
        moved or resized ones are flagged for a player restart, vanished ones
        are torn down and new ones created.
        """
        snapshot = self.backend.detect_topology()
        if not snapshot:
            log.debug("Topology read failed, skipping this cycle")
            return False

        if not topology.changed(self.state.topology, snapshot):
            return False

        log.info(f"Monitor configuration changed ({self.state.topology.count} -> {snapshot.count})")
        self.state.topology = snapshot

        wanted = {output.name: (index, output) for index, output in self._wanted_outputs(snapshot)}
        kept: list[WindowSlot] = []
        removed: list[WindowSlot] = []

        for slot in self.state.slots:
            match = wanted.pop(slot.output.name, None)
            if match is None:
                removed.append(slot)
                continue
            index, output = match
            slot.output_index = index
            if output.geometry != slot.output.geometry:
                self.slot_manager.resize_slot(slot, output)
            else:
                slot.output = output
            kept.append(slot)

        for slot in removed:
            self._teardown(slot)
        if removed:
            self._sleep(SETTLE_DELAY)

        created: list[WindowSlot] = []
        for index, output in wanted.values():
            slot = self._create(index, output)
            if slot is not None:
                created.append(slot)

        self.state.slots = sorted(kept + created, key=lambda s: s.output_index)

        if created:
            self._sleep(SETTLE_DELAY)
            for slot in created:
                self.slot_manager.tag(slot)
                self._spawn(slot)
            self._retag_at = self._clock() + RETAG_DELAY

        return True

    # ─── health ───────────────────────────────────────────────────────────

    def _check_staged(self, slot: WindowSlot, now: float) -> None:
        staged = slot.staged
        if staged.empty or now - staged.started_at < SPAWN_GRACE:
            return
        if not self.controller.is_healthy(staged):
            log.info(f"Evicting unhealthy pre-staged player {staged.pid} in slot {slot.output_index}")
            self.controller.terminate(staged)
            slot.staged = PlayerRecord()

    def health_check(self, now: float) -> None:
        """Restart dead, hung or resize-pending players, one slot at a time."""
        for slot in self.state.slots:
            if not slot.window:
                continue

            self._check_staged(slot, now)

            if slot.needs_resize:
                slot.needs_resize = False
                log.info(f"Restarting player for resized slot {slot.output_index}")
                self.controller.terminate(slot.staged)
                slot.staged = PlayerRecord()
                self.controller.terminate(slot.player)
                self._spawn(slot)
                continue

            if slot.restart_after:
                if now < slot.restart_after:
                    continue
                slot.restart_after = 0.0
                self._spawn(slot)
                continue

            player = slot.player
            if not player.empty:
                if now - player.started_at < SPAWN_GRACE:
                    continue
                if self.controller.is_healthy(player):
                    slot.crashes.reset_if_stable(now)
                    continue
                log.warning(f"Player {player.pid} in slot {slot.output_index} is not running")
            else:
                log.warning(f"Slot {slot.output_index} has no player")

            self.controller.terminate(player)
            slot.player = PlayerRecord()

            backoff = slot.crashes.record_crash(now)
            if backoff > 0:
                log.warning(f"Too many crashes (attempt {slot.crashes.count}), waiting {backoff:.0f}s...")
                slot.restart_after = now + backoff
                continue

            self._spawn(slot)

        self.controller.reap()

    # ─── playlist ─────────────────────────────────────────────────────────

    def _transition_scheduled(self) -> bool:
        if self.config.playlist_duration <= 0:
            return False
        return any(playlist.count > 1
                   for playlist, _ in playlist_groups(self.state.slots, self.state.playlist))

    def playlist_tick(self, now: float) -> None:
        if self.config.playlist_duration <= 0:
            return

        if (self.transitions.seamless and not self._prestaged
                and now >= self._next_transition - PRESTAGE_LEAD):
            self._prestaged = True
            for playlist, slots in playlist_groups(self.state.slots, self.state.playlist):
                self.transitions.prestage(playlist, slots)

        if now >= self._next_transition:
            for playlist, slots in playlist_groups(self.state.slots, self.state.playlist):
                self.transitions.transition(playlist, slots)
            self._next_transition = now + self.config.playlist_duration
            self._prestaged = False

    # ─── shutdown ─────────────────────────────────────────────────────────

    def shutdown(self) -> None:
        """Terminate every player and destroy every window, once."""
        if self._stopped:
            return
        self._stopped = True
        self.state.running = False

        for slot in self.state.slots:
            self._teardown(slot)
        self.state.slots = []

        self.controller.reap()
        self.backend.close()
