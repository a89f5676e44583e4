"""
Playlist transitions.

Abrupt: stop the player, advance, start a new one (a short black gap).
Seamless: a paused replacement for the next item is started ahead of time
and promoted when the timer fires; any slot without a healthy replacement
falls back to abrupt.

Slots sharing a playlist are switched together and the playlist advances
exactly once per transition.
"""

from __future__ import annotations

import logging

from .playlist import Playlist
from .process import PlayerRecord
from .windows import WindowSlot

log = logging.getLogger("motionwall.transitions")


def playlist_groups(slots: list[WindowSlot], global_playlist: Playlist) -> list[tuple[Playlist, list[WindowSlot]]]:
    """Group slots by the playlist that drives them, preserving slot order."""
    groups: dict[int, tuple[Playlist, list[WindowSlot]]] = {}
    for slot in slots:
        playlist = slot.playlist if slot.playlist is not None else global_playlist
        groups.setdefault(id(playlist), (playlist, []))[1].append(slot)
    return list(groups.values())


class TransitionController:

    def __init__(self, controller, seamless: bool = False):
        self.controller = controller
        self.seamless = seamless

    def prestage(self, playlist: Playlist, slots: list[WindowSlot]) -> None:
        """Start a paused player for the next item in every slot."""
        if not self.seamless or playlist.count <= 1:
            return

        path = playlist.peek_next()
        for slot in slots:
            if not slot.window:
                continue
            if not slot.staged.empty:
                log.debug(f"Replacing stale pre-staged player {slot.staged.pid} in slot {slot.output_index}")
                self.controller.terminate(slot.staged)
            slot.staged = self.controller.spawn(slot, path, paused=True)

    def transition(self, playlist: Playlist, slots: list[WindowSlot]) -> bool:
        """Switch *slots* to the playlist's next item. Returns False if there is none."""
        if playlist.count <= 1:
            return False

        if self.seamless:
            self._seamless(playlist, slots)
        else:
            self._abrupt(playlist, slots)
        return True

    def _abrupt(self, playlist: Playlist, slots: list[WindowSlot]) -> None:
        for slot in slots:
            self._stop(slot)

        playlist.advance()

        for slot in slots:
            if slot.window:
                slot.player = self.controller.spawn(slot, playlist.current_path())

    def _seamless(self, playlist: Playlist, slots: list[WindowSlot]) -> None:
        path = playlist.peek_next()

        for slot in slots:
            if not slot.staged.empty and self.controller.is_healthy(slot.staged):
                self.controller.terminate(slot.player)
                slot.player, slot.staged = slot.staged, PlayerRecord()
                if not self.controller.resume(slot.player):
                    log.debug(f"Resume of pid {slot.player.pid} not confirmed")
                log.info(f"Slot {slot.output_index}: promoted pre-staged player {slot.player.pid}")
            else:
                log.info(f"Slot {slot.output_index}: no pre-staged player, switching abruptly")
                self._stop(slot)
                if slot.window:
                    slot.player = self.controller.spawn(slot, path)

        playlist.advance()

    def _stop(self, slot: WindowSlot) -> None:
        self.controller.terminate(slot.staged)
        slot.staged = PlayerRecord()
        self.controller.terminate(slot.player)
        slot.player = PlayerRecord()
