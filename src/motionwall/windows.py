"""Window slots: one background window (and its players) per output."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from Xlib.error import XError

from .playlist import Playlist
from .process import CrashTracker, PlayerRecord
from .topology import Output

log = logging.getLogger("motionwall.windows")


@dataclass
class WindowSlot:
    """The unit of supervision.

    ``player`` is the visible player; ``staged`` holds a paused replacement
    during a seamless transition. Neither is ever shared with another slot.
    """
    output_index: int
    output: Output
    window: Optional[int] = None
    needs_resize: bool = False
    player: PlayerRecord = field(default_factory=PlayerRecord)
    staged: PlayerRecord = field(default_factory=PlayerRecord)
    playlist: Optional[Playlist] = None
    crashes: CrashTracker = field(default_factory=CrashTracker)
    restart_after: float = 0.0

    @property
    def x(self) -> int:
        return self.output.x

    @property
    def y(self) -> int:
        return self.output.y

    @property
    def width(self) -> int:
        return self.output.width

    @property
    def height(self) -> int:
        return self.output.height


class SlotManager:
    """Creates, moves, tags and destroys the windows backing slots."""

    def __init__(self, backend):
        self.backend = backend

    def create_slot(self, index: int, output: Output) -> Optional[WindowSlot]:
        """Allocate a slot with a mapped, lowered window, or None on failure."""
        try:
            window = self.backend.create_window(output)
        except (XError, OSError) as e:
            log.error(f"Failed to create window for output {index} ({output.name}): {e}")
            return None

        log.info(f"Created window for output {index} ({output})")
        return WindowSlot(output_index=index, output=output, window=window)

    def resize_slot(self, slot: WindowSlot, output: Output) -> None:
        """Move the window in place; the player is restarted by the health check."""
        log.info(f"Resizing slot {slot.output_index}: {slot.output} -> {output}")
        slot.output = output
        slot.needs_resize = True
        if slot.window:
            try:
                self.backend.move_resize(slot.window, output)
            except (XError, OSError) as e:
                log.warning(f"Failed to move window for {output.name}: {e}")

    def destroy_slot(self, slot: WindowSlot) -> None:
        """Destroy the slot's window. Its players must already be terminated."""
        if slot.window:
            self.backend.destroy_window(slot.window)
            log.info(f"Destroyed window for output {slot.output_index} ({slot.output.name})")
        slot.window = None

    def tag(self, slot: WindowSlot) -> None:
        if not slot.window:
            return
        try:
            self.backend.tag(slot.window)
        except (XError, OSError) as e:
            log.warning(f"Failed to tag window for {slot.output.name}: {e}")
