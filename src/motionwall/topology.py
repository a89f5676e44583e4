"""
Monitor topology detection.

A TopologySnapshot is an immutable, ordered list of connected outputs read
from RandR. Snapshots are compared positionally, so a reorder of outputs with
different geometry counts as a change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger("motionwall.topology")

MAX_MONITORS = 16

# RandR connection state for a connected output
RR_CONNECTED = 0


@dataclass(frozen=True)
class Output:
    """One physical display surface."""
    name: str
    x: int
    y: int
    width: int
    height: int
    primary: bool = False
    connected: bool = True

    @property
    def geometry(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)

    def __str__(self) -> str:
        return f"{self.name} {self.width}x{self.height}+{self.x}+{self.y}"


@dataclass(frozen=True)
class TopologySnapshot:
    outputs: tuple[Output, ...] = ()
    primary_index: int = -1

    @property
    def count(self) -> int:
        return len(self.outputs)

    @property
    def primary(self) -> Optional[Output]:
        if not self.outputs:
            return None
        index = self.primary_index if 0 <= self.primary_index < self.count else 0
        return self.outputs[index]

    def __bool__(self) -> bool:
        return bool(self.outputs)


def changed(old: TopologySnapshot, new: TopologySnapshot) -> bool:
    """True if the two snapshots differ in count, order, geometry or connection."""
    if old.count != new.count:
        return True

    for a, b in zip(old.outputs, new.outputs):
        if a.geometry != b.geometry or a.connected != b.connected:
            return True

    return False


def detect(display) -> TopologySnapshot:
    """Read connected outputs from RandR.

    Returns an empty snapshot if the display cannot be queried. If no output
    is reported as primary, the first one is promoted.
    """
    try:
        root = display.screen().root
        resources = root.xrandr_get_screen_resources()
        timestamp = resources.config_timestamp
        primary_id = root.xrandr_get_output_primary().output

        outputs: list[Output] = []
        primary_index = -1

        for output_id in resources.outputs:
            if len(outputs) >= MAX_MONITORS:
                log.debug(f"Ignoring outputs beyond {MAX_MONITORS}")
                break

            info = display.xrandr_get_output_info(output_id, timestamp)
            if info.connection != RR_CONNECTED or not info.crtc:
                continue

            crtc = display.xrandr_get_crtc_info(info.crtc, timestamp)
            is_primary = output_id == primary_id
            if is_primary:
                primary_index = len(outputs)

            outputs.append(Output(
                name=info.name,
                x=crtc.x,
                y=crtc.y,
                width=crtc.width,
                height=crtc.height,
                primary=is_primary,
            ))

    except Exception as e:
        log.warning(f"Failed to query outputs: {e}")
        return TopologySnapshot()

    if primary_index == -1 and outputs:
        first = outputs[0]
        outputs[0] = Output(first.name, first.x, first.y, first.width, first.height, primary=True)
        primary_index = 0

    for i, output in enumerate(outputs):
        log.debug(f"Output {i}: {output}{' (primary)' if output.primary else ''}")

    return TopologySnapshot(tuple(outputs), primary_index)
