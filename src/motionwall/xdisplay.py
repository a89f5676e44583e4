"""
X11 connection wrapper.

Everything that touches python-xlib directly lives here: opening the
display, creating/moving/lowering/destroying background windows, selecting
and classifying events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from Xlib import X, Xatom
from Xlib import display as xlib_display
from Xlib.error import ConnectionClosedError, DisplayError, XError
from Xlib.ext import randr, shape

from . import desktop, topology
from .topology import Output, TopologySnapshot

log = logging.getLogger("motionwall.xdisplay")


ARGB_MASKS = (0xFF0000, 0x00FF00, 0x0000FF)


def find_argb_visual(screen) -> Optional[int]:
    """Id of a 32-bit visual with 8-bit RGB channels, or None."""
    for depth in screen.allowed_depths:
        if depth.depth != 32:
            continue
        for visual in depth.visuals:
            if (visual.red_mask, visual.green_mask, visual.blue_mask) == ARGB_MASKS:
                return visual.visual_id
    return None


def find_desktop_window(display, root, output: Output):
    """Virtual-root desktop window placed on *output*, else *root*.

    Some desktops draw their background in a child of the root window that
    advertises itself through ``__SWM_VROOT``; our window has to live inside
    it to be visible.
    """
    vroot = display.intern_atom("__SWM_VROOT")
    try:
        children = root.query_tree().children
    except XError as e:
        log.debug(f"Cannot list root children: {e}")
        return root

    for child in children:
        try:
            prop = child.get_full_property(vroot, Xatom.WINDOW)
            if prop is None or prop.property_type != Xatom.WINDOW or not prop.value:
                continue
            candidate = display.create_resource_object("window", prop.value[0])
            geom = candidate.get_geometry()
        except XError:
            continue

        if (output.x <= geom.x < output.x + output.width
                and output.y <= geom.y < output.y + output.height):
            log.debug(f"Using virtual root 0x{candidate.id:x} for {output.name}")
            return candidate

    return root


class EventKind(Enum):
    DESTROYED = "destroyed"
    CLOSE_REQUEST = "close_request"
    TOPOLOGY = "topology"
    OTHER = "other"


@dataclass(frozen=True)
class WindowEvent:
    kind: EventKind
    window: Optional[int] = None
    name: str = ""


class X11Backend:
    """Owns the display connection and every window created through it."""

    def __init__(self, display_name: Optional[str] = None):
        try:
            self.display = xlib_display.Display(display_name)
        except DisplayError as e:
            raise ConnectionError(f"couldn't open display: {e}") from e

        self.screen = self.display.screen()
        self.root = self.screen.root
        self.desktop_env = desktop.detect_desktop()
        self._windows: dict[int, object] = {}

        self._wm_protocols = self.display.intern_atom("WM_PROTOCOLS")
        self._wm_delete = self.display.intern_atom("WM_DELETE_WINDOW")
        self._geometry_atoms = {
            self.display.intern_atom("_NET_DESKTOP_GEOMETRY"),
            self.display.intern_atom("_NET_WORKAREA"),
        }

        self._randr_events: set[int] = set()
        if self.display.has_extension("RANDR"):
            self.root.xrandr_select_input(
                randr.RRScreenChangeNotifyMask
                | randr.RROutputChangeNotifyMask
                | randr.RRCrtcChangeNotifyMask
            )
            ext = self.display.extension_event
            for name in ("ScreenChangeNotify", "CrtcChangeNotify", "OutputChangeNotify"):
                code = getattr(ext, name, None)
                if isinstance(code, tuple):
                    code = code[0]
                if code is not None:
                    self._randr_events.add(code)
        else:
            log.warning("RANDR extension missing, topology changes will only be polled")

        self.root.change_attributes(event_mask=X.PropertyChangeMask)
        self._has_shape = self.display.has_extension("SHAPE")

        self._argb_visual = find_argb_visual(self.screen)
        self._colormap = None
        if self._argb_visual is not None:
            self._colormap = self.root.create_colormap(self._argb_visual, X.AllocNone)
        else:
            log.debug("No 32-bit visual, using the default visual")

        self.display.flush()

    # ─── topology ─────────────────────────────────────────────────────────

    def detect_topology(self) -> TopologySnapshot:
        return topology.detect(self.display)

    # ─── windows ──────────────────────────────────────────────────────────

    def create_window(self, output: Output) -> int:
        """Create, map and lower an input-transparent window over *output*."""
        if self._colormap is not None:
            depth, visual = 32, self._argb_visual
            colors = {"colormap": self._colormap, "border_pixel": 0, "background_pixel": 0}
        else:
            depth, visual = self.screen.root_depth, X.CopyFromParent
            colors = {"background_pixel": self.screen.black_pixel}

        parent = find_desktop_window(self.display, self.root, output)
        win = parent.create_window(
            output.x, output.y, output.width, output.height, 0,
            depth,
            X.InputOutput,
            visual,
            event_mask=X.StructureNotifyMask | X.ExposureMask,
            override_redirect=False,
            **colors,
        )
        win.set_wm_name("motionwall")
        win.set_wm_class("motionwall", "MotionWall")
        win.set_wm_protocols([self._wm_delete])

        win.change_property(
            self.display.intern_atom("_NET_WM_WINDOW_TYPE"), Xatom.ATOM, 32,
            [self.display.intern_atom("_NET_WM_WINDOW_TYPE_DESKTOP")],
        )
        win.change_property(
            self.display.intern_atom("_NET_WM_STATE"), Xatom.ATOM, 32,
            [self.display.intern_atom("_NET_WM_STATE_BELOW")],
        )

        # Empty input region: clicks fall through to whatever is underneath
        if self._has_shape:
            win.shape_rectangles(shape.SO.Set, shape.SK.Input, X.Unsorted, 0, 0, [])

        win.map()
        win.configure(stack_mode=X.Below)
        self.display.sync()

        self._windows[win.id] = win
        log.debug(f"Created window 0x{win.id:x} for {output}")
        return win.id

    def move_resize(self, window: int, output: Output) -> None:
        win = self._windows[window]
        win.configure(x=output.x, y=output.y, width=output.width, height=output.height,
                      stack_mode=X.Below)
        self.display.flush()

    def tag(self, window: int) -> None:
        win = self._windows.get(window)
        if win is None:
            return
        desktop.apply_hints(self.display, win, self.desktop_env)
        win.configure(stack_mode=X.Below)
        self.display.flush()

    def destroy_window(self, window: int) -> None:
        # Forget it first so its DestroyNotify is not mistaken for an external kill
        win = self._windows.pop(window, None)
        if win is None:
            return
        try:
            win.destroy()
            self.display.flush()
        except XError as e:
            log.debug(f"Destroying window 0x{window:x} failed: {e}")

    # ─── events ───────────────────────────────────────────────────────────

    def pending(self) -> int:
        return self.display.pending_events()

    def next_event(self) -> WindowEvent:
        e = self.display.next_event()
        name = type(e).__name__

        if e.type == X.DestroyNotify:
            if e.window.id in self._windows:
                return WindowEvent(EventKind.DESTROYED, e.window.id, name)
            return WindowEvent(EventKind.OTHER, e.window.id, name)

        if e.type == X.ClientMessage and e.client_type == self._wm_protocols:
            _, data = e.data
            if data[0] == self._wm_delete:
                return WindowEvent(EventKind.CLOSE_REQUEST, e.window.id, name)

        if e.type in self._randr_events:
            return WindowEvent(EventKind.TOPOLOGY, None, name)

        if e.type == X.PropertyNotify and e.atom in self._geometry_atoms:
            return WindowEvent(EventKind.TOPOLOGY, None, name)

        return WindowEvent(EventKind.OTHER, getattr(getattr(e, "window", None), "id", None), name)

    def is_connected(self) -> bool:
        try:
            self.display.get_input_focus()
            return True
        except (ConnectionClosedError, OSError) as e:
            log.error(f"Lost connection to display: {e}")
            return False

    def close(self) -> None:
        for window in list(self._windows):
            self.destroy_window(window)
        try:
            if self._colormap is not None:
                self._colormap.free()
            self.display.close()
        except (ConnectionClosedError, OSError):
            pass
