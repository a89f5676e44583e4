"""
Desktop environment detection and window manager / compositor hints.

The per-environment extras are a static table; applying them is idempotent
so windows can be tagged again after a window manager fights back.
"""

from __future__ import annotations

import logging
import os
from enum import Enum

from Xlib import X, Xatom

log = logging.getLogger("motionwall.desktop")


class DesktopEnvironment(Enum):
    UNKNOWN = "Unknown"
    GNOME = "GNOME"
    KDE = "KDE"
    XFCE = "XFCE"
    CINNAMON = "Cinnamon"
    MATE = "MATE"
    LXDE = "LXDE"
    I3 = "i3"
    AWESOME = "Awesome"


# Checked in order; XDG_CURRENT_DESKTOP values are case sensitive
_CURRENT_DESKTOP = [
    ("GNOME", DesktopEnvironment.GNOME),
    ("KDE", DesktopEnvironment.KDE),
    ("XFCE", DesktopEnvironment.XFCE),
    ("X-Cinnamon", DesktopEnvironment.CINNAMON),
    ("MATE", DesktopEnvironment.MATE),
    ("LXDE", DesktopEnvironment.LXDE),
]

_DESKTOP_SESSION = [
    ("gnome", DesktopEnvironment.GNOME),
    ("kde", DesktopEnvironment.KDE),
    ("xfce", DesktopEnvironment.XFCE),
    ("cinnamon", DesktopEnvironment.CINNAMON),
    ("mate", DesktopEnvironment.MATE),
    ("i3", DesktopEnvironment.I3),
    ("awesome", DesktopEnvironment.AWESOME),
]

BASE_STATES = (
    "_NET_WM_STATE_BELOW",
    "_NET_WM_STATE_STICKY",
    "_NET_WM_STATE_SKIP_TASKBAR",
    "_NET_WM_STATE_SKIP_PAGER",
)

# (atom, type, value); a value of None deletes the property
ALL_ACTIVITIES = "00000000-0000-0000-0000-000000000000"

DESKTOP_HINTS = {
    DesktopEnvironment.GNOME: [
        ("_GNOME_WM_SKIP_ANIMATIONS", Xatom.CARDINAL, 1),
    ],
    DesktopEnvironment.KDE: [
        ("_KDE_NET_WM_ACTIVITIES", Xatom.STRING, ALL_ACTIVITIES),
        ("_KDE_NET_WM_BLUR_BEHIND_REGION", Xatom.CARDINAL, None),
        ("_KDE_NET_WM_BYPASS_COMPOSITOR", Xatom.CARDINAL, 1),
    ],
    DesktopEnvironment.CINNAMON: [
        ("_MUFFIN_HINTS", Xatom.CARDINAL, 1),
    ],
    DesktopEnvironment.XFCE: [
        ("_XFCE_DESKTOP_WINDOW", Xatom.CARDINAL, 1),
    ],
    DesktopEnvironment.MATE: [
        ("_MATE_DESKTOP_WINDOW", Xatom.CARDINAL, 1),
    ],
}

COMPOSITOR_HINTS = [
    ("_NET_WM_WINDOW_OPACITY", Xatom.CARDINAL, 0xFFFFFFFF),
    ("_COMPTON_SHADOW", Xatom.CARDINAL, 0),
    ("_COMPTON_FADE", Xatom.CARDINAL, 0),
]


def detect_desktop(environ=None) -> DesktopEnvironment:
    environ = os.environ if environ is None else environ
    current = environ.get("XDG_CURRENT_DESKTOP", "")
    session = environ.get("DESKTOP_SESSION", "")

    de = DesktopEnvironment.UNKNOWN
    for token, env in _CURRENT_DESKTOP:
        if token in current:
            de = env
            break

    if de is DesktopEnvironment.UNKNOWN:
        for token, env in _DESKTOP_SESSION:
            if token in session:
                de = env
                break

    log.debug(f"Detected desktop environment: {de.value}")
    return de


def has_compositor(display) -> bool:
    owner = display.get_selection_owner(display.intern_atom("_NET_WM_CM_S0"))
    return getattr(owner, "id", owner) not in (0, X.NONE, None)


def _set_hint(display, window, name: str, kind: int, value) -> None:
    atom = display.intern_atom(name)
    if value is None:
        window.delete_property(atom)
    elif isinstance(value, str):
        window.change_property(atom, kind, 8, value.encode())
    else:
        window.change_property(atom, kind, 32, [value])


def apply_hints(display, window, de: DesktopEnvironment) -> None:
    """Mark *window* as a sticky, below-everything desktop background."""
    window.set_wm_class("motionwall", "MotionWall")
    window.change_property(
        display.intern_atom("_NET_WM_WINDOW_TYPE"), Xatom.ATOM, 32,
        [display.intern_atom("_NET_WM_WINDOW_TYPE_DESKTOP")],
    )
    window.change_property(
        display.intern_atom("_NET_WM_STATE"), Xatom.ATOM, 32,
        [display.intern_atom(name) for name in BASE_STATES],
    )

    for name, kind, value in DESKTOP_HINTS.get(de, []):
        _set_hint(display, window, name, kind, value)

    if has_compositor(display):
        log.debug("Compositor detected, disabling shadows and fading")
        for name, kind, value in COMPOSITOR_HINTS:
            _set_hint(display, window, name, kind, value)
