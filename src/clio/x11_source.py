"""Best-effort source application and window title lookup.

The source application is the WM_CLASS class name of the active window
(_NET_ACTIVE_WINDOW), walking up to MAX_PARENT_DEPTH parents for windows
that carry no WM_CLASS themselves. If there is no usable active window, the
WM_CLASS of the selection owner is used instead. Every failure yields None;
lookups never raise.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from Xlib import X

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.xobject.drawable import Window

logger = logging.getLogger(__name__)

MAX_PARENT_DEPTH: int = 10


def active_window(display: Display) -> Window | None:
    """Return the window named by the root window's _NET_ACTIVE_WINDOW."""
    root = display.screen().root
    prop = root.get_full_property(
        display.intern_atom("_NET_ACTIVE_WINDOW"), X.AnyPropertyType
    )
    if prop is None or not prop.value:
        return None
    window_id = prop.value[0]
    if window_id == 0:
        return None
    return display.create_resource_object("window", window_id)


def read_wm_class(window: Window) -> str | None:
    """Return the WM_CLASS class name of a window, or None if absent."""
    wm_class = window.get_wm_class()
    if not wm_class or not wm_class[1]:
        return None
    return wm_class[1]


def wm_class_with_traversal(window: Window) -> str | None:
    """Read WM_CLASS from window or the nearest ancestor that has one."""
    current = window
    for _ in range(MAX_PARENT_DEPTH):
        wm_class = read_wm_class(current)
        if wm_class:
            return wm_class
        tree = current.query_tree()
        if tree.parent == tree.root or tree.parent.id == X.NONE:
            break
        current = tree.parent
    return None


def detect_source_app(display: Display, selection_atom: int, own_window: Window) -> str | None:
    """Best-effort WM_CLASS of the application that set a selection.

    Args:
        display: The X11 display connection.
        selection_atom: Selection whose source is wanted.
        own_window: clio's hidden window; never reported as a source.

    Returns:
        The class name, or None if it cannot be determined.
    """
    try:
        window = active_window(display)
        if window is not None:
            wm_class = wm_class_with_traversal(window)
            if wm_class:
                return wm_class
        owner = display.get_selection_owner(selection_atom)
        if owner == X.NONE or getattr(owner, "id", owner) == own_window.id:
            return None
        return read_wm_class(owner)
    except Exception as e:
        logger.debug("Source app lookup failed: %s", e)
        return None


def detect_source_title(display: Display) -> str | None:
    """Best-effort title of the active window.

    Prefers the UTF-8 _NET_WM_NAME and falls back to WM_NAME.
    """
    try:
        window = active_window(display)
        if window is None:
            return None
        prop = window.get_full_property(
            display.intern_atom("_NET_WM_NAME"), display.intern_atom("UTF8_STRING")
        )
        if prop is not None and prop.value:
            value = prop.value
            return value.decode("utf-8", "replace") if isinstance(value, bytes) else str(value)
        name = window.get_wm_name()
        if isinstance(name, bytes):
            name = name.decode("latin-1")
        return name or None
    except Exception as e:
        logger.debug("Source title lookup failed: %s", e)
        return None
