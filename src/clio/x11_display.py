"""X11 display setup and shared event helpers.

This module provides the pieces the X11 selection backend builds on:

- Validating X11 display connectivity
- Creating the hidden window that owns selections and receives data
- Mapping Selection values to atoms
- Waiting for a specific event with a deadline, without threads
- Querying the server timestamp used when taking selection ownership
"""

from __future__ import annotations

import os
import select
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from Xlib import X, Xatom

from clio.errors import SelectionError
from clio.selection import Selection

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

# Property used as scratch space on the hidden window.
TIMESTAMP_PROPERTY = "CLIO_TIMESTAMP"


def open_display() -> Display:
    """Validate X11 connectivity and return a Display object.

    Returns:
        Display object for X11 operations.

    Raises:
        SelectionError: If DISPLAY is unset or the connection fails.
    """
    display_name = os.environ.get("DISPLAY")
    if not display_name:
        raise SelectionError("DISPLAY environment variable is not set")

    try:
        from Xlib.display import Display as XDisplay
        return XDisplay(display_name)
    except Exception as e:
        raise SelectionError(f"failed to connect to X11 display: {e}") from e


def create_hidden_window(display: Display) -> Window:
    """Create a 1x1 unmapped window for selection ownership and transfers.

    PropertyChangeMask is required for INCR reads and for obtaining server
    timestamps.

    Args:
        display: The X11 display connection.

    Returns:
        A Window object for owning and requesting selections.
    """
    screen = display.screen()
    window = screen.root.create_window(
        0, 0, 1, 1, 0, screen.root_depth, event_mask=X.PropertyChangeMask,
    )
    return window


def selection_atom(display: Display, selection: Selection) -> int:
    """Return the atom for a selection."""
    if selection is Selection.PRIMARY:
        return Xatom.PRIMARY
    return display.intern_atom("CLIPBOARD")


def wait_for_event(
    display: Display,
    predicate: Callable[[Event], bool],
    timeout: float,
    on_other: Callable[[Event], None],
) -> Event | None:
    """Dispatch events until one matches predicate or the deadline passes.

    Events that do not match are handed to on_other as they arrive, so
    selection requests keep being served while waiting.

    Args:
        display: The X11 display connection.
        predicate: Returns True for the event being waited for.
        timeout: Seconds to wait.
        on_other: Called for every non-matching event.

    Returns:
        The matching event, or None on timeout.
    """
    deadline = time.monotonic() + timeout
    while True:
        while display.pending_events() > 0:
            event = display.next_event()
            if predicate(event):
                return event
            on_other(event)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        select.select([display.fileno()], [], [], remaining)


def get_server_timestamp(
    display: Display,
    window: Window,
    on_other: Callable[[Event], None],
    timeout: float = 1.0,
) -> int:
    """Query the X server's current timestamp.

    Uses the PropertyNotify pattern: change a dummy property on the window,
    flush, and wait for the PropertyNotify event whose timestamp reflects
    the server's current time.

    Returns:
        The server timestamp, or X.CurrentTime if no event arrived in time.
    """
    prop_atom = display.intern_atom(TIMESTAMP_PROPERTY)
    window.change_property(prop_atom, Xatom.INTEGER, 32, [0])
    display.flush()

    event = wait_for_event(
        display,
        lambda e: e.type == X.PropertyNotify and e.atom == prop_atom,
        timeout,
        on_other,
    )
    if event is None:
        return X.CurrentTime
    return event.time
