#!/usr/bin/env python3
"""Selection I/O contract consumed by the watch pipeline.

The sync coordinator only talks to selections through this protocol, so the
pipeline runs unchanged against the X11 backend (clio.x11_selection) or an
in-memory fake in tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from clio.selection import Selection, SelectionContent


class SelectionIO(Protocol):
    """Read, write and inspect the monitored selections."""

    def read(self, selection: Selection) -> SelectionContent | None:
        """Return the selection's content, or None if it is empty.

        Raises:
            SelectionError: If the selection could not be read.
        """
        ...

    def write(self, selection: Selection, content: SelectionContent) -> None:
        """Replace the selection's content.

        Raises:
            SelectionError: If the selection could not be written.
        """
        ...

    def source_app(self, selection: Selection) -> str | None:
        """Best-effort name of the application that set the selection."""
        ...

    def source_title(self, selection: Selection) -> str | None:
        """Best-effort title of the window that set the selection."""
        ...

    def wait(self, timeout: float) -> None:
        """Idle for up to timeout seconds between poll cycles."""
        ...
