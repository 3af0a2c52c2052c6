#!/usr/bin/env python3
"""Selection identities and per-cycle content values.

The watcher monitors exactly two X11 selections. Content read from a
selection is wrapped in a SelectionContent; once fingerprinted by the change
detector it becomes a ContentSnapshot that lives for a single selection's
processing step.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class Selection(enum.Enum):
    """The two monitored X11 selections.

    PRIMARY holds the mouse selection (middle-click paste), CLIPBOARD holds
    explicit copy/paste content.
    """

    PRIMARY = "PRIMARY"
    CLIPBOARD = "CLIPBOARD"

    @property
    def other(self) -> Selection:
        """Return the selection a write-back from this one targets."""
        if self is Selection.PRIMARY:
            return Selection.CLIPBOARD
        return Selection.PRIMARY


class ContentKind(enum.Enum):
    """Type of content held by a selection."""

    TEXT = "text"
    IMAGE = "image"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SelectionContent:
    """Raw content read from, or written to, a selection.

    Attributes:
        kind: Content type.
        data: Raw bytes (UTF-8 text or PNG image data).
    """

    kind: ContentKind
    data: bytes

    @classmethod
    def text(cls, value: str) -> SelectionContent:
        return cls(ContentKind.TEXT, value.encode("utf-8"))


@dataclass(frozen=True)
class ContentSnapshot:
    """Content of one selection captured during a single poll cycle.

    Attributes:
        selection: Selection the content was read from.
        kind: Content type.
        data: Raw content bytes.
        fingerprint: SHA-256 hex digest of data.
    """

    selection: Selection
    kind: ContentKind
    data: bytes
    fingerprint: str

    @property
    def is_text(self) -> bool:
        return self.kind is ContentKind.TEXT

    def as_content(self) -> SelectionContent:
        return SelectionContent(self.kind, self.data)


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def png_dimensions(data: bytes) -> tuple[int, int] | None:
    """Return (width, height) from a PNG's IHDR chunk, or None if data is not a PNG."""
    if len(data) < 24 or not data.startswith(PNG_SIGNATURE) or data[12:16] != b"IHDR":
        return None
    return int.from_bytes(data[16:20], "big"), int.from_bytes(data[20:24], "big")
