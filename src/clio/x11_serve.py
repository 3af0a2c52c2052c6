"""Serving SelectionRequest events for selections clio owns.

After a write-back clio owns the target selection and must answer other
applications' paste requests. Supports TARGETS, TIMESTAMP, the text targets
(UTF8_STRING, STRING, TEXT, text/plain variants) and image/png. Content too
large for a single property change is sent with the INCR protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from Xlib import X, Xatom

from clio.selection import ContentKind
from clio.x11_incr_send import initiate_incr_send

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.event import SelectionRequest

    from clio.selection import SelectionContent
    from clio.x11_incr_send import IncrSend, TransferKey

logger = logging.getLogger(__name__)

TEXT_TARGETS = ("UTF8_STRING", "text/plain;charset=utf-8", "text/plain", "TEXT")
IMAGE_TARGET = "image/png"

# Fraction of the maximum request size used for a single property write.
PROPERTY_SAFETY_MARGIN: float = 0.9


@dataclass
class OwnedSelection:
    """Content served for a selection clio owns.

    Attributes:
        content: The content written to the selection.
        acquired_at: Server timestamp of the ownership change.
    """

    content: SelectionContent
    acquired_at: int


def get_max_property_size(display: Display) -> int:
    """Return the largest property write, in bytes, that avoids INCR."""
    max_bytes = display.info.max_request_length * 4  # type: ignore[attr-defined]
    return int(max_bytes * PROPERTY_SAFETY_MARGIN)


def content_targets(display: Display, content: SelectionContent) -> list[int]:
    """Return the data targets offered for a piece of content."""
    if content.kind is ContentKind.IMAGE:
        return [display.intern_atom(IMAGE_TARGET)]
    return [display.intern_atom(name) for name in TEXT_TARGETS] + [Xatom.STRING]


def _payload(display: Display, target: int, content: SelectionContent) -> bytes | None:
    if target not in content_targets(display, content):
        return None
    if target == Xatom.STRING:
        # STRING is Latin-1 by definition.
        return content.data.decode("utf-8", "replace").encode("latin-1", "replace")
    return content.data


def handle_selection_request(
    display: Display,
    event: SelectionRequest,
    owned: OwnedSelection,
    incr_sends: dict[TransferKey, IncrSend],
) -> None:
    """Respond to a SelectionRequest for an owned selection.

    Args:
        display: The X11 display connection.
        event: The SelectionRequest event.
        owned: Content and acquisition time for the requested selection.
        incr_sends: In-progress INCR transfers; large replies are added here.
    """
    targets_atom = display.intern_atom("TARGETS")
    timestamp_atom = display.intern_atom("TIMESTAMP")
    prop = event.property if event.property != X.NONE else event.target

    if event.target == targets_atom:
        targets = [targets_atom, timestamp_atom] + content_targets(display, owned.content)
        event.requestor.change_property(prop, Xatom.ATOM, 32, targets)
    elif event.target == timestamp_atom:
        event.requestor.change_property(prop, Xatom.INTEGER, 32, [owned.acquired_at])
    else:
        data = _payload(display, event.target, owned.content)
        if data is None:
            logger.debug("Refusing unsupported target %s", event.target)
            prop = X.NONE
        elif len(data) > get_max_property_size(display):
            initiate_incr_send(display, event, prop, data, incr_sends)
        else:
            event.requestor.change_property(prop, event.target, 8, data)

    send_selection_notify(display, event, prop)


def send_selection_notify(display: Display, event: SelectionRequest, prop: int) -> None:
    """Send the SelectionNotify reply; prop=X.NONE refuses the request."""
    from Xlib.protocol.event import SelectionNotify as SelectionNotifyEvent
    event.requestor.send_event(
        SelectionNotifyEvent(
            time=event.time,
            requestor=event.requestor.id,
            selection=event.selection,
            target=event.target,
            property=prop,
        ),
        event_mask=0,
    )
    display.flush()
