"""INCR sending for selections too large for a single property.

When a paste request asks for more data than one ChangeProperty request
can carry, the reply property is given type INCR and the total length.
The requestor deletes the property to ask for each chunk; a zero-length
chunk marks the end, and the requestor's final delete finishes the
transfer. Transfers are keyed by (requestor window id, property atom).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from Xlib import X

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.event import SelectionRequest
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

logger = logging.getLogger(__name__)

# Bytes written per INCR chunk, well below the usual maximum request size.
INCR_CHUNK_SIZE: int = 65536

# Seconds a transfer may stay unfinished before it is abandoned.
INCR_SEND_TIMEOUT: float = 30.0

TransferKey = tuple[int, int]


@dataclass
class IncrSend:
    """An in-progress INCR send.

    Attributes:
        requestor: Window the data is written to.
        property_atom: Property on the requestor that receives each chunk.
        target_atom: Type of the data (e.g. UTF8_STRING).
        selection_atom: Selection the request was for.
        data: Full payload.
        offset: Bytes already sent.
        started_at: time.monotonic() when the transfer began.
        completion_sent: True once the zero-length chunk was written.
    """

    requestor: Window
    property_atom: int
    target_atom: int
    selection_atom: int
    data: bytes
    offset: int = 0
    started_at: float = 0.0
    completion_sent: bool = False


def initiate_incr_send(
    display: Display,
    event: SelectionRequest,
    prop: int,
    data: bytes,
    sends: dict[TransferKey, IncrSend],
) -> None:
    """Start an INCR transfer in reply to a SelectionRequest.

    Subscribes to property and structure changes on the requestor, writes
    the INCR announcement and registers the transfer. The caller sends the
    SelectionNotify.

    Args:
        display: The X11 display connection.
        event: The SelectionRequest being answered.
        prop: Property on the requestor that receives the data.
        data: Payload to send.
        sends: In-progress transfers, updated in place.
    """
    requestor = event.requestor
    requestor.change_attributes(event_mask=X.PropertyChangeMask | X.StructureNotifyMask)
    requestor.change_property(prop, display.intern_atom("INCR"), 32, [len(data)])
    sends[(requestor.id, prop)] = IncrSend(
        requestor=requestor,
        property_atom=prop,
        target_atom=event.target,
        selection_atom=event.selection,
        data=data,
        started_at=time.monotonic(),
    )
    logger.debug("Started INCR send of %d bytes to window %s", len(data), requestor.id)


def send_incr_chunk(display: Display, send: IncrSend) -> None:
    """Write the next chunk, or the zero-length end marker once all data is sent."""
    chunk = send.data[send.offset:send.offset + INCR_CHUNK_SIZE]
    send.requestor.change_property(send.property_atom, send.target_atom, 8, chunk)
    display.flush()
    if not chunk:
        send.completion_sent = True
        return
    send.offset += len(chunk)


def _finish(display: Display, key: TransferKey, sends: dict[TransferKey, IncrSend]) -> None:
    """Drop a transfer; unsubscribe from its requestor if it was the last one."""
    send = sends.pop(key, None)
    if send is None:
        return
    if not any(other[0] == key[0] for other in sends):
        send.requestor.change_attributes(event_mask=0)
        display.flush()


def is_incr_send_event(event: Event, sends: dict[TransferKey, IncrSend]) -> bool:
    """Check whether an event belongs to an in-progress INCR send."""
    if not sends:
        return False
    if event.type == X.PropertyNotify and event.state == X.PropertyDelete:
        return (event.window.id, event.atom) in sends
    if event.type == X.DestroyNotify:
        return any(key[0] == event.window.id for key in sends)
    return False


def handle_incr_send_event(
    display: Display, event: Event, sends: dict[TransferKey, IncrSend]
) -> None:
    """Advance or cancel transfers in response to a requestor event.

    A PropertyDelete asks for the next chunk, or acknowledges the end
    marker. A DestroyNotify cancels every transfer to that window.
    """
    if event.type == X.DestroyNotify:
        logger.debug("INCR requestor %s destroyed", event.window.id)
        for key in [k for k in sends if k[0] == event.window.id]:
            sends.pop(key)
        return

    key = (event.window.id, event.atom)
    send = sends.get(key)
    if send is None:
        return
    if send.completion_sent:
        logger.debug("INCR send to window %s complete", key[0])
        _finish(display, key, sends)
    else:
        send_incr_chunk(display, send)


def cancel_incr_sends(
    display: Display, selection_atom: int, sends: dict[TransferKey, IncrSend]
) -> None:
    """Abandon transfers for a selection whose ownership was lost."""
    for key in [k for k, s in sends.items() if s.selection_atom == selection_atom]:
        logger.debug("Canceling INCR send to window %s", key[0])
        _finish(display, key, sends)


def cleanup_stale_incr_sends(display: Display, sends: dict[TransferKey, IncrSend]) -> None:
    """Abandon transfers that have run longer than INCR_SEND_TIMEOUT."""
    now = time.monotonic()
    for key, send in list(sends.items()):
        if now - send.started_at > INCR_SEND_TIMEOUT:
            logger.warning("INCR send to window %s timed out", key[0])
            _finish(display, key, sends)
