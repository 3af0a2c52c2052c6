"""X11 implementation of the SelectionIO contract.

Reading a selection converts it into a property on clio's hidden window:
first TARGETS, to choose between text and image/png, then the chosen
target. Large transfers arrive through the INCR protocol; an INCR transfer
whose announced or accumulated size exceeds max_size is abandoned. The
abandoned selection is not fetched again while its owner and the owner's
TIMESTAMP stay the same.

Writing takes ownership of the selection and serves SelectionRequest events
from other applications until another client takes it over; replies too
large for one property are sent with INCR. Requests are served whenever
events are dispatched: while waiting for a read and while idling between
poll cycles.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from Xlib import X, Xatom

from clio.errors import ContentTooLargeError, SelectionError
from clio.selection import ContentKind, Selection, SelectionContent
from clio.x11_display import (
    create_hidden_window,
    get_server_timestamp,
    open_display,
    selection_atom,
    wait_for_event,
)
from clio.x11_incr_send import (
    cancel_incr_sends,
    cleanup_stale_incr_sends,
    handle_incr_send_event,
    is_incr_send_event,
)
from clio.x11_serve import (
    IMAGE_TARGET,
    OwnedSelection,
    handle_selection_request,
    send_selection_notify,
)
from clio.x11_source import detect_source_app, detect_source_title

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

    from clio.x11_incr_send import IncrSend, TransferKey

logger = logging.getLogger(__name__)

# Timeout in seconds for each step of a selection read, to prevent hangs
# when the selection owner is unresponsive.
SELECTION_TIMEOUT: float = 2.0

# Property on the hidden window that receives converted selections.
TRANSFER_PROPERTY = "CLIO_SEL"

# Separate property for TIMESTAMP queries, so they never race an abandoned
# INCR transfer still writing to TRANSFER_PROPERTY.
STAMP_PROPERTY = "CLIO_STAMP"

# Seconds between stale-transfer checks while serving a selection.
SERVE_POLL_INTERVAL: float = 1.0

# Preferred text targets, most preferred first.
TEXT_READ_TARGETS = ("UTF8_STRING", "text/plain;charset=utf-8", "STRING")


def _property_bytes(prop: Any) -> bytes:
    data = prop.value
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class X11SelectionIO:
    """Selection reader/writer bound to one X11 display connection."""

    def __init__(self, display: Display, window: Window, max_size: int) -> None:
        self.display = display
        self.window = window
        self.max_size = max_size
        self.owned: dict[int, OwnedSelection] = {}
        self.incr_sends: dict[TransferKey, IncrSend] = {}
        self._prop_atom = display.intern_atom(TRANSFER_PROPERTY)
        self._stamp_atom = display.intern_atom(STAMP_PROPERTY)
        # selection atom -> (owner id, owner TIMESTAMP, error) of skipped content
        self._oversized: dict[int, tuple[int, int | None, ContentTooLargeError]] = {}
        self._incr_atom = display.intern_atom("INCR")

    @classmethod
    def connect(cls, max_size: int) -> X11SelectionIO:
        """Open the display from $DISPLAY and create the hidden window.

        Raises:
            SelectionError: If no X11 display is available.
        """
        display = open_display()
        return cls(display, create_hidden_window(display), max_size)

    def close(self) -> None:
        self.window.destroy()
        self.display.close()

    def _atom(self, selection: Selection) -> int:
        return selection_atom(self.display, selection)

    def _owns(self, atom: int) -> bool:
        if atom not in self.owned:
            return False
        owner = self.display.get_selection_owner(atom)
        if getattr(owner, "id", owner) == self.window.id:
            return True
        del self.owned[atom]
        return False

    def dispatch(self, event: Event) -> None:
        """Handle an event that arrived while waiting for something else."""
        if event.type == X.SelectionRequest:
            owned = self.owned.get(event.selection)
            if owned is None:
                send_selection_notify(self.display, event, X.NONE)
                return
            handle_selection_request(self.display, event, owned, self.incr_sends)
        elif event.type == X.SelectionClear:
            logger.debug("Lost ownership of selection %s", event.atom)
            self.owned.pop(event.atom, None)
            cancel_incr_sends(self.display, event.atom, self.incr_sends)
        elif is_incr_send_event(event, self.incr_sends):
            handle_incr_send_event(self.display, event, self.incr_sends)

    def _convert(self, atom: int, target: int, prop: int | None = None) -> Event | None:
        """Request a conversion and wait for its SelectionNotify."""
        prop = self._prop_atom if prop is None else prop
        self.window.delete_property(prop)
        self.window.convert_selection(atom, target, prop, X.CurrentTime)
        self.display.flush()
        return wait_for_event(
            self.display,
            lambda e: e.type == X.SelectionNotify and e.selection == atom,
            SELECTION_TIMEOUT,
            self.dispatch,
        )

    def _available_targets(self, atom: int) -> set[int]:
        event = self._convert(atom, self.display.intern_atom("TARGETS"))
        if event is None:
            raise SelectionError("timeout waiting for TARGETS")
        if event.property == X.NONE:
            return set()
        prop = self.window.get_full_property(self._prop_atom, X.AnyPropertyType)
        self.window.delete_property(self._prop_atom)
        if prop is None:
            return set()
        return set(prop.value)

    def _choose_target(self, atom: int) -> tuple[int, ContentKind]:
        targets = self._available_targets(atom)
        for name in TEXT_READ_TARGETS:
            target = Xatom.STRING if name == "STRING" else self.display.intern_atom(name)
            if target in targets:
                return target, ContentKind.TEXT
        image = self.display.intern_atom(IMAGE_TARGET)
        if image in targets:
            return image, ContentKind.IMAGE
        # Owners that do not answer TARGETS usually still convert UTF8_STRING.
        return self.display.intern_atom("UTF8_STRING"), ContentKind.TEXT

    def _selection_timestamp(self, atom: int) -> int | None:
        """Return the owner's TIMESTAMP for a selection, or None if unsupported."""
        event = self._convert(atom, self.display.intern_atom("TIMESTAMP"), self._stamp_atom)
        if event is None or event.property == X.NONE:
            return None
        prop = self.window.get_full_property(self._stamp_atom, X.AnyPropertyType)
        self.window.delete_property(self._stamp_atom)
        if prop is None or not len(prop.value):
            return None
        return int(prop.value[0])

    def _still_oversized(self, atom: int, owner_id: int) -> ContentTooLargeError | None:
        """Return the cached error if the skipped content is still being served."""
        cached = self._oversized.pop(atom, None)
        if cached is None:
            return None
        cached_owner, stamp, error = cached
        if cached_owner != owner_id or stamp is None:
            return None
        if self._selection_timestamp(atom) != stamp:
            return None
        self._oversized[atom] = cached
        return ContentTooLargeError(error.size, error.limit, error.identity)

    def _remember_oversized(self, atom: int, owner_id: int, error: ContentTooLargeError) -> None:
        stamp = self._selection_timestamp(atom)
        error.identity = f"{owner_id}:{stamp}:{error.size}"
        self._oversized[atom] = (owner_id, stamp, error)

    def _take_property(self) -> Any:
        """Read and delete the transfer property; None if it is unset."""
        prop = self.window.get_full_property(self._prop_atom, X.AnyPropertyType)
        self.window.delete_property(self._prop_atom)
        self.display.flush()
        return prop

    def _read_incr(self, announced: int) -> bytes:
        """Receive an INCR transfer; the property was already deleted."""
        if announced > self.max_size:
            raise ContentTooLargeError(announced, self.max_size)
        chunks: list[bytes] = []
        received = 0
        while True:
            event = wait_for_event(
                self.display,
                lambda e: (
                    e.type == X.PropertyNotify
                    and e.atom == self._prop_atom
                    and e.state == X.PropertyNewValue
                ),
                SELECTION_TIMEOUT,
                self.dispatch,
            )
            if event is None:
                raise SelectionError("timeout during INCR transfer")
            prop = self._take_property()
            if prop is None or not len(prop.value):
                return b"".join(chunks)
            chunk = _property_bytes(prop)
            chunks.append(chunk)
            received += len(chunk)
            if received > self.max_size:
                raise ContentTooLargeError(received, self.max_size)

    def read(self, selection: Selection) -> SelectionContent | None:
        """Read a selection's content.

        Returns our own content directly when we own the selection.

        Raises:
            SelectionError: On timeout or X11 failure.
        """
        atom = self._atom(selection)
        try:
            if self._owns(atom):
                return self.owned[atom].content
            owner = self.display.get_selection_owner(atom)
            if owner == X.NONE:
                logger.debug("No owner for %s", selection.value)
                return None
            owner_id = getattr(owner, "id", owner)
            skipped = self._still_oversized(atom, owner_id)
            if skipped is not None:
                raise skipped

            target, kind = self._choose_target(atom)
            event = self._convert(atom, target)
            if event is None:
                raise SelectionError(f"timeout reading {selection.value}")
            if event.property == X.NONE:
                return None
            prop = self._take_property()
            if prop is None:
                return None
            if prop.property_type == self._incr_atom:
                try:
                    data = self._read_incr(prop.value[0] if len(prop.value) else 0)
                except ContentTooLargeError as e:
                    self._remember_oversized(atom, owner_id, e)
                    raise
            else:
                data = _property_bytes(prop)
            if target == Xatom.STRING:
                data = data.decode("latin-1").encode("utf-8")
            return SelectionContent(kind, data)
        except SelectionError:
            raise
        except Exception as e:
            raise SelectionError(f"failed to read {selection.value}: {e}") from e

    def write(self, selection: Selection, content: SelectionContent) -> None:
        """Take ownership of a selection and serve content from it.

        Raises:
            SelectionError: If ownership could not be acquired.
        """
        atom = self._atom(selection)
        try:
            timestamp = get_server_timestamp(self.display, self.window, self.dispatch)
            self.window.set_selection_owner(atom, timestamp)
            self.display.flush()
            owner = self.display.get_selection_owner(atom)
        except Exception as e:
            raise SelectionError(f"failed to write {selection.value}: {e}") from e
        if getattr(owner, "id", owner) != self.window.id:
            raise SelectionError(f"failed to acquire {selection.value} ownership")
        self.owned[atom] = OwnedSelection(content=content, acquired_at=timestamp)

    def source_app(self, selection: Selection) -> str | None:
        return detect_source_app(self.display, self._atom(selection), self.window)

    def source_title(self, selection: Selection) -> str | None:
        return detect_source_title(self.display)

    def wait(self, timeout: float) -> None:
        """Serve selection requests until timeout seconds have passed."""
        cleanup_stale_incr_sends(self.display, self.incr_sends)
        wait_for_event(self.display, lambda e: False, timeout, self.dispatch)

    def serve(self, selection: Selection) -> None:
        """Serve paste requests until another client takes the selection.

        Returns once ownership is lost and no INCR transfer is in progress.
        """
        atom = self._atom(selection)
        while atom in self.owned or self.incr_sends:
            self.wait(SERVE_POLL_INTERVAL)
