#!/usr/bin/env python3
"""
Per-selection fingerprint state for change detection and loop prevention.

Writing content into a selection makes that selection change on the next
poll. Without tracking, the watcher would record the write-back as a new
change and propagate it straight back to where it came from. Recording the
written content's fingerprint against the target selection makes the next
poll classify it as already seen.

Critical ordering: record() for the target selection must happen in the
same cycle as the write, before the next poll reads that selection.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from clio.selection import Selection


@dataclass
class SyncState:
    """
    Last known fingerprint for each monitored selection.

    Owned by the watch loop and passed explicitly into each cycle; no other
    component reads or writes it.

    Attributes:
        last_fingerprints: Fingerprint of the last content seen (or written)
            per selection. A selection absent from the map has not been
            seen yet.
        unsynced: Fingerprint per selection of content that was already
            evaluated and stored but whose write-back failed. Only the
            write-back is retried for it.
    """

    last_fingerprints: dict[Selection, str] = field(default_factory=dict)
    unsynced: dict[Selection, str] = field(default_factory=dict)

    def is_known(self, selection: Selection, fingerprint: str) -> bool:
        """
        Check whether a fingerprint matches the last one seen for a selection.

        Args:
            selection: The selection the content was read from.
            fingerprint: SHA-256 hex digest of the current content.

        Returns:
            True if the content is unchanged since the last cycle.
        """
        return self.last_fingerprints.get(selection) == fingerprint

    def record(self, selection: Selection, fingerprint: str) -> None:
        """
        Record the fingerprint of content seen in, or written to, a selection.

        Args:
            selection: The selection to update.
            fingerprint: SHA-256 hex digest of the content.
        """
        self.last_fingerprints[selection] = fingerprint

