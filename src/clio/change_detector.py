#!/usr/bin/env python3
"""Selection change detection.

Each poll cycle classifies the content read from a selection against the
fingerprint last recorded for it in SyncState:

- Empty: nothing readable or zero-length content. Never propagated, so an
  empty selection can never clear the other one.
- Unchanged: same fingerprint as last time.
- Changed: new content, carried as a ContentSnapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from clio.hashing import compute_fingerprint
from clio.selection import ContentSnapshot

if TYPE_CHECKING:
    from clio.selection import Selection, SelectionContent
    from clio.sync_state import SyncState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Empty:
    """The selection holds no usable content."""


@dataclass(frozen=True)
class Unchanged:
    """The selection content matches the last recorded fingerprint."""

    fingerprint: str


@dataclass(frozen=True)
class Changed:
    """The selection holds new content."""

    snapshot: ContentSnapshot


Classification = Union[Empty, Unchanged, Changed]


def classify(
    selection: Selection, content: SelectionContent | None, state: SyncState
) -> Classification:
    """Classify a selection's content against the last recorded fingerprint.

    Does not modify state; the sync coordinator records fingerprints once
    the snapshot has been processed.

    Args:
        selection: The selection the content was read from.
        content: Content read this cycle, or None if nothing was readable.
        state: Per-selection fingerprint state.

    Returns:
        Empty, Unchanged, or Changed.
    """
    if content is None or len(content.data) == 0:
        return Empty()

    fingerprint = compute_fingerprint(content.data)
    if state.is_known(selection, fingerprint):
        return Unchanged(fingerprint)

    return Changed(
        ContentSnapshot(
            selection=selection,
            kind=content.kind,
            data=content.data,
            fingerprint=fingerprint,
        )
    )


def exceeds_size_limit(snapshot: ContentSnapshot, max_size: int) -> bool:
    """Check the raw content length against the configured maximum.

    Runs before rules, transformation, and persistence so that oversized
    content costs nothing beyond the read itself.

    Args:
        snapshot: The changed content.
        max_size: Largest accepted entry in bytes.

    Returns:
        True if the content must be discarded.
    """
    if len(snapshot.data) <= max_size:
        return False
    logger.warning(
        "Skipping %s %s content: size %d KB exceeds limit %d KB",
        snapshot.selection.value,
        snapshot.kind.value,
        len(snapshot.data) // 1024,
        max_size // 1024,
    )
    return True
