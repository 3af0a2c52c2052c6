#!/usr/bin/env python3
"""History persistence contract consumed by the watch pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from clio.selection import ContentKind


@dataclass(frozen=True)
class Entry:
    """A finished history entry ready to be stored.

    Attributes:
        fingerprint: SHA-256 hex digest of data, used for deduplication.
        kind: Content type.
        data: Final content bytes (after any transformation).
        source_app: Best-effort source application, if known.
        source_title: Best-effort source window title, if known.
        ttl: Per-entry expiry overriding the global max_age, or None.
        mask_with: Display-only replacement text for the history browser.
    """

    fingerprint: str
    kind: ContentKind
    data: bytes
    source_app: str | None = None
    source_title: str | None = None
    ttl: timedelta | None = None
    mask_with: str | None = None


class HistoryStore(Protocol):
    """Storage operations required by the watch pipeline.

    Implementations serialize their own access; the pipeline calls them
    from a single thread and does no locking of its own.
    """

    def upsert(self, entry: Entry) -> int:
        """Insert or refresh an entry by fingerprint and prune to retention.

        Returns:
            The entry id.

        Raises:
            StorageBusyError: If the store stayed locked after retrying.
            StorageError: If the store is unusable.
        """
        ...

    def prune_expired(self, max_age: timedelta | None) -> int:
        """Delete entries whose TTL passed or that are older than max_age.

        Returns:
            Number of entries deleted.
        """
        ...
