#!/usr/bin/env python3
"""Per-cycle selection processing and write-back.

One poll cycle processes each monitored selection fully before reading the
next one, PRIMARY first and then CLIPBOARD:

1. read the selection and classify it against SyncState;
2. for new content, run the rules and any command chain;
3. write the raw content back to the other selection when the sync mode
   allows propagation from this selection, recording the written
   fingerprint against the target so the next poll sees it as known;
4. hand the finished entry to the history store.

Only one selection's content buffer is alive at a time. When both
selections change within one cycle under BOTH, PRIMARY is written to
CLIPBOARD before CLIPBOARD is read, so PRIMARY's content ends up in both.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clio.change_detector import Changed, classify, exceeds_size_limit
from clio.command_runner import run_command
from clio.config_types import SyncMode
from clio.errors import ContentTooLargeError, SelectionError, StorageBusyError
from clio.hashing import compute_fingerprint
from clio.persistence import Entry
from clio.rules import Candidate, evaluate
from clio.selection import Selection

if TYPE_CHECKING:
    from clio.persistence import HistoryStore
    from clio.rules import ActionPlan, CommandRunner, Rule
    from clio.selection import ContentSnapshot
    from clio.selection_io import SelectionIO
    from clio.sync_state import SyncState

logger = logging.getLogger(__name__)


@dataclass
class WatchContext:
    """Collaborators and settings shared by every poll cycle.

    Attributes:
        io: Selection reader/writer.
        store: History persistence.
        rules: Compiled action rules in evaluation order.
        sync_mode: Write-back direction.
        max_entry_size: Largest accepted entry in bytes.
        runner: Executes rule commands.
    """

    io: SelectionIO
    store: HistoryStore
    rules: list[Rule] = field(default_factory=list)
    sync_mode: SyncMode = SyncMode.BOTH
    max_entry_size: int = 51200 * 1024
    runner: CommandRunner = run_command


def monitored_selections(mode: SyncMode) -> tuple[Selection, ...]:
    """Return the selections read each cycle, in processing order."""
    if mode is SyncMode.DISABLED:
        return (Selection.CLIPBOARD,)
    return (Selection.PRIMARY, Selection.CLIPBOARD)


def may_propagate(mode: SyncMode, source: Selection) -> bool:
    """Check whether a change in source may be written to the other selection.

    Args:
        mode: Configured sync mode.
        source: Selection whose content changed.

    Returns:
        True if the mode authorizes a write-back from source.
    """
    if mode is SyncMode.BOTH:
        return True
    if mode is SyncMode.TO_CLIPBOARD:
        return source is Selection.PRIMARY
    if mode is SyncMode.TO_PRIMARY:
        return source is Selection.CLIPBOARD
    return False


def run_cycle(ctx: WatchContext, state: SyncState) -> None:
    """Run one poll cycle over every monitored selection.

    Transient selection and storage errors are logged and skipped.

    Args:
        ctx: Shared collaborators and settings.
        state: Per-selection fingerprint state, updated in place.

    Raises:
        StorageError: If the history store is unusable.
    """
    for selection in monitored_selections(ctx.sync_mode):
        process_selection(ctx, state, selection)


def process_selection(ctx: WatchContext, state: SyncState, selection: Selection) -> None:
    """Read, classify and process a single selection."""
    try:
        content = ctx.io.read(selection)
    except ContentTooLargeError as e:
        skip_oversized_read(state, selection, e)
        return
    except SelectionError as e:
        logger.debug("Failed to read %s: %s", selection.value, e)
        return

    result = classify(selection, content, state)
    del content
    if not isinstance(result, Changed):
        return

    snapshot = result.snapshot
    logger.debug(
        "%s changed: %s, %d bytes", selection.value, snapshot.kind.value, len(snapshot.data)
    )
    if exceeds_size_limit(snapshot, ctx.max_entry_size):
        state.record(selection, snapshot.fingerprint)
        return

    if state.unsynced.get(selection) == snapshot.fingerprint:
        # Already evaluated and stored; only the write-back is outstanding.
        if write_back(ctx, state, snapshot):
            state.record(selection, snapshot.fingerprint)
            del state.unsynced[selection]
        return

    candidate = Candidate(
        kind=snapshot.kind,
        data=snapshot.data,
        source_app=ctx.io.source_app(selection),
        source_title=ctx.io.source_title(selection),
    )
    plan = evaluate(candidate, ctx.rules, ctx.runner)

    if write_back(ctx, state, snapshot):
        state.record(selection, snapshot.fingerprint)
        state.unsynced.pop(selection, None)
    else:
        state.unsynced[selection] = snapshot.fingerprint
    store_entry(ctx, candidate, plan)


def skip_oversized_read(state: SyncState, selection: Selection, error: ContentTooLargeError) -> None:
    """Record content rejected during the read itself, warning once per content.

    The content was never fully read, so its fingerprint is derived from
    the error's identity instead of the data.
    """
    fingerprint = compute_fingerprint(f"oversized:{error.identity}".encode("utf-8"))
    if state.is_known(selection, fingerprint):
        return
    logger.warning(
        "Skipping %s content: size %d KB exceeds limit %d KB",
        selection.value,
        error.size // 1024,
        error.limit // 1024,
    )
    state.record(selection, fingerprint)


def write_back(ctx: WatchContext, state: SyncState, snapshot: ContentSnapshot) -> bool:
    """Propagate a changed snapshot to the other selection if allowed.

    On success the target's fingerprint is recorded immediately, which is
    what stops the write-back from being detected as a new change.

    Returns:
        False if a write was attempted and failed, True otherwise. A failed
        write leaves the source fingerprint unrecorded so the next poll
        retries it.
    """
    if not may_propagate(ctx.sync_mode, snapshot.selection):
        return True
    if not snapshot.is_text:
        logger.debug("Not propagating %s content from %s", snapshot.kind.value, snapshot.selection.value)
        return True

    target = snapshot.selection.other
    try:
        ctx.io.write(target, snapshot.as_content())
    except SelectionError as e:
        logger.warning("Failed to write %s: %s", target.value, e)
        return False
    state.record(target, snapshot.fingerprint)
    logger.debug("Synced %d bytes %s -> %s", len(snapshot.data), snapshot.selection.value, target.value)
    return True


def build_entry(candidate: Candidate, plan: ActionPlan) -> Entry:
    """Combine a candidate with its action plan into a storable entry."""
    data = candidate.data
    if plan.transformed_text is not None:
        data = plan.transformed_text.encode("utf-8")
    return Entry(
        fingerprint=compute_fingerprint(data),
        kind=candidate.kind,
        data=data,
        source_app=candidate.source_app,
        source_title=candidate.source_title,
        ttl=plan.effective_ttl,
        mask_with=plan.effective_mask,
    )


def store_entry(ctx: WatchContext, candidate: Candidate, plan: ActionPlan) -> None:
    """Persist an entry, skipping it if the store is busy or it grew too large."""
    entry = build_entry(candidate, plan)
    if len(entry.data) > ctx.max_entry_size:
        logger.warning(
            "Skipping entry: transformed size %d KB exceeds limit %d KB",
            len(entry.data) // 1024,
            ctx.max_entry_size // 1024,
        )
        return
    try:
        entry_id = ctx.store.upsert(entry)
    except StorageBusyError as e:
        logger.warning("History store busy, entry skipped: %s", e)
        return
    logger.debug("Stored entry %d", entry_id)
