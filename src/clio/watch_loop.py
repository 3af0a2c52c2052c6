#!/usr/bin/env python3
"""Fixed-interval watch loop.

Single-threaded polling: wait one interval, prune expired history when due,
run one cycle. SIGINT and SIGTERM only request a stop; the cycle in progress
always completes, so no write-back is ever abandoned halfway.
"""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from clio.errors import StorageBusyError
from clio.sync_coordinator import run_cycle
from clio.sync_state import SyncState

if TYPE_CHECKING:
    from clio.sync_coordinator import WatchContext

logger = logging.getLogger(__name__)

# Bounds for the pruning period, in seconds.
MIN_PRUNE_INTERVAL: float = 30.0
MAX_PRUNE_INTERVAL: float = 300.0


def prune_interval(watch_interval: float) -> float:
    """Return how often expired entries are pruned for a given poll interval."""
    return min(max(watch_interval * 120, MIN_PRUNE_INTERVAL), MAX_PRUNE_INTERVAL)


class WatchLoop:
    """Poll loop owning the SyncState.

    Attributes:
        ctx: Collaborators and settings shared by every cycle.
        interval: Seconds between cycles.
        max_age: Global entry expiry, or None.
        state: Per-selection fingerprints; only this loop touches it.
    """

    def __init__(
        self,
        ctx: WatchContext,
        interval: float,
        max_age: timedelta | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ctx = ctx
        self.interval = interval
        self.max_age = max_age
        self.state = SyncState()
        self._clock = clock
        self._stop_requested = False
        self._prune_enabled = max_age is not None or any(
            rule.actions.ttl is not None for rule in ctx.rules
        )
        self._prune_every = prune_interval(interval)
        self._last_prune = clock()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self, signum: int | None = None, frame: object = None) -> None:
        """Ask the loop to exit after the current cycle."""
        if signum is not None:
            logger.debug("Received signal %s, stopping after current cycle", signum)
        self._stop_requested = True

    def maybe_prune(self) -> None:
        """Prune expired entries when pruning is enabled and due."""
        if not self._prune_enabled:
            return
        now = self._clock()
        if now - self._last_prune < self._prune_every:
            return
        try:
            removed = self.ctx.store.prune_expired(self.max_age)
        except StorageBusyError as e:
            logger.warning("History store busy, pruning postponed: %s", e)
            return
        self._last_prune = now
        if removed:
            logger.debug("Pruned %d expired entries", removed)

    def run_once(self) -> None:
        """Run a single cycle including any due pruning."""
        self.maybe_prune()
        run_cycle(self.ctx, self.state)

    def run(self) -> None:
        """Poll until a stop is requested.

        Raises:
            StorageError: If the history store becomes unusable.
        """
        logger.info(
            "Watching selections (interval: %dms, sync: %s)",
            round(self.interval * 1000),
            self.ctx.sync_mode,
        )
        while not self._stop_requested:
            self.ctx.io.wait(self.interval)
            if self._stop_requested:
                break
            self.run_once()
        logger.info("Watch loop stopped")


@contextmanager
def stop_on_signals(loop: WatchLoop) -> Iterator[None]:
    """Route SIGINT and SIGTERM to loop.request_stop while active."""
    previous = {
        sig: signal.signal(sig, loop.request_stop)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
