#!/usr/bin/env python3
"""Tests for the watch loop, pruning schedule, and signal handling."""
import logging
import os
import signal
from datetime import timedelta

import pytest

from conftest import FakeSelectionIO, FakeStore
from clio.config_types import RuleActions, RuleConditions, RuleConfig
from clio.errors import StorageBusyError
from clio.rules import compile_rule
from clio.selection import Selection
from clio.sync_coordinator import WatchContext
from clio.watch_loop import (
    MAX_PRUNE_INTERVAL,
    MIN_PRUNE_INTERVAL,
    WatchLoop,
    prune_interval,
    stop_on_signals,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestPruneInterval:
    """Tests for the pruning period derived from the poll interval."""

    @pytest.mark.parametrize(
        "watch_interval, expected",
        [
            (0.1, MIN_PRUNE_INTERVAL),
            (0.5, 60.0),
            (1.0, 120.0),
            (10.0, MAX_PRUNE_INTERVAL),
        ],
    )
    def test_clamped(self, watch_interval: float, expected: float) -> None:
        assert prune_interval(watch_interval) == pytest.approx(expected)


class TestMaybePrune:
    """Tests for when expired entries are pruned."""

    def test_disabled_without_max_age_or_ttl_rules(self, watch_context: WatchContext, fake_store: FakeStore) -> None:
        """Nothing expires, so pruning never runs."""
        clock = FakeClock()
        loop = WatchLoop(watch_context, 0.5, clock=clock)
        clock.now += 3600
        loop.maybe_prune()
        assert fake_store.prune_calls == []

    def test_runs_when_due(self, watch_context: WatchContext, fake_store: FakeStore) -> None:
        clock = FakeClock()
        loop = WatchLoop(watch_context, 0.5, max_age=timedelta(days=1), clock=clock)

        clock.now += 59
        loop.maybe_prune()
        assert fake_store.prune_calls == []

        clock.now += 1
        loop.maybe_prune()
        assert fake_store.prune_calls == [timedelta(days=1)]

        clock.now += 30
        loop.maybe_prune()
        assert len(fake_store.prune_calls) == 1

    def test_enabled_by_ttl_rule(self, fake_io: FakeSelectionIO, fake_store: FakeStore) -> None:
        """A rule with a ttl enables pruning even without max_age."""
        rule = compile_rule(
            RuleConfig("ttl", RuleConditions(content_regex=".*"), RuleActions(ttl=timedelta(seconds=60)))
        )
        ctx = WatchContext(io=fake_io, store=fake_store, rules=[rule])
        clock = FakeClock()
        loop = WatchLoop(ctx, 0.5, clock=clock)
        clock.now += MAX_PRUNE_INTERVAL
        loop.maybe_prune()
        assert fake_store.prune_calls == [None]

    def test_busy_store_postpones(
        self, fake_io: FakeSelectionIO, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A busy store is retried on the next cycle instead of waiting a full period."""
        class BusyOnce(FakeStore):
            busy = True

            def prune_expired(self, max_age):
                if self.busy:
                    self.busy = False
                    raise StorageBusyError("database is locked")
                return super().prune_expired(max_age)

        store = BusyOnce()
        clock = FakeClock()
        loop = WatchLoop(WatchContext(io=fake_io, store=store), 0.5, timedelta(hours=1), clock)
        clock.now += 60
        with caplog.at_level(logging.WARNING):
            loop.maybe_prune()
        assert "pruning postponed" in caplog.text

        loop.maybe_prune()
        assert store.prune_calls == [timedelta(hours=1)]


class TestRun:
    """Tests for the poll loop itself."""

    def test_run_once_processes_cycle(
        self, watch_context: WatchContext, fake_io: FakeSelectionIO, fake_store: FakeStore
    ) -> None:
        fake_io.set_text(Selection.CLIPBOARD, "hello")
        loop = WatchLoop(watch_context, 0.5)
        loop.run_once()
        assert fake_store.texts() == ["hello"]
        assert Selection.CLIPBOARD in loop.state.last_fingerprints

    def test_stop_during_wait_skips_cycle(self, fake_store: FakeStore) -> None:
        """A stop requested while waiting exits without another cycle."""
        class StoppingIO(FakeSelectionIO):
            def wait(self, timeout: float) -> None:
                super().wait(timeout)
                if len(self.waits) == 2:
                    loop.request_stop(signal.SIGTERM)

        io = StoppingIO()
        io.set_text(Selection.CLIPBOARD, "hello")
        loop = WatchLoop(WatchContext(io=io, store=fake_store), 0.25)

        loop.run()

        assert io.waits == [0.25, 0.25]
        assert io.reads == [Selection.PRIMARY, Selection.CLIPBOARD]
        assert loop.stop_requested

    def test_stop_before_run(self, watch_context: WatchContext, fake_io: FakeSelectionIO) -> None:
        loop = WatchLoop(watch_context, 0.5)
        loop.request_stop()
        loop.run()
        assert fake_io.waits == []
        assert fake_io.reads == []


class TestStopOnSignals:
    """Tests for SIGINT/SIGTERM routing."""

    def test_sigterm_requests_stop(self, watch_context: WatchContext) -> None:
        loop = WatchLoop(watch_context, 0.5)
        with stop_on_signals(loop):
            os.kill(os.getpid(), signal.SIGTERM)
        assert loop.stop_requested

    def test_handlers_restored(self, watch_context: WatchContext) -> None:
        previous_int = signal.getsignal(signal.SIGINT)
        previous_term = signal.getsignal(signal.SIGTERM)
        loop = WatchLoop(watch_context, 0.5)
        with stop_on_signals(loop):
            assert signal.getsignal(signal.SIGINT) == loop.request_stop
            assert signal.getsignal(signal.SIGTERM) == loop.request_stop
        assert signal.getsignal(signal.SIGINT) is previous_int
        assert signal.getsignal(signal.SIGTERM) is previous_term
