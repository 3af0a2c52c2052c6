#!/usr/bin/env python3
"""Pytest fixtures for clio tests.

Provides in-memory fakes for selection I/O and history storage, a fresh
SyncState, a temporary SQLite store, and optional Xvfb display setup.
"""

import os
import shutil
import subprocess
import time
from collections.abc import Generator
from datetime import timedelta
from pathlib import Path

import pytest

from clio.errors import SelectionError
from clio.persistence import Entry
from clio.selection import Selection, SelectionContent
from clio.sqlite_store import SQLiteHistoryStore
from clio.sync_coordinator import WatchContext
from clio.sync_state import SyncState


class FakeSelectionIO:
    """In-memory SelectionIO recording every read and write."""

    def __init__(self) -> None:
        self.contents: dict[Selection, SelectionContent] = {}
        self.apps: dict[Selection, str] = {}
        self.titles: dict[Selection, str] = {}
        self.reads: list[Selection] = []
        self.writes: list[tuple[Selection, SelectionContent]] = []
        self.failing_reads: set[Selection] = set()
        self.read_errors: dict[Selection, SelectionError] = {}
        self.failing_writes: set[Selection] = set()
        self.waits: list[float] = []

    def set_text(self, selection: Selection, text: str) -> None:
        self.contents[selection] = SelectionContent.text(text)

    def text(self, selection: Selection) -> str | None:
        content = self.contents.get(selection)
        return content.data.decode("utf-8") if content else None

    def read(self, selection: Selection) -> SelectionContent | None:
        self.reads.append(selection)
        if selection in self.failing_reads:
            raise SelectionError(f"cannot read {selection.value}")
        if selection in self.read_errors:
            raise self.read_errors[selection]
        return self.contents.get(selection)

    def write(self, selection: Selection, content: SelectionContent) -> None:
        if selection in self.failing_writes:
            raise SelectionError(f"cannot write {selection.value}")
        self.writes.append((selection, content))
        self.contents[selection] = content

    def source_app(self, selection: Selection) -> str | None:
        return self.apps.get(selection)

    def source_title(self, selection: Selection) -> str | None:
        return self.titles.get(selection)

    def wait(self, timeout: float) -> None:
        self.waits.append(timeout)


class FakeStore:
    """In-memory HistoryStore keeping entries in insertion order."""

    def __init__(self) -> None:
        self.entries: list[Entry] = []
        self.prune_calls: list[timedelta | None] = []

    def upsert(self, entry: Entry) -> int:
        self.entries.append(entry)
        return len(self.entries)

    def prune_expired(self, max_age: timedelta | None) -> int:
        self.prune_calls.append(max_age)
        return 0

    def texts(self) -> list[str]:
        return [entry.data.decode("utf-8") for entry in self.entries]


@pytest.fixture
def sync_state() -> SyncState:
    """Create a fresh SyncState instance for testing."""
    return SyncState()


@pytest.fixture
def fake_io() -> FakeSelectionIO:
    return FakeSelectionIO()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def watch_context(fake_io: FakeSelectionIO, fake_store: FakeStore) -> WatchContext:
    """WatchContext over the in-memory fakes with no rules."""
    return WatchContext(io=fake_io, store=fake_store)


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Generator[SQLiteHistoryStore, None, None]:
    """Open a SQLite history store in a temporary directory."""
    store = SQLiteHistoryStore(tmp_path / "data" / "clio.db", max_history=5)
    store.open()
    yield store
    store.close()


@pytest.fixture
def xvfb_display() -> Generator[str | None, None, None]:
    """Start Xvfb virtual display if available, yield DISPLAY string.

    Returns None if Xvfb is not available. Tests using this fixture
    should skip if the value is None.
    """
    if shutil.which("Xvfb") is None:
        yield None
        return

    display = ":99"
    proc = subprocess.Popen(
        ["Xvfb", display, "-screen", "0", "1024x768x24"],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    try:
        time.sleep(0.5)
        if proc.poll() is not None:
            yield None
            return
        old_display = os.environ.get("DISPLAY")
        os.environ["DISPLAY"] = display
        yield display
        if old_display is not None:
            os.environ["DISPLAY"] = old_display
        elif "DISPLAY" in os.environ:
            del os.environ["DISPLAY"]
    finally:
        proc.terminate()
        proc.wait()
