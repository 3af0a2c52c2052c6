#!/usr/bin/env python3
"""Tests for the SQLite history store."""
import sqlite3
import stat
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from clio.errors import StorageBusyError, StorageError
from clio.hashing import compute_fingerprint
from clio.persistence import Entry
from clio.selection import ContentKind
from clio.sqlite_store import SQLiteHistoryStore, _is_busy, _translate


def text_entry(text: str, **kwargs) -> Entry:
    data = text.encode("utf-8")
    return Entry(
        fingerprint=compute_fingerprint(data),
        kind=ContentKind.TEXT,
        data=data,
        **kwargs,
    )


def backdate(store: SQLiteHistoryStore, entry_id: int, column: str, modifier: str) -> None:
    with store.conn:
        store.conn.execute(
            f"UPDATE clipboard_entries SET {column} = "
            "strftime('%Y-%m-%dT%H:%M:%f', 'now', ?) WHERE id = ?",
            (modifier, entry_id),
        )


def texts(store: SQLiteHistoryStore) -> list[str]:
    rows = store.conn.execute(
        "SELECT text_content FROM clipboard_entries ORDER BY id"
    ).fetchall()
    return [row[0] for row in rows]


class TestOpen:
    """Tests for opening the database."""

    def test_creates_private_directory(self, tmp_path: Path) -> None:
        """The parent directory is created with owner-only permissions."""
        path = tmp_path / "nested" / "dir" / "clio.db"
        with SQLiteHistoryStore(path) as store:
            assert store.count() == 0
        assert path.exists()
        assert stat.S_IMODE(path.parent.stat().st_mode) == 0o700

    def test_in_memory(self) -> None:
        """':memory:' opens without touching the filesystem."""
        with SQLiteHistoryStore(":memory:") as store:
            assert store.count() == 0

    def test_reopen_keeps_entries(self, tmp_path: Path) -> None:
        """Entries survive closing and reopening the database."""
        path = tmp_path / "clio.db"
        with SQLiteHistoryStore(path) as store:
            store.upsert(text_entry("persisted"))
        with SQLiteHistoryStore(path) as store:
            assert texts(store) == ["persisted"]

    def test_unopenable_path(self, tmp_path: Path) -> None:
        """A path that cannot be a database raises StorageError."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError, match="cannot open history database"):
            SQLiteHistoryStore(blocker / "clio.db").open()

    def test_corrupt_database(self, tmp_path: Path) -> None:
        """A file that is not SQLite raises StorageError."""
        path = tmp_path / "clio.db"
        path.write_bytes(b"this is not a sqlite database" * 100)
        with pytest.raises(StorageError):
            SQLiteHistoryStore(path).open()

    def test_closed_store_raises(self) -> None:
        """Using a store that is not open raises StorageError."""
        store = SQLiteHistoryStore(":memory:")
        with pytest.raises(StorageError, match="not open"):
            store.upsert(text_entry("x"))


class TestUpsert:
    """Tests for inserting and deduplicating entries."""

    def test_insert_text(self, sqlite_store: SQLiteHistoryStore) -> None:
        entry = text_entry("hello", source_app="Firefox", source_title="Mozilla Firefox")
        entry_id = sqlite_store.upsert(entry)

        row = sqlite_store.conn.execute(
            "SELECT content_type, text_content, blob_content, content_hash, "
            "source_app, source_title, expires_at FROM clipboard_entries WHERE id = ?",
            (entry_id,),
        ).fetchone()
        assert row == ("text", "hello", None, entry.fingerprint, "Firefox", "Mozilla Firefox", None)

    def test_insert_image_as_blob(self, sqlite_store: SQLiteHistoryStore) -> None:
        """Non-text content is stored in blob_content."""
        png = b"\x89PNG\r\n\x1a\ndata"
        entry = Entry(compute_fingerprint(png), ContentKind.IMAGE, png)
        entry_id = sqlite_store.upsert(entry)
        row = sqlite_store.conn.execute(
            "SELECT content_type, text_content, blob_content FROM clipboard_entries WHERE id = ?",
            (entry_id,),
        ).fetchone()
        assert row == ("image", None, png)

    def test_duplicate_fingerprint_deduplicated(self, sqlite_store: SQLiteHistoryStore) -> None:
        """Storing the same content twice keeps one row and refreshes it."""
        first = sqlite_store.upsert(text_entry("hello"))
        backdate(sqlite_store, first, "created_at", "-1 hours")
        before = sqlite_store.conn.execute(
            "SELECT created_at FROM clipboard_entries WHERE id = ?", (first,)
        ).fetchone()[0]

        second = sqlite_store.upsert(text_entry("hello", mask_with="greeting"))

        assert second == first
        assert sqlite_store.count() == 1
        created_at, mask = sqlite_store.conn.execute(
            "SELECT created_at, mask_text FROM clipboard_entries WHERE id = ?", (first,)
        ).fetchone()
        assert created_at > before
        assert mask == "greeting"

    def test_ttl_sets_expiry(self, sqlite_store: SQLiteHistoryStore) -> None:
        """An entry with a ttl gets an expires_at in the future."""
        entry_id = sqlite_store.upsert(text_entry("secret", ttl=timedelta(seconds=60)))
        expires_at, created_at = sqlite_store.conn.execute(
            "SELECT expires_at, created_at FROM clipboard_entries WHERE id = ?", (entry_id,)
        ).fetchone()
        assert expires_at is not None
        assert expires_at > created_at

    def test_retention_prunes_oldest(self, sqlite_store: SQLiteHistoryStore) -> None:
        """Only the newest max_history entries are kept."""
        for i in range(7):
            sqlite_store.upsert(text_entry(f"entry {i}"))
        assert sqlite_store.count() == 5
        assert texts(sqlite_store) == [f"entry {i}" for i in range(2, 7)]

    def test_refreshed_entry_survives_retention(self, sqlite_store: SQLiteHistoryStore) -> None:
        """Re-copying an old entry moves it to the front of the retention order."""
        ids = [sqlite_store.upsert(text_entry(f"entry {i}")) for i in range(5)]
        for offset, entry_id in enumerate(ids):
            backdate(sqlite_store, entry_id, "created_at", f"-{10 - offset} minutes")

        sqlite_store.upsert(text_entry("entry 0"))
        sqlite_store.upsert(text_entry("new"))

        assert sqlite_store.count() == 5
        assert "entry 0" in texts(sqlite_store)
        assert "entry 1" not in texts(sqlite_store)


class TestPruneExpired:
    """Tests for TTL and max_age expiry."""

    def test_expired_ttl_removed(self, sqlite_store: SQLiteHistoryStore) -> None:
        expired = sqlite_store.upsert(text_entry("expired", ttl=timedelta(seconds=60)))
        sqlite_store.upsert(text_entry("alive", ttl=timedelta(seconds=60)))
        backdate(sqlite_store, expired, "expires_at", "-1 seconds")

        assert sqlite_store.prune_expired(None) == 1
        assert texts(sqlite_store) == ["alive"]

    def test_no_max_age_keeps_untimed_entries(self, sqlite_store: SQLiteHistoryStore) -> None:
        """Without max_age, entries without a ttl never expire."""
        entry_id = sqlite_store.upsert(text_entry("old"))
        backdate(sqlite_store, entry_id, "created_at", "-365 days")
        assert sqlite_store.prune_expired(None) == 0
        assert sqlite_store.count() == 1

    def test_max_age_removes_old_entries(self, sqlite_store: SQLiteHistoryStore) -> None:
        old = sqlite_store.upsert(text_entry("old"))
        sqlite_store.upsert(text_entry("recent"))
        backdate(sqlite_store, old, "created_at", "-2 hours")

        assert sqlite_store.prune_expired(timedelta(hours=1)) == 1
        assert texts(sqlite_store) == ["recent"]

    def test_ttl_overrides_max_age(self, sqlite_store: SQLiteHistoryStore) -> None:
        """An entry with its own ttl is not removed by max_age."""
        entry_id = sqlite_store.upsert(text_entry("pinned", ttl=timedelta(days=30)))
        backdate(sqlite_store, entry_id, "created_at", "-2 hours")

        assert sqlite_store.prune_expired(timedelta(hours=1)) == 0
        assert texts(sqlite_store) == ["pinned"]


class TestErrorTranslation:
    """Tests for mapping sqlite3 errors onto clio errors."""

    @pytest.mark.parametrize("message", ["database is locked", "database table is locked", "SQLITE_BUSY"])
    def test_busy_errors(self, message: str) -> None:
        exc = sqlite3.OperationalError(message)
        assert _is_busy(exc)
        assert isinstance(_translate(exc), StorageBusyError)

    def test_other_errors_are_fatal(self) -> None:
        exc = sqlite3.DatabaseError("database disk image is malformed")
        assert not _is_busy(exc)
        assert isinstance(_translate(exc), StorageError)

    def test_locked_database_retried_then_busy(self) -> None:
        """A persistently locked database is retried and reported as busy."""
        store = SQLiteHistoryStore(":memory:")
        conn = MagicMock()
        conn.__enter__.return_value = conn
        conn.__exit__.return_value = False
        conn.execute.side_effect = sqlite3.OperationalError("database is locked")
        store._conn = conn

        with pytest.raises(StorageBusyError):
            store.prune_expired(None)
        assert conn.execute.call_count == 3

    def test_malformed_database_not_retried(self) -> None:
        store = SQLiteHistoryStore(":memory:")
        conn = MagicMock()
        conn.__enter__.return_value = conn
        conn.__exit__.return_value = False
        conn.execute.side_effect = sqlite3.DatabaseError("database disk image is malformed")
        store._conn = conn

        with pytest.raises(StorageError):
            store.upsert(text_entry("x"))
        assert conn.execute.call_count == 1
