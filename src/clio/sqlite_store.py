#!/usr/bin/env python3
"""SQLite history store.

Implements the HistoryStore contract: deduplicating upsert by content
fingerprint, per-entry TTL and global max_age pruning, and bounded
retention. Lock contention with other readers (the history browser) is
retried with tenacity before being reported as StorageBusyError; any other
database failure becomes StorageError and stops the watcher.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Any

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from clio.errors import StorageBusyError, StorageError
from clio.persistence import Entry
from clio.selection import ContentKind

logger = logging.getLogger(__name__)

# Retry parameters for lock contention, on top of SQLite's own busy timeout.
BUSY_RETRY_ATTEMPTS: int = 3
BUSY_WAIT_MIN: float = 0.05
BUSY_WAIT_MAX: float = 0.5
BUSY_TIMEOUT_MS: int = 5000

TIMESTAMP_SQL = "strftime('%Y-%m-%dT%H:%M:%f', 'now')"

SCHEMA = """
CREATE TABLE IF NOT EXISTS clipboard_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content_type TEXT NOT NULL CHECK(content_type IN ('text', 'image', 'unknown')),
    text_content TEXT,
    blob_content BLOB,
    content_hash TEXT NOT NULL,
    source_app TEXT,
    source_title TEXT,
    mask_text TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    expires_at TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_entries_hash ON clipboard_entries(content_hash);
CREATE INDEX IF NOT EXISTS idx_entries_created ON clipboard_entries(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_entries_expires
    ON clipboard_entries(expires_at) WHERE expires_at IS NOT NULL;
"""


def _is_busy(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


_retry_busy = retry(
    retry=retry_if_exception(_is_busy),
    stop=stop_after_attempt(BUSY_RETRY_ATTEMPTS),
    wait=wait_exponential(min=BUSY_WAIT_MIN, max=BUSY_WAIT_MAX),
    reraise=True,
)


def _translate(exc: sqlite3.Error) -> Exception:
    if _is_busy(exc):
        return StorageBusyError(str(exc))
    return StorageError(f"history database error: {exc}")


def _offset(duration: timedelta, sign: str) -> str:
    """Format a duration as an SQLite datetime modifier."""
    return f"{sign}{duration.total_seconds():.3f} seconds"


class SQLiteHistoryStore:
    """History store backed by a single SQLite database file."""

    def __init__(self, path: Path | str, max_history: int = 500) -> None:
        self.path = path
        self.max_history = max_history
        self._conn: sqlite3.Connection | None = None

    def open(self) -> SQLiteHistoryStore:
        """Open the database, creating its directory and schema if needed.

        Raises:
            StorageError: If the database cannot be opened or initialized.
        """
        try:
            if str(self.path) != ":memory:":
                directory = Path(self.path).parent
                directory.mkdir(parents=True, exist_ok=True)
                directory.chmod(0o700)
            conn = sqlite3.connect(str(self.path))
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
            conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"cannot open history database {self.path}: {e}") from e
        self._conn = conn
        logger.debug("Opened history database %s", self.path)
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> SQLiteHistoryStore:
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("history database is not open")
        return self._conn

    def upsert(self, entry: Entry) -> int:
        """Insert or refresh an entry by fingerprint, then prune to max_history.

        An existing entry with the same fingerprint has its timestamp,
        expiry and mask refreshed instead of being duplicated.

        Raises:
            StorageBusyError: If the database stayed locked.
            StorageError: On any other database failure.
        """
        try:
            return self._upsert(entry)
        except sqlite3.Error as e:
            raise _translate(e) from e

    @_retry_busy
    def _upsert(self, entry: Entry) -> int:
        expires_sql = "NULL"
        if entry.ttl is not None:
            expires_sql = f"strftime('%Y-%m-%dT%H:%M:%f', 'now', '{_offset(entry.ttl, '+')}')"

        with self.conn:
            existing = self.find_id(entry.fingerprint)
            if existing is not None:
                self.conn.execute(
                    f"UPDATE clipboard_entries SET created_at = {TIMESTAMP_SQL}, "
                    f"expires_at = {expires_sql}, mask_text = ? WHERE id = ?",
                    (entry.mask_with, existing),
                )
                return existing

            is_text = entry.kind is ContentKind.TEXT
            cursor = self.conn.execute(
                "INSERT INTO clipboard_entries (content_type, text_content, blob_content, "
                "content_hash, source_app, source_title, mask_text, expires_at) "
                f"VALUES (?, ?, ?, ?, ?, ?, ?, {expires_sql})",
                (
                    entry.kind.value,
                    entry.data.decode("utf-8", "replace") if is_text else None,
                    None if is_text else entry.data,
                    entry.fingerprint,
                    entry.source_app,
                    entry.source_title,
                    entry.mask_with,
                ),
            )
            entry_id = cursor.lastrowid
            self._prune_oldest()
        return entry_id

    def find_id(self, fingerprint: str) -> int | None:
        """Return the id of the entry with the given fingerprint, if stored."""
        row = self.conn.execute(
            "SELECT id FROM clipboard_entries WHERE content_hash = ?", (fingerprint,)
        ).fetchone()
        return row[0] if row else None

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM clipboard_entries").fetchone()[0]

    def _prune_oldest(self) -> int:
        cursor = self.conn.execute(
            "DELETE FROM clipboard_entries WHERE id IN ("
            "SELECT id FROM clipboard_entries ORDER BY created_at DESC, id DESC "
            "LIMIT -1 OFFSET ?)",
            (self.max_history,),
        )
        return cursor.rowcount

    def prune_expired(self, max_age: timedelta | None) -> int:
        """Delete expired entries.

        Entries with their own TTL expire at their expires_at; all others
        expire once older than max_age, if set.

        Raises:
            StorageBusyError: If the database stayed locked.
            StorageError: On any other database failure.
        """
        try:
            return self._prune_expired(max_age)
        except sqlite3.Error as e:
            raise _translate(e) from e

    @_retry_busy
    def _prune_expired(self, max_age: timedelta | None) -> int:
        with self.conn:
            removed = self.conn.execute(
                "DELETE FROM clipboard_entries "
                f"WHERE expires_at IS NOT NULL AND expires_at <= {TIMESTAMP_SQL}"
            ).rowcount
            if max_age is not None:
                removed += self.conn.execute(
                    "DELETE FROM clipboard_entries WHERE expires_at IS NULL "
                    "AND created_at < strftime('%Y-%m-%dT%H:%M:%f', 'now', ?)",
                    (_offset(max_age, "-"),),
                ).rowcount
        return removed
