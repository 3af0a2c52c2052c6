#!/usr/bin/env python3
"""Tests for selection change classification and early size rejection."""
import logging

import pytest

from clio.change_detector import Changed, Empty, Unchanged, classify, exceeds_size_limit
from clio.hashing import compute_fingerprint
from clio.selection import ContentKind, Selection, SelectionContent
from clio.sync_state import SyncState


class TestClassify:
    """Tests for classify."""

    def test_none_is_empty(self, sync_state: SyncState) -> None:
        """Nothing readable is classified Empty."""
        assert isinstance(classify(Selection.CLIPBOARD, None, sync_state), Empty)

    def test_zero_length_is_empty(self, sync_state: SyncState) -> None:
        """Zero-length content is Empty even if the empty fingerprint is unknown."""
        content = SelectionContent(ContentKind.TEXT, b"")
        assert isinstance(classify(Selection.PRIMARY, content, sync_state), Empty)

    def test_new_content_is_changed(self, sync_state: SyncState) -> None:
        """Content with an unknown fingerprint is Changed with a full snapshot."""
        content = SelectionContent.text("hello")
        result = classify(Selection.CLIPBOARD, content, sync_state)

        assert isinstance(result, Changed)
        assert result.snapshot.selection is Selection.CLIPBOARD
        assert result.snapshot.kind is ContentKind.TEXT
        assert result.snapshot.data == b"hello"
        assert result.snapshot.fingerprint == compute_fingerprint(b"hello")

    def test_known_content_is_unchanged(self, sync_state: SyncState) -> None:
        """Content matching the recorded fingerprint is Unchanged."""
        sync_state.record(Selection.CLIPBOARD, compute_fingerprint(b"hello"))
        result = classify(Selection.CLIPBOARD, SelectionContent.text("hello"), sync_state)
        assert result == Unchanged(compute_fingerprint(b"hello"))

    def test_known_on_other_selection_is_changed(self, sync_state: SyncState) -> None:
        """A fingerprint only counts for the selection it was recorded for."""
        sync_state.record(Selection.PRIMARY, compute_fingerprint(b"hello"))
        result = classify(Selection.CLIPBOARD, SelectionContent.text("hello"), sync_state)
        assert isinstance(result, Changed)

    def test_classify_does_not_modify_state(self, sync_state: SyncState) -> None:
        """Classification leaves recording to the caller."""
        classify(Selection.CLIPBOARD, SelectionContent.text("hello"), sync_state)
        assert sync_state.last_fingerprints == {}


class TestExceedsSizeLimit:
    """Tests for exceeds_size_limit."""

    def _snapshot(self, size: int):
        content = SelectionContent(ContentKind.IMAGE, b"x" * size)
        result = classify(Selection.CLIPBOARD, content, SyncState())
        assert isinstance(result, Changed)
        return result.snapshot

    def test_within_limit(self) -> None:
        """Content at exactly the limit is accepted."""
        assert exceeds_size_limit(self._snapshot(1024), 1024) is False

    def test_over_limit_logs_reason(self, caplog: pytest.LogCaptureFixture) -> None:
        """Oversized content is rejected with a warning naming the sizes."""
        with caplog.at_level(logging.WARNING):
            assert exceeds_size_limit(self._snapshot(4096), 2048) is True
        assert "exceeds limit 2 KB" in caplog.text
