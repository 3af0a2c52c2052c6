#!/usr/bin/env python3
"""
Unit tests for compute_fingerprint.

Tests that fingerprints are 64-character SHA-256 hex digests, stable for
equal content and distinct for different content.
"""
import hashlib

from clio.hashing import compute_fingerprint


def test_compute_fingerprint_produces_sha256_hex() -> None:
    """Test compute_fingerprint returns 64-character hex SHA-256 digest."""
    result = compute_fingerprint(b"test content")
    assert len(result) == 64
    assert all(c in "0123456789abcdef" for c in result)
    assert result == hashlib.sha256(b"test content").hexdigest()


def test_compute_fingerprint_consistent_output() -> None:
    """Test same input always produces same fingerprint."""
    data = b"Hello world!"
    assert compute_fingerprint(data) == compute_fingerprint(data)


def test_compute_fingerprint_different_for_different_input() -> None:
    """Test different inputs produce different fingerprints."""
    assert compute_fingerprint(b"content A") != compute_fingerprint(b"content B")


def test_compute_fingerprint_empty_content() -> None:
    """Test empty content has the well-known empty SHA-256 digest."""
    assert compute_fingerprint(b"") == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )
