#!/usr/bin/env python3
"""
SHA-256 content fingerprints.

Fingerprints drive both change detection (comparing a selection's content
against the last value seen for it) and history deduplication (the
persistence layer upserts by fingerprint).
"""
import hashlib

__all__ = ["compute_fingerprint"]


def compute_fingerprint(data: bytes) -> str:
    """
    Compute the SHA-256 fingerprint of selection content.

    Args:
        data: Raw content bytes.

    Returns:
        Hexadecimal string representation of the SHA-256 digest.
    """
    return hashlib.sha256(data).hexdigest()
