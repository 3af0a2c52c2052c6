#!/usr/bin/env python3
"""Typed configuration consumed by the watch pipeline.

These dataclasses define the shape the core expects. Parsing and validation
of the YAML file lives in clio.config; rule compilation (regexes, condition
variants) lives in clio.rules.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

DEFAULT_COMMAND_TIMEOUT = timedelta(seconds=5)


class SyncMode(enum.Enum):
    """Direction in which selection changes are written back.

    BOTH propagates in either direction, TO_CLIPBOARD only PRIMARY to
    CLIPBOARD, TO_PRIMARY only CLIPBOARD to PRIMARY. DISABLED watches
    CLIPBOARD alone and never writes.
    """

    BOTH = "both"
    TO_CLIPBOARD = "to-clipboard"
    TO_PRIMARY = "to-primary"
    DISABLED = "disabled"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RuleConditions:
    """Raw rule conditions as written in the configuration file."""

    source_app: str | None = None
    content_regex: str | None = None
    source_title_regex: str | None = None


@dataclass(frozen=True)
class RuleActions:
    """Raw rule actions as written in the configuration file."""

    ttl: timedelta | None = None
    mask_with: str | None = None
    command: tuple[str, ...] | None = None
    command_timeout: timedelta | None = None


@dataclass(frozen=True)
class RuleConfig:
    """One entry of the ``rules`` list."""

    name: str
    conditions: RuleConditions = field(default_factory=RuleConditions)
    actions: RuleActions = field(default_factory=RuleActions)


@dataclass(frozen=True)
class Config:
    """Top-level clio configuration.

    Attributes:
        max_history: Maximum number of entries kept in history.
        watch_interval_ms: Poll interval in milliseconds.
        db_path: History database path, or None for the default location.
        max_entry_size_kb: Largest entry accepted, in KiB.
        max_age: Global expiry for entries, or None to keep them until
            retention pruning removes them.
        sync_mode: Selection write-back direction.
        rules: Action rules in evaluation order.
    """

    max_history: int = 500
    watch_interval_ms: int = 500
    db_path: Path | None = None
    max_entry_size_kb: int = 51200
    max_age: timedelta | None = None
    sync_mode: SyncMode = SyncMode.BOTH
    rules: tuple[RuleConfig, ...] = ()

    @property
    def max_entry_size(self) -> int:
        """Largest accepted entry in bytes."""
        return self.max_entry_size_kb * 1024

    @property
    def watch_interval(self) -> float:
        """Poll interval in seconds."""
        return self.watch_interval_ms / 1000
