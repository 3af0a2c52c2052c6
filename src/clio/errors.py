#!/usr/bin/env python3
"""Exception types shared across clio.

Transient errors (selection I/O, busy storage) are logged by the watch loop
and never stop it. StorageError is the only error class that terminates the
loop.
"""


class SelectionError(Exception):
    """Raised when an X11 selection cannot be read or written."""


class ContentTooLargeError(SelectionError):
    """Raised when selection content exceeds the size limit before it is fully read.

    Attributes:
        size: Announced or received size in bytes.
        limit: The configured maximum.
        identity: Identifies the oversized content for as long as its owner
            keeps serving it, so that it is reported once.
    """

    def __init__(self, size: int, limit: int, identity: str = "") -> None:
        self.size = size
        self.limit = limit
        self.identity = identity
        super().__init__(f"content of {size} bytes exceeds limit {limit}")


class CommandError(Exception):
    """Raised when a transformation command fails, times out, or cannot start."""


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or parsed."""


class RuleError(ConfigError):
    """Raised when a single rule fails validation.

    Attributes:
        rule_name: Name of the rejected rule.
    """

    def __init__(self, rule_name: str, message: str) -> None:
        self.rule_name = rule_name
        super().__init__(f"rule '{rule_name}': {message}")


class StorageError(Exception):
    """Raised when the history database is unusable (corrupt, full, unreadable)."""


class StorageBusyError(Exception):
    """Raised when the history database stayed locked after all retries."""
