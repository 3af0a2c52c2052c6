"""Logging configuration for the clio CLI."""
from __future__ import annotations

import logging
from pathlib import Path

# Long-running watchers usually log to a file; timestamps make it readable.
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool, log_file: Path | None = None) -> None:
    """Configure the operator-facing log stream.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING level.
        log_file: Also append log records to this file when given.

    Warnings (skipped entries, failed commands, rejected rules) and errors
    always reach stderr regardless of verbosity.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        handlers=handlers,
    )
