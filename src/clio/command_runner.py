#!/usr/bin/env python3
"""Bounded external transformation commands.

A rule's ``command`` action pipes the working text into an external process
and uses its standard output as the new text. The process is the only part
of a poll cycle allowed to block beyond the poll interval, and only up to
its timeout. Output is read in chunks and never buffered past its cap: a
command that produces more than MAX_COMMAND_OUTPUT bytes is killed as soon
as the cap is crossed. On timeout or overflow the whole process group is
killed; the process is always reaped before run_command returns.
"""

from __future__ import annotations

import logging
import os
import select
import selectors
import signal
import subprocess
import time
from datetime import timedelta

from clio.config_types import DEFAULT_COMMAND_TIMEOUT
from clio.errors import CommandError

logger = logging.getLogger(__name__)

# Largest accepted command output (50 MB).
MAX_COMMAND_OUTPUT: int = 50 * 1024 * 1024

# Stderr beyond this many bytes is read and discarded.
MAX_STDERR: int = 1024 * 1024

# Stderr text quoted in error messages is truncated to this many characters.
STDERR_EXCERPT: int = 200

# Bytes read from an output pipe per wakeup.
READ_CHUNK: int = 64 * 1024

# Bytes written to stdin per wakeup; writes of at most PIPE_BUF never block.
WRITE_CHUNK: int = getattr(select, "PIPE_BUF", 512)


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill the command and anything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        proc.kill()


def _exchange(proc: subprocess.Popen, data: bytes, deadline: float) -> tuple[bytes, bytes]:
    """Feed data to stdin and collect stdout and stderr until both close.

    Returns:
        The captured stdout and the first MAX_STDERR bytes of stderr.

    Raises:
        subprocess.TimeoutExpired: If the deadline passes first.
        CommandError: As soon as stdout exceeds MAX_COMMAND_OUTPUT.
    """
    stdout = bytearray()
    stderr = bytearray()
    view = memoryview(data)
    offset = 0

    with selectors.DefaultSelector() as sel:
        if data:
            sel.register(proc.stdin, selectors.EVENT_WRITE)
        else:
            proc.stdin.close()
        sel.register(proc.stdout, selectors.EVENT_READ)
        sel.register(proc.stderr, selectors.EVENT_READ)

        while sel.get_map():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise subprocess.TimeoutExpired(proc.args, 0)
            for key, _ in sel.select(remaining):
                if key.fileobj is proc.stdin:
                    try:
                        offset += os.write(key.fd, view[offset:offset + WRITE_CHUNK])
                    except BrokenPipeError:
                        # The command stopped reading; its output still counts.
                        offset = len(data)
                    if offset >= len(data):
                        sel.unregister(proc.stdin)
                        proc.stdin.close()
                    continue

                chunk = os.read(key.fd, READ_CHUNK)
                if not chunk:
                    sel.unregister(key.fileobj)
                    key.fileobj.close()
                elif key.fileobj is proc.stdout:
                    stdout += chunk
                    if len(stdout) > MAX_COMMAND_OUTPUT:
                        raise CommandError(f"command output exceeds {MAX_COMMAND_OUTPUT} bytes")
                elif len(stderr) < MAX_STDERR:
                    stderr += chunk[:MAX_STDERR - len(stderr)]

    return bytes(stdout), bytes(stderr)


def run_command(
    argv: tuple[str, ...] | list[str],
    data: bytes,
    timeout: timedelta = DEFAULT_COMMAND_TIMEOUT,
) -> bytes:
    """Run a transformation command with data on its standard input.

    Args:
        argv: Program and arguments; not passed through a shell.
        data: Bytes written to the command's standard input.
        timeout: Maximum run time before the command is killed.

    Returns:
        The command's standard output.

    Raises:
        CommandError: If the command cannot be started, exits non-zero,
            exceeds its timeout, or produces more than MAX_COMMAND_OUTPUT
            bytes.
    """
    if not argv:
        raise CommandError("empty command")

    seconds = timeout.total_seconds()
    deadline = time.monotonic() + seconds
    try:
        proc = subprocess.Popen(
            list(argv),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except (OSError, ValueError) as e:
        raise CommandError(f"failed to spawn '{argv[0]}': {e}") from e

    with proc:
        try:
            stdout, stderr = _exchange(proc, data, deadline)
            proc.wait(timeout=max(deadline - time.monotonic(), 0))
        except subprocess.TimeoutExpired:
            raise CommandError(f"command timed out after {seconds:g}s") from None
        finally:
            if proc.returncode is None:
                _kill_group(proc)
                proc.wait()

    logger.debug("Command %s exited with %s", argv[0], proc.returncode)
    if proc.returncode != 0:
        excerpt = stderr.decode("utf-8", "replace").strip()[:STDERR_EXCERPT]
        raise CommandError(f"command exited with status {proc.returncode}: {excerpt}")
    return stdout
