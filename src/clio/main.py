"""CLI handling for clio.

This module provides the command-line interface for clio, handling argument
parsing via click, logging configuration, and dispatching to the watch loop
or the configuration helpers.

Usage:
    clio [--config PATH] [--verbose] [--log-file PATH] watch
    clio show
    clio [--config PATH] copy [--ttl DURATION] < FILE
    clio [--config PATH] config (path | validate | show | init [--force] [--output PATH])
"""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path

import click

from clio.config import (
    DEFAULT_CONFIG_YAML,
    default_config_path,
    default_db_path,
    dump_config,
    load_config,
    parse_duration,
)
from clio.config_types import Config
from clio.errors import ConfigError
from clio.main_logging import configure_logging

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: $XDG_CONFIG_HOME/clio/config.yaml)",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable DEBUG-level logging",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also append log records to this file",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool, log_file: Path | None) -> None:
    """Clipboard history with PRIMARY/CLIPBOARD sync and action rules."""
    configure_logging(verbose, log_file)
    ctx.obj = config_path or default_config_path()


@main.command()
@click.pass_obj
def watch(config_path: Path) -> None:
    """Watch the selections and record changes to history."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    _run_watch(config)


def _run_watch(config: Config) -> None:
    """Build the watch pipeline from configuration and run it until stopped.

    Exits with status 1 on a fatal error: no X11 display, or an unusable
    history database.

    Args:
        config: The loaded configuration.
    """
    from clio.errors import SelectionError, StorageError
    from clio.rules import compile_rules
    from clio.sqlite_store import SQLiteHistoryStore
    from clio.sync_coordinator import WatchContext
    from clio.watch_loop import WatchLoop, stop_on_signals
    from clio.x11_selection import X11SelectionIO

    rules, errors = compile_rules(config.rules)
    for error in errors:
        logger.warning("Ignoring invalid %s", error)
    if rules:
        logger.info("Loaded %d action rule(s)", len(rules))

    db_path = config.db_path or default_db_path()
    try:
        io = X11SelectionIO.connect(config.max_entry_size)
    except SelectionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        with SQLiteHistoryStore(db_path, config.max_history) as store:
            ctx = WatchContext(
                io=io,
                store=store,
                rules=rules,
                sync_mode=config.sync_mode,
                max_entry_size=config.max_entry_size,
            )
            loop = WatchLoop(ctx, config.watch_interval, config.max_age)
            with stop_on_signals(loop):
                loop.run()
    except StorageError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        io.close()


@main.command()
def show() -> None:
    """Print the current clipboard, or a summary if it holds an image."""
    from clio.errors import SelectionError
    from clio.selection import ContentKind, Selection, png_dimensions
    from clio.x11_selection import X11SelectionIO

    try:
        io = X11SelectionIO.connect(Config().max_entry_size)
        try:
            content = io.read(Selection.CLIPBOARD)
        finally:
            io.close()
    except SelectionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if content is None or not content.data:
        raise click.ClickException("clipboard is empty")
    if content.kind is ContentKind.TEXT:
        click.echo(content.data.decode("utf-8", "replace"), nl=False)
        return
    size_kb = len(content.data) // 1024
    dimensions = png_dimensions(content.data)
    if dimensions is None:
        click.echo(f"Image: PNG ({size_kb} KB)")
    else:
        click.echo(f"Image: {dimensions[0]}x{dimensions[1]} PNG ({size_kb} KB)")


@main.command()
@click.option("--ttl", default=None, help="Expire the entry after this long (e.g. 10m, 1h)")
@click.pass_obj
def copy(config_path: Path, ttl: str | None) -> None:
    """Copy standard input to the clipboard and record it in history.

    A background process keeps serving the clipboard until another
    application takes it over.
    """
    from clio.errors import StorageBusyError, StorageError
    from clio.hashing import compute_fingerprint
    from clio.persistence import Entry
    from clio.selection import ContentKind
    from clio.sqlite_store import SQLiteHistoryStore

    try:
        config = load_config(config_path)
        expiry = parse_duration(ttl, "--ttl") if ttl is not None else None
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    data = click.get_binary_stream("stdin").read()
    if not data:
        raise click.ClickException("stdin is empty")
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        raise click.ClickException("stdin is not valid UTF-8 text") from None
    if len(data) > config.max_entry_size:
        raise click.ClickException(
            f"input of {len(data) // 1024} KB exceeds limit {config.max_entry_size_kb} KB"
        )

    _spawn_clipboard_server(data)

    entry = Entry(fingerprint=compute_fingerprint(data), kind=ContentKind.TEXT, data=data, ttl=expiry)
    try:
        with SQLiteHistoryStore(config.db_path or default_db_path(), config.max_history) as store:
            store.upsert(entry)
    except (StorageError, StorageBusyError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _spawn_clipboard_server(data: bytes) -> None:
    """Start a detached `clio _serve-clipboard` process and hand it data."""
    try:
        proc = subprocess.Popen(
            [sys.executable, "-m", "clio", "_serve-clipboard"],
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise click.ClickException(f"failed to start clipboard server: {e}") from e
    try:
        with proc.stdin:
            proc.stdin.write(data)
    except BrokenPipeError:
        raise click.ClickException("clipboard server exited before reading its input") from None


@main.command("_serve-clipboard", hidden=True)
def serve_clipboard() -> None:
    """Take the clipboard with text from stdin and serve it until replaced."""
    from clio.errors import SelectionError
    from clio.selection import Selection, SelectionContent
    from clio.x11_selection import X11SelectionIO

    data = click.get_binary_stream("stdin").read()
    try:
        io = X11SelectionIO.connect(Config().max_entry_size)
        try:
            io.write(Selection.CLIPBOARD, SelectionContent.text(data.decode("utf-8")))
            io.serve(Selection.CLIPBOARD)
        finally:
            io.close()
    except SelectionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.group("config")
def config_group() -> None:
    """Inspect and validate the configuration file."""


@config_group.command("path")
@click.pass_obj
def config_path_cmd(config_path: Path) -> None:
    """Print the configuration file path."""
    click.echo(str(config_path))


@config_group.command("validate")
@click.pass_obj
def config_validate(config_path: Path) -> None:
    """Load the configuration and report every invalid rule."""
    from clio.rules import compile_rules

    if not config_path.exists():
        click.echo(f"No config file found at {config_path}. Using defaults.")
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    rules, errors = compile_rules(config.rules)
    if errors:
        click.echo("Invalid configuration:", err=True)
        for error in errors:
            click.echo(f"  {error}", err=True)
        sys.exit(1)
    click.echo(f"Configuration is valid ({len(rules)} rule(s)).")


@config_group.command("show")
@click.pass_obj
def config_show(config_path: Path) -> None:
    """Print the effective configuration as YAML."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(dump_config(config), nl=False)


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write to this path instead of the configuration file location",
)
@click.pass_obj
def config_init(config_path: Path, force: bool, output: Path | None) -> None:
    """Write a default configuration file."""
    config_path = output or config_path
    if config_path.exists() and not force:
        raise click.ClickException(
            f"Config file already exists at {config_path}. Use --force to overwrite."
        )
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_YAML, encoding="utf-8")
    click.echo(f"Config written to {config_path}")
