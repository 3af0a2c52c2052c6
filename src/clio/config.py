#!/usr/bin/env python3
"""Configuration file loading.

Reads the YAML configuration file and converts it into the typed Config
consumed by the watch pipeline. Rules are only checked for shape here;
regex compilation and per-rule validation happen in clio.rules so that one
bad rule never prevents the others from loading.
"""

from __future__ import annotations

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from clio.config_types import Config, RuleActions, RuleConditions, RuleConfig, SyncMode
from clio.errors import ConfigError

_DURATION_PART = re.compile(r"(\d+)\s*(ms|s|m|h|d|w)")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}

_TOP_LEVEL_KEYS = {
    "max_history",
    "watch_interval_ms",
    "db_path",
    "max_entry_size_kb",
    "max_age",
    "sync_mode",
    "rules",
}

DEFAULT_CONFIG_YAML = """\
# clio configuration

# Maximum number of entries kept in history.
max_history: 500

# Poll interval in milliseconds.
watch_interval_ms: 500

# Entries larger than this (in KiB) are never recorded.
max_entry_size_kb: 51200

# Drop entries older than this. Examples: 12h, 7d, 1h30m.
# max_age: 30d

# Selection sync: both, to-clipboard, to-primary, disabled.
sync_mode: both

# Action rules, evaluated in order against every new entry.
rules: []
#  - name: api keys expire quickly
#    conditions:
#      content_regex: "^sk-"
#    actions:
#      ttl: 60s
#      mask_with: "API key"
#  - name: strip trailing whitespace
#    conditions:
#      source_app: Alacritty
#    actions:
#      command: ["sed", "-e", "s/[[:space:]]*$//"]
#      command_timeout: 2s
"""


def _xdg_dir(env_var: str, fallback: str) -> Path:
    base = os.environ.get(env_var)
    if base:
        return Path(base) / "clio"
    return Path.home() / fallback / "clio"


def default_config_path() -> Path:
    """Return the default configuration file path."""
    return _xdg_dir("XDG_CONFIG_HOME", ".config") / "config.yaml"


def default_db_path() -> Path:
    """Return the default history database path."""
    return _xdg_dir("XDG_DATA_HOME", ".local/share") / "clio.db"


def parse_duration(value: Any, field_name: str) -> timedelta:
    """Parse a human-friendly duration.

    Accepts plain numbers (seconds) and strings made of number/unit pairs
    such as ``30s``, ``5m``, ``1h30m`` or ``7d``.

    Args:
        value: Raw value from the YAML document.
        field_name: Name used in error messages.

    Returns:
        The parsed duration.

    Raises:
        ConfigError: If the value is not a valid positive duration.
    """
    if isinstance(value, bool):
        raise ConfigError(f"{field_name}: expected a duration, got {value!r}")
    if isinstance(value, (int, float)):
        if value <= 0:
            raise ConfigError(f"{field_name}: duration must be positive")
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ConfigError(f"{field_name}: expected a duration, got {value!r}")

    text = value.strip().lower()
    total = timedelta()
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if text[pos:match.start()].strip():
            break
        total += int(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if not text or text[pos:].strip() or total <= timedelta():
        raise ConfigError(f"{field_name}: invalid duration {value!r}")
    return total


def _optional_str(raw: dict, key: str, where: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{where}.{key}: expected a string, got {value!r}")
    return value


def _positive_int(raw: dict, key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{key}: expected a positive integer, got {value!r}")
    return value


def _parse_command(value: Any, where: str) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(arg, str) for arg in value):
        raise ConfigError(f"{where}.command: expected a list of strings")
    return tuple(value)


def _parse_rule(raw: Any, index: int) -> RuleConfig:
    where = f"rules[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping")
    name = raw.get("name") or f"rule {index + 1}"

    conditions = raw.get("conditions") or {}
    actions = raw.get("actions") or {}
    if not isinstance(conditions, dict) or not isinstance(actions, dict):
        raise ConfigError(f"{where}: conditions and actions must be mappings")

    ttl = actions.get("ttl")
    timeout = actions.get("command_timeout")
    return RuleConfig(
        name=str(name),
        conditions=RuleConditions(
            source_app=_optional_str(conditions, "source_app", where),
            content_regex=_optional_str(conditions, "content_regex", where),
            source_title_regex=_optional_str(conditions, "source_title_regex", where),
        ),
        actions=RuleActions(
            ttl=parse_duration(ttl, f"{where}.ttl") if ttl is not None else None,
            mask_with=_optional_str(actions, "mask_with", where),
            command=_parse_command(actions.get("command"), where),
            command_timeout=(
                parse_duration(timeout, f"{where}.command_timeout")
                if timeout is not None
                else None
            ),
        ),
    )


def parse_config(raw: Any) -> Config:
    """Build a Config from a parsed YAML document.

    Args:
        raw: Result of yaml.safe_load (None for an empty file).

    Returns:
        The typed configuration; unset keys use their defaults.

    Raises:
        ConfigError: On unknown keys or malformed values.
    """
    if raw is None:
        return Config()
    if not isinstance(raw, dict):
        raise ConfigError("configuration must be a mapping")

    unknown = sorted(set(raw) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigError(f"unknown configuration keys: {', '.join(unknown)}")

    try:
        sync_mode = SyncMode(str(raw.get("sync_mode", "both")).replace("_", "-"))
    except ValueError:
        raise ConfigError(f"sync_mode: invalid value {raw['sync_mode']!r}") from None

    rules = raw.get("rules") or []
    if not isinstance(rules, list):
        raise ConfigError("rules: expected a list")

    db_path = raw.get("db_path")
    max_age = raw.get("max_age")
    defaults = Config()
    return Config(
        max_history=_positive_int(raw, "max_history", defaults.max_history),
        watch_interval_ms=_positive_int(raw, "watch_interval_ms", defaults.watch_interval_ms),
        db_path=Path(db_path).expanduser() if db_path else None,
        max_entry_size_kb=_positive_int(raw, "max_entry_size_kb", defaults.max_entry_size_kb),
        max_age=parse_duration(max_age, "max_age") if max_age is not None else None,
        sync_mode=sync_mode,
        rules=tuple(_parse_rule(rule, i) for i, rule in enumerate(rules)),
    )


def load_config(path: Path | None = None) -> Config:
    """Load configuration from a YAML file.

    Args:
        path: Configuration file path, or None for the default location.

    Returns:
        The loaded configuration, or defaults if the file does not exist.

    Raises:
        ConfigError: If the file cannot be read or is invalid.
    """
    path = path or default_config_path()
    if not path.exists():
        return Config()
    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"{path}: {e}") from e
    try:
        return parse_config(raw)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e


def format_duration(value: timedelta) -> str:
    """Format a duration in the notation parse_duration accepts."""
    total_ms = round(value / timedelta(milliseconds=1))
    if total_ms % 1000:
        return f"{total_ms}ms"
    seconds = total_ms // 1000
    parts = []
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        count, seconds = divmod(seconds, size)
        if count:
            parts.append(f"{count}{unit}")
    return "".join(parts) or "0s"


def _rule_to_dict(rule: RuleConfig) -> dict[str, Any]:
    conditions = {
        key: value
        for key, value in (
            ("source_app", rule.conditions.source_app),
            ("content_regex", rule.conditions.content_regex),
            ("source_title_regex", rule.conditions.source_title_regex),
        )
        if value is not None
    }
    actions: dict[str, Any] = {}
    if rule.actions.ttl is not None:
        actions["ttl"] = format_duration(rule.actions.ttl)
    if rule.actions.mask_with is not None:
        actions["mask_with"] = rule.actions.mask_with
    if rule.actions.command is not None:
        actions["command"] = list(rule.actions.command)
    if rule.actions.command_timeout is not None:
        actions["command_timeout"] = format_duration(rule.actions.command_timeout)
    return {"name": rule.name, "conditions": conditions, "actions": actions}


def dump_config(config: Config) -> str:
    """Render a Config as YAML that load_config reads back unchanged.

    Unset optional keys are left out.
    """
    data: dict[str, Any] = {
        "max_history": config.max_history,
        "watch_interval_ms": config.watch_interval_ms,
    }
    if config.db_path is not None:
        data["db_path"] = str(config.db_path)
    data["max_entry_size_kb"] = config.max_entry_size_kb
    if config.max_age is not None:
        data["max_age"] = format_duration(config.max_age)
    data["sync_mode"] = config.sync_mode.value
    data["rules"] = [_rule_to_dict(rule) for rule in config.rules]
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
