#!/usr/bin/env python3
"""Action rule compilation and evaluation.

A rule is a named set of conditions plus a set of actions. Every condition
of a rule must hold for the rule to fire. Matching rules are folded in
configuration order into a single ActionPlan:

- ``ttl`` and ``mask_with``: the last matching rule that sets them wins.
- ``command``: chained; each command receives the previous step's output.

A failed command leaves the text as it was before that step and the chain
continues with the next matching rule.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Union

from clio.command_runner import run_command
from clio.config_types import DEFAULT_COMMAND_TIMEOUT, RuleConfig
from clio.errors import CommandError, RuleError
from clio.selection import ContentKind

logger = logging.getLogger(__name__)

CommandRunner = Callable[[tuple[str, ...], bytes, timedelta], bytes]


@dataclass(frozen=True)
class SourceApp:
    """Matches when the source application equals ``name`` exactly."""

    name: str


@dataclass(frozen=True)
class ContentRegex:
    """Matches text content against a regular expression (search semantics)."""

    pattern: re.Pattern


@dataclass(frozen=True)
class SourceTitleRegex:
    """Matches the source window title against a regular expression."""

    pattern: re.Pattern


Condition = Union[SourceApp, ContentRegex, SourceTitleRegex]


@dataclass(frozen=True)
class ActionSet:
    """Actions applied when a rule matches."""

    ttl: timedelta | None = None
    mask_with: str | None = None
    command: tuple[str, ...] | None = None
    command_timeout: timedelta = DEFAULT_COMMAND_TIMEOUT


@dataclass(frozen=True)
class Rule:
    """Compiled rule used by the watch pipeline."""

    name: str
    conditions: tuple[Condition, ...]
    actions: ActionSet


@dataclass(frozen=True)
class Candidate:
    """A changed entry about to be recorded.

    Attributes:
        kind: Content type.
        data: Raw content bytes.
        source_app: Best-effort source application (WM_CLASS), if known.
        source_title: Best-effort source window title, if known.
    """

    kind: ContentKind
    data: bytes
    source_app: str | None = None
    source_title: str | None = None

    @property
    def text(self) -> str | None:
        if self.kind is not ContentKind.TEXT:
            return None
        return self.data.decode("utf-8", "replace")


@dataclass
class ActionPlan:
    """Aggregated result of evaluating all rules against a candidate.

    Attributes:
        effective_ttl: Expiry for the entry, or None for the global default.
        effective_mask: Display-only replacement text, or None.
        transformed_text: Text produced by the command chain, or None when
            no command changed the text.
        matched: Names of the rules that fired, in evaluation order.
    """

    effective_ttl: timedelta | None = None
    effective_mask: str | None = None
    transformed_text: str | None = None
    matched: list[str] = field(default_factory=list)


def _compile_regex(rule_name: str, key: str, pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RuleError(rule_name, f"invalid {key} {pattern!r}: {e}") from e


def compile_rule(config: RuleConfig) -> Rule:
    """Validate a configured rule and compile its conditions.

    Args:
        config: The rule as read from the configuration file.

    Returns:
        The compiled rule.

    Raises:
        RuleError: If the rule has no conditions, an invalid regex, or an
            empty command.
    """
    raw = config.conditions
    conditions: list[Condition] = []
    if raw.source_app is not None:
        conditions.append(SourceApp(raw.source_app))
    if raw.content_regex is not None:
        conditions.append(
            ContentRegex(_compile_regex(config.name, "content_regex", raw.content_regex))
        )
    if raw.source_title_regex is not None:
        conditions.append(
            SourceTitleRegex(
                _compile_regex(config.name, "source_title_regex", raw.source_title_regex)
            )
        )
    if not conditions:
        raise RuleError(config.name, "at least one condition is required")

    actions = config.actions
    if actions.command is not None and not actions.command:
        raise RuleError(config.name, "command must not be empty")

    return Rule(
        name=config.name,
        conditions=tuple(conditions),
        actions=ActionSet(
            ttl=actions.ttl,
            mask_with=actions.mask_with,
            command=actions.command,
            command_timeout=actions.command_timeout or DEFAULT_COMMAND_TIMEOUT,
        ),
    )


def compile_rules(configs: Iterable[RuleConfig]) -> tuple[list[Rule], list[RuleError]]:
    """Compile every configured rule, collecting per-rule errors.

    A rejected rule does not affect the others.

    Returns:
        Tuple of (valid rules in configuration order, validation errors).
    """
    rules: list[Rule] = []
    errors: list[RuleError] = []
    for config in configs:
        try:
            rules.append(compile_rule(config))
        except RuleError as e:
            errors.append(e)
    return rules, errors


def condition_matches(condition: Condition, candidate: Candidate, text: str | None) -> bool:
    """Evaluate one condition against a candidate.

    Args:
        condition: The condition to check.
        candidate: The entry being evaluated.
        text: Current working text, or None for non-text content.

    Returns:
        True if the condition holds.
    """
    if isinstance(condition, SourceApp):
        return candidate.source_app is not None and candidate.source_app == condition.name
    if isinstance(condition, ContentRegex):
        return text is not None and condition.pattern.search(text) is not None
    if isinstance(condition, SourceTitleRegex):
        if text is None or candidate.source_title is None:
            return False
        return condition.pattern.search(candidate.source_title) is not None
    raise TypeError(f"unknown condition type: {type(condition).__name__}")


def rule_matches(rule: Rule, candidate: Candidate, text: str | None) -> bool:
    return all(condition_matches(c, candidate, text) for c in rule.conditions)


def _apply_command(
    rule: Rule, command: tuple[str, ...], text: str, runner: CommandRunner
) -> str:
    """Run a rule's command on text, returning the original text on failure."""
    try:
        output = runner(command, text.encode("utf-8"), rule.actions.command_timeout)
        return output.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Rule '%s': command output is not valid UTF-8; keeping original text", rule.name)
    except CommandError as e:
        logger.warning("Rule '%s': %s; keeping original text", rule.name, e)
    return text


def evaluate(
    candidate: Candidate,
    rules: Iterable[Rule],
    runner: CommandRunner = run_command,
) -> ActionPlan:
    """Evaluate rules against a candidate and fold their actions.

    Content conditions of later rules see the text produced by earlier
    commands in the chain.

    Args:
        candidate: The entry being recorded.
        rules: Compiled rules in configuration order.
        runner: Executes command actions; run_command by default.

    Returns:
        The aggregated ActionPlan.
    """
    plan = ActionPlan()
    original = candidate.text
    text = original

    for rule in rules:
        if not rule_matches(rule, candidate, text):
            continue
        plan.matched.append(rule.name)
        actions = rule.actions
        if actions.ttl is not None:
            plan.effective_ttl = actions.ttl
        if actions.mask_with is not None:
            plan.effective_mask = actions.mask_with
        if actions.command is not None:
            if text is None:
                logger.debug("Rule '%s': skipping command for non-text content", rule.name)
            else:
                text = _apply_command(rule, actions.command, text, runner)

    if text is not None and text != original:
        plan.transformed_text = text
    if plan.matched:
        logger.debug("Matched rules: %s", ", ".join(plan.matched))
    return plan
