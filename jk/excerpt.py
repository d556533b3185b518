"""
Reduce console output to the part worth reading.

Three modes, applied per failure record:
  tail   last N lines
  grep   lines matching a case-insensitive regex
  smart  every line mentioning error/fail/exception/fatal, plus the last
         100 lines, de-duplicated and kept in log order
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from jk.models import FailureRecord

SMART_TAIL_LINES = 100
MAX_PATTERN_LENGTH = 200
MAX_ALTERNATIONS = 20

_SMART_RE = re.compile(r"error|fail|exception|fatal", re.IGNORECASE)
_NESTED_QUANTIFIER_RE = re.compile(r"(\(\??[^)]*[*+]\)?)[*+{]")


@dataclass(frozen=True)
class ExcerptMode:
    """How console output should be cut down.  ``name`` is one of
    full, tail, grep, smart."""

    name: str = "full"
    tail_lines: int | None = None
    pattern: str | None = None


def tail(text: str, lines: int) -> str:
    if lines <= 0:
        return ""
    return "\n".join(text.split("\n")[-lines:])


def grep(text: str, pattern: str) -> str:
    regex = re.compile(pattern, re.IGNORECASE)
    return "\n".join(line for line in text.split("\n") if regex.search(line))


def smart(text: str) -> str:
    lines = text.split("\n")
    tail_start = max(0, len(lines) - SMART_TAIL_LINES)
    keep = [
        line for i, line in enumerate(lines)
        if i >= tail_start or _SMART_RE.search(line)
    ]
    seen: set[str] = set()
    unique: list[str] = []
    for line in keep:
        if line in seen:
            continue
        seen.add(line)
        unique.append(line)
    return "\n".join(unique)


def validate_grep_pattern(pattern: str) -> str | None:
    """Return an error message for patterns likely to backtrack badly, else None."""
    if len(pattern) > MAX_PATTERN_LENGTH:
        return f"Pattern too long (max {MAX_PATTERN_LENGTH} characters)"
    if _NESTED_QUANTIFIER_RE.search(pattern):
        return "Pattern contains nested quantifiers which may cause performance issues"
    if pattern.count("|") > MAX_ALTERNATIONS:
        return f"Pattern contains too many alternations (max {MAX_ALTERNATIONS})"
    if pattern.count("(") != pattern.count(")"):
        return "Pattern has unbalanced parentheses"
    try:
        re.compile(pattern)
    except re.error as exc:
        return f"Invalid regex pattern: {exc}"
    return None


def excerpt(text: str, mode: ExcerptMode) -> str:
    if mode.name == "smart":
        return smart(text)
    if mode.name == "grep" and mode.pattern:
        return grep(text, mode.pattern)
    if mode.name == "tail" and mode.tail_lines is not None:
        return tail(text, mode.tail_lines)
    return text


def apply_excerpt(records: list[FailureRecord], mode: ExcerptMode) -> list[FailureRecord]:
    """Return new records whose console output has been cut down by ``mode``."""
    return [
        r.replace_console(excerpt(r.console_output, mode)) if r.console_output else r
        for r in records
    ]
