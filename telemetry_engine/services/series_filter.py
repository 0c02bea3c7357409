"""
Series filter patterns: brace-aware splitting, validation and matching.

Filter patterns are globs over series paths without the system prefix,
e.g. ``source.solar/*`` or ``bidi.battery/soc.{avg,min,max}``:

- ``*`` matches any run of characters except ``/``
- ``{a,b}`` matches either alternative (alternatives may nest)

Several patterns can be passed as one comma-separated string; commas
inside braces belong to the pattern, not the list.

CHANGELOG:
- 2026-02-25: Validation reports unmatched closing braces immediately
- 2026-02-23: Initial creation

TODO:
- None
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache

MAX_PATTERN_LENGTH = 200
_ALLOWED_CHARS = re.compile(r"^[a-zA-Z0-9./*{},_-]*$")


def split_patterns(raw: str) -> list[str]:
    """Split a comma-separated pattern list, ignoring commas inside braces.

    Brace depth never drops below zero, so a stray ``}`` is kept as a
    character of the current pattern and left for validation to reject.

    Args:
        raw: Comma-separated patterns.

    Returns:
        list[str]: Trimmed, non-empty patterns in input order.

    Example:
        >>> split_patterns("a,b,c.{d,e},f")
        ['a', 'b', 'c.{d,e}', 'f']
    """
    patterns: list[str] = []
    current: list[str] = []
    depth = 0

    for char in raw:
        if char == "{":
            depth += 1
        elif char == "}":
            depth = max(depth - 1, 0)
        elif char == "," and depth == 0:
            piece = "".join(current).strip()
            if piece:
                patterns.append(piece)
            current = []
            continue
        current.append(char)

    piece = "".join(current).strip()
    if piece:
        patterns.append(piece)
    return patterns


@dataclass(frozen=True)
class PatternCheck:
    """Outcome of validating a single pattern."""

    valid: bool
    error: str | None = None


def validate_pattern(pattern: str) -> PatternCheck:
    """Check a single filter pattern.

    Rejects empty patterns, patterns longer than 200 characters,
    characters outside ``[a-zA-Z0-9./*{},_-]`` and unbalanced braces. A
    closing brace with no open brace is reported at its position.
    """
    if not pattern:
        return PatternCheck(False, "pattern is empty")
    if len(pattern) > MAX_PATTERN_LENGTH:
        return PatternCheck(
            False, f"pattern longer than {MAX_PATTERN_LENGTH} characters"
        )
    if not _ALLOWED_CHARS.match(pattern):
        bad = sorted({c for c in pattern if not _ALLOWED_CHARS.match(c)})
        return PatternCheck(False, f"invalid characters: {''.join(bad)!r}")

    depth = 0
    for position, char in enumerate(pattern):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth < 0:
                return PatternCheck(
                    False, f"unmatched closing brace at position {position}"
                )
    if depth != 0:
        return PatternCheck(False, "unclosed brace")
    return PatternCheck(True)


def _translate(pattern: str) -> str:
    """Translate a validated glob into a regular expression body."""
    out: list[str] = []
    depth = 0
    for char in pattern:
        if char == "*":
            out.append("[^/]*")
        elif char == "{":
            depth += 1
            out.append("(?:")
        elif char == "}":
            depth -= 1
            out.append(")")
        elif char == "," and depth > 0:
            out.append("|")
        else:
            out.append(re.escape(char))
    return "".join(out)


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a validated glob pattern into an anchored regex.

    Raises:
        ValueError: If the pattern does not validate.
    """
    check = validate_pattern(pattern)
    if not check.valid:
        raise ValueError(f"Invalid pattern {pattern!r}: {check.error}")
    return re.compile(rf"\A{_translate(pattern)}\Z")


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Return True when ``path`` matches at least one pattern.

    ``path`` is a series path without the system prefix, e.g.
    ``source.solar/power.avg``.
    """
    return any(compile_pattern(p).match(path) for p in patterns)
