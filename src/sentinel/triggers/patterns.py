"""Pattern compiler — regex and tolerant plain-text trigger patterns."""

from __future__ import annotations

import re

from sentinel.db.models import MATCH_PLAIN_TEXT
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.triggers.patterns")

_WHITESPACE_RE = re.compile(r"\s+")

# Stored in the cache for patterns that failed to compile
INVALID = None


def escape_plain_segment(text: str) -> str:
    """Escape a literal fragment, turning whitespace runs into ``\\s*``.

    Interactive programs pad columns with a variable number of spaces, so a
    single space in the pattern matches any amount of whitespace, including
    none.
    """
    return r"\s*".join(re.escape(part) for part in _WHITESPACE_RE.split(text))


def build_plain_text_source(pattern: str) -> str:
    """Build a regex source from a tolerant plain-text pattern.

    Everything is literal except ``(a|b)`` groups, which become the
    non-capturing alternation ``(?:a|b)`` with each alternative still
    escaped. Parentheses without ``|`` are literal, and an unmatched ``(``
    makes the rest of the pattern literal.

    Args:
        pattern: User-written plain-text pattern.

    Returns:
        Regex source suitable for ``re.compile``.
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern[i] == "(":
            close = pattern.find(")", i + 1)
            if close == -1:
                parts.append(escape_plain_segment(pattern[i:]))
                break
            inner = pattern[i + 1 : close]
            if "|" in inner:
                alternatives = "|".join(
                    escape_plain_segment(alt) for alt in inner.split("|")
                )
                parts.append(f"(?:{alternatives})")
            else:
                parts.append(escape_plain_segment(pattern[i : close + 1]))
            i = close + 1
        else:
            next_paren = pattern.find("(", i)
            end = len(pattern) if next_paren == -1 else next_paren
            parts.append(escape_plain_segment(pattern[i:end]))
            i = end
    return "".join(parts)


class PatternCompiler:
    """Compile trigger patterns once and remember the result.

    Results are cached per ``(pattern, mode)``. A pattern that fails to
    compile is cached as ``INVALID`` so the rule is skipped on every later
    chunk without parsing it again.
    """

    def __init__(self) -> None:
        self._cache: dict[tuple[str, str], re.Pattern | None] = {}

    def compile(self, pattern: str, mode: str) -> re.Pattern | None:
        """Return the compiled matcher for a pattern, or ``None`` if invalid.

        Args:
            pattern: Pattern text from the rule.
            mode: ``'regex'`` or ``'plain_text'``.

        Returns:
            A compiled ``re.Pattern`` using DOTALL + MULTILINE, or ``None``.
        """
        key = (pattern, mode)
        if key in self._cache:
            return self._cache[key]

        source = build_plain_text_source(pattern) if mode == MATCH_PLAIN_TEXT else pattern
        try:
            compiled = re.compile(source, re.DOTALL | re.MULTILINE)
        except re.error as e:
            logger.warning(f"Invalid trigger pattern {pattern!r} ({mode}): {e}")
            compiled = INVALID

        self._cache[key] = compiled
        return compiled

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
