"""Variable condition parser and evaluator.

Syntax::

    expr     := and_expr ('||' and_expr)*
    and_expr := unary ('&&' unary)*
    unary    := '!' unary | primary
    primary  := '(' expr ')' | IDENT [('==' | '!=') STRING]
    STRING   := "..." | '...'
    IDENT    := [A-Za-z_][A-Za-z0-9_]*

Examples::

    claudeSessionId                          set and non-empty
    !claudeSessionId                         unset or empty
    claudeSessionId == "abc"                 equals
    claudeSessionId || claudeResumeCommand   or
    a && (b || c != 'x')                     && binds tighter than ||
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.triggers.condition")


class ConditionSyntaxError(ValueError):
    """Raised when a condition expression cannot be parsed."""

    def __init__(self, message: str, position: int) -> None:
        super().__init__(f"{message} at position {position}")
        self.position = position


# ── AST ──


@dataclass(frozen=True)
class IsSet:
    name: str

    def evaluate(self, variables: Mapping[str, str]) -> bool:
        return bool(variables.get(self.name))


@dataclass(frozen=True)
class Compare:
    name: str
    value: str
    negate: bool = False

    def evaluate(self, variables: Mapping[str, str]) -> bool:
        return (variables.get(self.name) == self.value) != self.negate


@dataclass(frozen=True)
class Not:
    operand: "Condition"

    def evaluate(self, variables: Mapping[str, str]) -> bool:
        return not self.operand.evaluate(variables)


@dataclass(frozen=True)
class AllOf:
    children: tuple["Condition", ...]

    def evaluate(self, variables: Mapping[str, str]) -> bool:
        return all(c.evaluate(variables) for c in self.children)


@dataclass(frozen=True)
class AnyOf:
    children: tuple["Condition", ...]

    def evaluate(self, variables: Mapping[str, str]) -> bool:
        return any(c.evaluate(variables) for c in self.children)


Condition = IsSet | Compare | Not | AllOf | AnyOf


# ── Parser ──


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def parse(self) -> Condition:
        node = self._parse_or()
        self._skip_ws()
        if self.pos < len(self.text):
            raise ConditionSyntaxError(
                f"Unexpected character {self.text[self.pos]!r}", self.pos
            )
        return node

    def _parse_or(self) -> Condition:
        children = [self._parse_and()]
        while self._accept("||"):
            children.append(self._parse_and())
        return children[0] if len(children) == 1 else AnyOf(tuple(children))

    def _parse_and(self) -> Condition:
        children = [self._parse_unary()]
        while self._accept("&&"):
            children.append(self._parse_unary())
        return children[0] if len(children) == 1 else AllOf(tuple(children))

    def _parse_unary(self) -> Condition:
        self._skip_ws()
        # '!=' only ever follows an identifier, so a leading '!' is negation
        if self._accept("!"):
            return Not(self._parse_unary())
        return self._parse_primary()

    def _parse_primary(self) -> Condition:
        self._skip_ws()
        if self.pos >= len(self.text):
            raise ConditionSyntaxError("Unexpected end of expression", self.pos)

        if self._accept("("):
            node = self._parse_or()
            if not self._accept(")"):
                raise ConditionSyntaxError("Expected ')'", self.pos)
            return node

        name = self._read_ident()
        if self._accept("=="):
            return Compare(name, self._read_string())
        if self._accept("!="):
            return Compare(name, self._read_string(), negate=True)
        return IsSet(name)

    def _read_ident(self) -> str:
        self._skip_ws()
        start = self.pos
        if start < len(self.text) and (
            self.text[start].isalpha() or self.text[start] == "_"
        ):
            self.pos += 1
            while self.pos < len(self.text) and (
                self.text[self.pos].isalnum() or self.text[self.pos] == "_"
            ):
                self.pos += 1
        if self.pos == start:
            raise ConditionSyntaxError("Expected identifier", start)
        return self.text[start : self.pos]

    def _read_string(self) -> str:
        self._skip_ws()
        if self.pos >= len(self.text):
            raise ConditionSyntaxError("Expected string literal", self.pos)
        quote = self.text[self.pos]
        if quote not in ('"', "'"):
            raise ConditionSyntaxError(
                f"Expected string literal, got {quote!r}", self.pos
            )
        start = self.pos + 1
        end = self.text.find(quote, start)
        if end == -1:
            raise ConditionSyntaxError("Unterminated string literal", self.pos)
        self.pos = end + 1
        return self.text[start:end]

    def _accept(self, token: str) -> bool:
        self._skip_ws()
        if self.text.startswith(token, self.pos):
            self.pos += len(token)
            return True
        return False

    def _skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1


def parse_condition(text: str) -> Condition:
    """Parse a condition expression.

    Raises:
        ConditionSyntaxError: If the expression is malformed.
    """
    return _Parser(text).parse()


class ConditionCache:
    """Parsed conditions by expression text; malformed ones cached as ``None``."""

    def __init__(self) -> None:
        self._cache: dict[str, Condition | None] = {}

    def get(self, text: str) -> Condition | None:
        if text in self._cache:
            return self._cache[text]
        try:
            node: Condition | None = parse_condition(text)
        except ConditionSyntaxError as e:
            logger.warning(f"Invalid trigger condition {text!r}: {e}")
            node = None
        self._cache[text] = node
        return node
