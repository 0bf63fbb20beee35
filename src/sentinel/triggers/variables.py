"""Session variables — capture-group extraction, storage and ``%name`` interpolation."""

from __future__ import annotations

import re
from typing import Callable, Iterable, Mapping

from sentinel.db.models import VariableMapping
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.triggers.variables")

TEMPLATE_MARKER = "%"

_TOKEN_RE = re.compile(r"%(\w+)")

VarChangeCallback = Callable[[str, dict[str, str]], None]


def extract_variables(
    match: re.Match, mappings: Iterable[VariableMapping]
) -> dict[str, str]:
    """Read each mapping's capture group from a match.

    Groups below 1, groups that do not exist in the pattern and groups
    that did not participate in the match are skipped. With a template,
    every ``%`` in it is replaced by the raw capture.

    Args:
        match: Successful match of the rule's pattern.
        mappings: The rule's variable mappings.

    Returns:
        Variable name → value for every mapping that produced a value.
    """
    values: dict[str, str] = {}
    for mapping in mappings:
        if mapping.group < 1:
            logger.debug(
                f"Capture group {mapping.group} invalid for variable {mapping.name!r}"
            )
            continue
        try:
            raw = match.group(mapping.group)
        except IndexError:
            logger.debug(
                f"Capture group {mapping.group} missing for variable {mapping.name!r}"
            )
            continue
        if raw is None:
            continue
        values[mapping.name] = (
            mapping.template.replace(TEMPLATE_MARKER, raw) if mapping.template else raw
        )
    return values


def interpolate(
    text: str,
    variables: Mapping[str, str],
    clear_unresolved: bool = False,
    reserved: Mapping[str, str] | None = None,
) -> str:
    """Replace ``%name`` tokens in ``text``.

    Reserved tokens win over variables of the same name. Unresolved tokens
    are kept verbatim, or blanked with ``clear_unresolved`` (for strings fed
    to a shell conditional such as ``[ -n "%var" ]``).
    """
    if "%" not in text:
        return text

    def _sub(m: re.Match) -> str:
        name = m.group(1)
        if reserved and name in reserved:
            return reserved[name]
        if name in variables:
            return variables[name]
        return "" if clear_unresolved else m.group(0)

    return _TOKEN_RE.sub(_sub, text)


class VariableStore:
    """Named string values per session, plus change listeners."""

    def __init__(self) -> None:
        self._vars: dict[str, dict[str, str]] = {}
        self._listeners: set[VarChangeCallback] = set()

    def get(self, session_id: str, name: str) -> str | None:
        return self._vars.get(session_id, {}).get(name)

    def all(self, session_id: str) -> dict[str, str]:
        """Copy of a session's variables."""
        return dict(self._vars.get(session_id, {}))

    def snapshot(self, session_id: str) -> tuple[tuple[str, str], ...]:
        """Deterministic view of a session's variables, sorted by name."""
        return tuple(sorted(self._vars.get(session_id, {}).items()))

    def update(self, session_id: str, values: Mapping[str, str]) -> bool:
        """Store new values; notify listeners only if something changed.

        Returns:
            True if at least one value changed.
        """
        if not values:
            return False
        current = self._vars.setdefault(session_id, {})
        changed = False
        for name, value in values.items():
            if current.get(name) != value:
                current[name] = value
                changed = True
        if changed:
            self._notify(session_id)
        return changed

    def load(self, session_id: str, values: Mapping[str, str]) -> None:
        """Replace a session's variables with persisted values."""
        if not values:
            return
        self._vars[session_id] = dict(values)
        self._notify(session_id)

    def clear(self, session_id: str) -> None:
        self._vars.pop(session_id, None)
        self._notify(session_id)

    def discard(self, session_id: str) -> None:
        """Drop a session's variables without notifying (session teardown)."""
        self._vars.pop(session_id, None)

    def interpolate(
        self,
        session_id: str,
        text: str,
        clear_unresolved: bool = False,
        reserved: Mapping[str, str] | None = None,
    ) -> str:
        return interpolate(
            text, self._vars.get(session_id, {}), clear_unresolved, reserved
        )

    def on_change(self, callback: VarChangeCallback) -> Callable[[], None]:
        """Subscribe to variable changes. Returns an unsubscribe function."""
        self._listeners.add(callback)
        return lambda: self._listeners.discard(callback)

    def _notify(self, session_id: str) -> None:
        values = self.all(session_id)
        for callback in list(self._listeners):
            try:
                callback(session_id, values)
            except Exception as e:
                logger.error(f"Variable change listener failed: {e}")
