"""Per-rule, per-session bookkeeping: cooldowns, duplicate matches, transitions."""

from __future__ import annotations

from dataclasses import dataclass

Key = tuple[object, str]  # (rule_id, session_id)

DEFAULT_DEDUP_WINDOW_S = 10.0


class _SessionKeyed:
    """Base for tables keyed by ``(rule_id, session_id)``."""

    def __init__(self) -> None:
        self._entries: dict[Key, object] = {}

    def discard_session(self, session_id: str) -> None:
        for key in [k for k in self._entries if k[1] == session_id]:
            del self._entries[key]

    def sessions(self) -> set[str]:
        return {k[1] for k in self._entries}

    def __len__(self) -> int:
        return len(self._entries)


class CooldownTracker(_SessionKeyed):
    """Last firing time per rule and session."""

    def ready(self, rule_id, session_id: str, cooldown: float, now: float) -> bool:
        last = self._entries.get((rule_id, session_id))
        return last is None or now - last >= cooldown

    def mark(self, rule_id, session_id: str, now: float) -> None:
        self._entries[(rule_id, session_id)] = now


@dataclass
class _DedupEntry:
    text: str
    at: float


class DedupTracker(_SessionKeyed):
    """Suppress an identical match re-fired within a short window.

    Full-screen programs repaint visually identical content many times a
    second; each repaint would otherwise produce a fresh match.
    """

    def __init__(self, window: float = DEFAULT_DEDUP_WINDOW_S) -> None:
        super().__init__()
        self.window = window

    def is_duplicate(self, rule_id, session_id: str, text: str, now: float) -> bool:
        entry = self._entries.get((rule_id, session_id))
        return entry is not None and entry.text == text and now - entry.at < self.window

    def record(self, rule_id, session_id: str, text: str, now: float) -> None:
        self._entries[(rule_id, session_id)] = _DedupEntry(text, now)


@dataclass
class TransitionState:
    result: bool
    snapshot: tuple[tuple[str, str], ...]


class TransitionTracker(_SessionKeyed):
    """Last evaluation of each variable-mode rule per session."""

    def get(self, rule_id, session_id: str) -> TransitionState | None:
        return self._entries.get((rule_id, session_id))

    def record(
        self,
        rule_id,
        session_id: str,
        result: bool,
        snapshot: tuple[tuple[str, str], ...],
    ) -> None:
        self._entries[(rule_id, session_id)] = TransitionState(result, snapshot)

    def should_fire(
        self,
        rule_id,
        session_id: str,
        result: bool,
        snapshot: tuple[tuple[str, str], ...],
    ) -> bool:
        """True on a false→true change, or a value change while held true."""
        if not result:
            return False
        previous = self.get(rule_id, session_id)
        if previous is None or not previous.result:
            return True
        return previous.snapshot != snapshot
