"""Trigger engine — per-chunk pipeline over session output.

Each chunk goes through two phases:

1. Text pass. The chunk is decoded, stripped and folded into the session
   buffer. Every enabled text-mode rule in scope is matched against the
   buffer. A match is consumed from the buffer and its captures are stored
   whether or not the rule fires. Cooldown and duplicate checks decide
   whether the actions run.
2. Variable pass. Variable-mode rules are evaluated against the session's
   variables, including anything extracted in phase 1, and fire on a
   false→true transition or on a value change while true.

Processing a chunk never blocks on actions: they are submitted as tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Awaitable, Callable, Coroutine, Iterable, Iterator

from sentinel.db.models import AutoResumeContext, TriggerRule
from sentinel.triggers.actions import ActionExecutor
from sentinel.triggers.condition import ConditionCache
from sentinel.triggers.patterns import PatternCompiler
from sentinel.triggers.stream import DEFAULT_BUFFER_CAP, StreamBuffer
from sentinel.triggers.tracking import (
    DEFAULT_DEDUP_WINDOW_S,
    CooldownTracker,
    DedupTracker,
    TransitionTracker,
)
from sentinel.triggers.variables import VariableStore, extract_variables
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.triggers.engine")


class TriggerEngine:
    """Owns all trigger state for a set of terminal sessions.

    Args:
        rules: Called on every chunk; returns the current rule list.
        registry: Session registry (``workspace_of``, ``describe``, ``write``,
            ``set_state``, ``get_context``).
        notifier: Notification dispatcher with an async ``dispatch``.
        on_persist: Async callback ``(session_id, variables)`` run after a
            variable change.
        on_auto_resume: Async callback ``(session_id, AutoResumeContext)``.
        on_fire: Async callback ``(rule, session_id)`` run when a rule fires
            with actions enabled.
        error_handler: ``ErrorHandler`` receiving action failures.
        buffer_cap: Maximum buffered characters per session.
        dedup_window: Seconds during which an identical match is not re-fired.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        rules: Callable[[], Iterable[TriggerRule]],
        registry=None,
        notifier=None,
        on_persist: Callable[[str, dict[str, str]], Awaitable[None]] | None = None,
        on_auto_resume: Callable[[str, AutoResumeContext], Awaitable[None]] | None = None,
        on_fire: Callable[[TriggerRule, str], Awaitable[None]] | None = None,
        error_handler=None,
        buffer_cap: int = DEFAULT_BUFFER_CAP,
        dedup_window: float = DEFAULT_DEDUP_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rules = rules
        self.registry = registry
        self.on_persist = on_persist
        self.on_fire = on_fire
        self.clock = clock

        self.patterns = PatternCompiler()
        self.conditions = ConditionCache()
        self.buffers = StreamBuffer(buffer_cap)
        self.variables = VariableStore()
        self.cooldowns = CooldownTracker()
        self.dedup = DedupTracker(dedup_window)
        self.transitions = TransitionTracker()
        self.executor = ActionExecutor(
            self.variables,
            self._submit,
            registry=registry,
            notifier=notifier,
            on_auto_resume=on_auto_resume,
            error_handler=error_handler,
        )

        self._suppressed: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        # Latest unwritten variables per session, and sessions with a writer running
        self._pending_writes: dict[str, dict[str, str]] = {}
        self._writers: set[str] = set()

    # ── Lifecycle ──

    def on_session_output(self, session_id: str, data: bytes) -> None:
        """Run the full pipeline for one chunk of a session's output."""
        rules = self._rules_for(session_id)
        if not rules:
            return

        buffer = self.buffers.ingest(session_id, data)
        now = self.clock()

        for rule in rules:
            if rule.is_variable_mode or not rule.pattern:
                continue
            matcher = self.patterns.compile(rule.pattern, rule.match_mode)
            if matcher is None:
                continue
            match = matcher.search(buffer)
            if match is None or match.end() == match.start():
                continue
            buffer = self.buffers.consume(session_id, match.end())
            self._on_match(rule, session_id, match, now)

        self._evaluate_variable_rules(session_id, rules, now)

    def on_session_load(self, session_id: str, values: dict[str, str]) -> None:
        """Seed a session from persisted variables without firing anything.

        Variable-mode rules that are already true stay quiet until their
        variables change.
        """
        self.variables.load(session_id, values)
        self._evaluate_variable_rules(
            session_id, self._rules_for(session_id), self.clock(), fire=False
        )
        logger.debug(f"Loaded {len(values)} variable(s) for session {session_id}")

    def on_session_teardown(self, session_id: str) -> None:
        """Forget everything about a session."""
        self.buffers.discard(session_id)
        self.variables.discard(session_id)
        self.cooldowns.discard_session(session_id)
        self.dedup.discard_session(session_id)
        self.transitions.discard_session(session_id)
        self._suppressed.discard(session_id)
        logger.debug(f"Purged trigger state for session {session_id}")

    # ── Suppression ──

    def set_suppressed(self, session_id: str, suppressed: bool) -> None:
        """While suppressed, matches still update variables but run no actions."""
        if suppressed:
            self._suppressed.add(session_id)
        else:
            self._suppressed.discard(session_id)

    def is_suppressed(self, session_id: str) -> bool:
        return session_id in self._suppressed

    @contextlib.contextmanager
    def suppressed(self, session_id: str) -> Iterator[None]:
        """Suppress actions for the duration of a ``with`` block (output replay)."""
        self.set_suppressed(session_id, True)
        try:
            yield
        finally:
            self.set_suppressed(session_id, False)

    # ── Variables ──

    def get_variables(self, session_id: str) -> dict[str, str]:
        return self.variables.all(session_id)

    def clear_variables(self, session_id: str) -> None:
        """Clear a session's variables, in memory and in storage."""
        self.variables.clear(session_id)
        self._persist(session_id)

    def interpolate(
        self, session_id: str, text: str, clear_unresolved: bool = False
    ) -> str:
        return self.variables.interpolate(session_id, text, clear_unresolved)

    def display_name(self, session_id: str) -> str:
        return self.executor.display_name(session_id)

    # ── Background tasks ──

    async def drain(self) -> None:
        """Wait for all submitted actions to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            # Let done-callbacks run and pick up tasks the finished ones submitted
            await asyncio.sleep(0)

    def _submit(self, coro: Coroutine) -> None:
        """Schedule background work on the running loop.

        Without a running loop (synchronous tests and scripts) the coroutine
        runs to completion before this returns. The daemon always feeds
        output from inside its loop, so chunks never wait on actions there.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                asyncio.run(coro)
            except Exception as e:
                logger.error(f"Trigger task failed: {e}")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(f"Trigger task failed: {task.exception()}")

    # ── Internals ──

    def _rules_for(self, session_id: str) -> list[TriggerRule]:
        """Enabled rules whose workspace scope includes the session."""
        try:
            rules = list(self._rules())
        except Exception as e:
            logger.error(f"Could not read trigger rules: {e}")
            return []
        if not rules:
            return []

        workspace_id = self.registry.workspace_of(session_id) if self.registry else None
        return [
            r
            for r in rules
            if r.enabled
            and (not r.workspaces or workspace_id is None or workspace_id in r.workspaces)
        ]

    def _on_match(self, rule: TriggerRule, session_id: str, match, now: float) -> None:
        if self.variables.update(session_id, extract_variables(match, rule.variables)):
            self._persist(session_id)

        text = match.group(0)
        if not self.cooldowns.ready(rule.id, session_id, rule.cooldown, now):
            logger.debug(f"Trigger '{rule.name}' in cooldown for session {session_id}")
            return
        if self.dedup.is_duplicate(rule.id, session_id, text, now):
            logger.debug(f"Trigger '{rule.name}' duplicate match for session {session_id}")
            return

        self.dedup.record(rule.id, session_id, text, now)
        self._fire(rule, session_id, now)

    def _evaluate_variable_rules(
        self,
        session_id: str,
        rules: list[TriggerRule],
        now: float,
        fire: bool = True,
    ) -> None:
        variables = self.variables.all(session_id)
        snapshot = self.variables.snapshot(session_id)

        for rule in rules:
            if not rule.is_variable_mode or not rule.pattern:
                continue
            condition = self.conditions.get(rule.pattern)
            if condition is None:
                continue
            result = condition.evaluate(variables)

            if fire and self.transitions.should_fire(rule.id, session_id, result, snapshot):
                if not self.cooldowns.ready(rule.id, session_id, rule.cooldown, now):
                    # Left unrecorded so the transition fires once the cooldown ends
                    continue
                self.transitions.record(rule.id, session_id, result, snapshot)
                self._fire(rule, session_id, now)
            else:
                self.transitions.record(rule.id, session_id, result, snapshot)

    def _fire(self, rule: TriggerRule, session_id: str, now: float) -> None:
        self.cooldowns.mark(rule.id, session_id, now)
        if session_id in self._suppressed:
            logger.debug(f"Trigger '{rule.name}' suppressed for session {session_id}")
            return

        logger.info(f"Trigger '{rule.name}' fired for session {session_id}")
        if self.on_fire:
            self._submit(self.on_fire(rule, session_id))
        self.executor.execute(rule, session_id)

    def _persist(self, session_id: str) -> None:
        """Queue the session's current variables for writing.

        One writer per session runs at a time and always writes the newest
        map, so several changes in one chunk become one write and writes
        never overlap.
        """
        if self.on_persist is None:
            return
        self._pending_writes[session_id] = self.variables.all(session_id)
        if session_id not in self._writers:
            self._writers.add(session_id)
            self._submit(self._write_variables(session_id))

    async def _write_variables(self, session_id: str) -> None:
        try:
            while session_id in self._pending_writes:
                values = self._pending_writes.pop(session_id)
                await self.on_persist(session_id, values)
        finally:
            self._writers.discard(session_id)
