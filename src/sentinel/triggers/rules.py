"""Trigger rule management — database-backed rule source for the engine."""

from __future__ import annotations

from sentinel.db import queries
from sentinel.db.models import Event, TriggerRule
from sentinel.triggers.defaults import seed_default_triggers
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.triggers.rules")


class RuleSource:
    """In-memory copy of the enabled triggers, refreshed after every edit.

    The engine reads ``snapshot()`` on every chunk, so edits made through
    this class take effect on the next chunk.
    """

    def __init__(self) -> None:
        self._rules: list[TriggerRule] = []

    def snapshot(self) -> list[TriggerRule]:
        return self._rules

    async def reload(self) -> list[TriggerRule]:
        self._rules = await queries.get_all_triggers(enabled_only=True)
        logger.debug(f"Loaded {len(self._rules)} enabled trigger(s)")
        return self._rules

    async def seed_defaults(
        self, hidden_ids: list[str] | None = None, enable_all: bool = False
    ) -> int:
        """Merge built-in triggers into the database.

        Returns:
            Number of triggers inserted or updated.
        """
        existing = await queries.get_all_triggers()
        merged = seed_default_triggers(existing, hidden_ids or [], enable_all)
        if merged is None:
            return 0
        written = 0
        for rule in merged:
            if rule.id is None:
                rule.id = await queries.add_trigger(rule)
                written += 1
            elif rule.default_id:
                await queries.update_trigger(rule)
                written += 1
        await self.reload()
        return written

    async def add(self, rule: TriggerRule) -> int:
        rule_id = await queries.add_trigger(rule)
        await self.reload()
        return rule_id

    async def update(self, rule: TriggerRule) -> bool:
        if rule.default_id:
            rule.user_modified = True
        found = await queries.update_trigger(rule)
        await self.reload()
        return found

    async def remove(self, rule_id: int) -> bool:
        found = await queries.delete_trigger(rule_id)
        await self.reload()
        return found

    async def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        found = await queries.set_trigger_enabled(rule_id, enabled)
        await self.reload()
        return found

    async def pause_all(self) -> None:
        await queries.set_all_triggers_enabled(False)
        await self.reload()

    async def resume_all(self) -> None:
        await queries.set_all_triggers_enabled(True)
        await self.reload()


async def get_all_rules() -> list[TriggerRule]:
    """Get all triggers from the database (enabled and disabled)."""
    return await queries.get_all_triggers()


async def record_hit(rule: TriggerRule, session_id: str) -> None:
    """Count a firing and keep an audit record of it.

    Args:
        rule: Trigger that fired.
        session_id: Session it fired for.
    """
    if rule.id is None:
        return
    await queries.increment_trigger_hit(rule.id)
    await queries.log_event(
        Event(
            session_id=session_id,
            event_type="trigger_fired",
            message=f"Trigger '{rule.name}' fired",
            trigger_id=rule.id,
        )
    )
