"""Async CRUD functions for all database tables."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any

from sentinel.db.database import get_db
from sentinel.db.models import (
    AutoResumeContext,
    Event,
    TriggerAction,
    TriggerRule,
    VariableMapping,
)

# ── Triggers ──

_TRIGGER_COLUMNS = (
    "id, name, pattern, match_mode, cooldown, variables, actions, workspaces, "
    "enabled, description, default_id, user_modified, hit_count, created_at"
)


def _row_to_trigger(row: tuple) -> TriggerRule:
    """Convert a raw SQLite row tuple to a TriggerRule dataclass.

    Args:
        row: Tuple of column values in ``_TRIGGER_COLUMNS`` order.

    Returns:
        Populated TriggerRule dataclass.
    """
    return TriggerRule(
        id=row[0],
        name=row[1],
        pattern=row[2],
        match_mode=row[3],
        cooldown=row[4],
        variables=[VariableMapping(**v) for v in json.loads(row[5])],
        actions=[TriggerAction(**a) for a in json.loads(row[6])],
        workspaces=json.loads(row[7]),
        enabled=bool(row[8]),
        description=row[9],
        default_id=row[10],
        user_modified=bool(row[11]),
        hit_count=row[12],
        created_at=row[13],
    )


def _trigger_values(rule: TriggerRule) -> tuple:
    return (
        rule.name,
        rule.pattern,
        rule.match_mode,
        rule.cooldown,
        json.dumps([asdict(v) for v in rule.variables]),
        json.dumps([asdict(a) for a in rule.actions]),
        json.dumps(rule.workspaces),
        int(rule.enabled),
        rule.description,
        rule.default_id,
        int(rule.user_modified),
    )


async def get_all_triggers(enabled_only: bool = False) -> list[TriggerRule]:
    """Fetch triggers.

    Args:
        enabled_only: If True, only returns enabled triggers.

    Returns:
        List of TriggerRule dataclasses ordered by ID.
    """
    db = await get_db()
    sql = f"SELECT {_TRIGGER_COLUMNS} FROM triggers"
    if enabled_only:
        sql += " WHERE enabled = 1"
    sql += " ORDER BY id"
    async with db.execute(sql) as cur:
        rows = await cur.fetchall()
        return [_row_to_trigger(r) for r in rows]


async def get_trigger(trigger_id: int) -> TriggerRule | None:
    db = await get_db()
    async with db.execute(
        f"SELECT {_TRIGGER_COLUMNS} FROM triggers WHERE id = ?", (trigger_id,)
    ) as cur:
        row = await cur.fetchone()
        if row:
            return _row_to_trigger(row)
    return None


async def add_trigger(rule: TriggerRule) -> int:
    """Insert a new trigger.

    Args:
        rule: TriggerRule dataclass; ``id`` and ``hit_count`` are ignored.

    Returns:
        The auto-generated row ID of the new trigger.
    """
    db = await get_db()
    cur = await db.execute(
        """INSERT INTO triggers (name, pattern, match_mode, cooldown, variables,
           actions, workspaces, enabled, description, default_id, user_modified)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        _trigger_values(rule),
    )
    await db.commit()
    return cur.lastrowid or 0


async def update_trigger(rule: TriggerRule) -> bool:
    """Overwrite every editable column of an existing trigger.

    Returns:
        True if the trigger exists and was updated.
    """
    db = await get_db()
    cur = await db.execute(
        """UPDATE triggers SET name = ?, pattern = ?, match_mode = ?, cooldown = ?,
           variables = ?, actions = ?, workspaces = ?, enabled = ?, description = ?,
           default_id = ?, user_modified = ?
           WHERE id = ?""",
        _trigger_values(rule) + (rule.id,),
    )
    await db.commit()
    return cur.rowcount > 0


async def delete_trigger(trigger_id: int) -> bool:
    """Delete a trigger by ID.

    Returns:
        True if a trigger was deleted, False if not found.
    """
    db = await get_db()
    cur = await db.execute("DELETE FROM triggers WHERE id = ?", (trigger_id,))
    await db.commit()
    return cur.rowcount > 0


async def set_trigger_enabled(trigger_id: int, enabled: bool) -> bool:
    db = await get_db()
    cur = await db.execute(
        "UPDATE triggers SET enabled = ? WHERE id = ?", (int(enabled), trigger_id)
    )
    await db.commit()
    return cur.rowcount > 0


async def set_all_triggers_enabled(enabled: bool) -> None:
    """Enable or disable all triggers at once."""
    db = await get_db()
    await db.execute("UPDATE triggers SET enabled = ?", (int(enabled),))
    await db.commit()


async def increment_trigger_hit(trigger_id: int) -> None:
    db = await get_db()
    await db.execute(
        "UPDATE triggers SET hit_count = hit_count + 1 WHERE id = ?", (trigger_id,)
    )
    await db.commit()


# ── Session variables ──


async def save_variables(session_id: str, variables: dict[str, str]) -> None:
    """Replace the stored variables of a session.

    Args:
        session_id: Session identifier.
        variables: Complete variable map; an empty map clears the session.
    """
    db = await get_db()
    names = list(variables)
    placeholders = ", ".join("?" for _ in names)
    await db.execute(
        f"DELETE FROM session_variables WHERE session_id = ? AND name NOT IN ({placeholders})",
        (session_id, *names),
    )
    await db.executemany(
        "INSERT OR REPLACE INTO session_variables (session_id, name, value) VALUES (?, ?, ?)",
        [(session_id, name, value) for name, value in variables.items()],
    )
    await db.commit()


async def load_variables(session_id: str) -> dict[str, str]:
    db = await get_db()
    async with db.execute(
        "SELECT name, value FROM session_variables WHERE session_id = ? ORDER BY name",
        (session_id,),
    ) as cur:
        rows = await cur.fetchall()
        return {r[0]: r[1] for r in rows}


# ── Auto-resume ──


async def set_auto_resume(session_id: str, context: AutoResumeContext) -> None:
    """Record (or replace) how a session should be resumed.

    Args:
        session_id: Session identifier.
        context: Working directory, remote command and resume command.
    """
    db = await get_db()
    await db.execute(
        """INSERT INTO auto_resume (session_id, cwd, ssh_command, command, updated_at)
           VALUES (?, ?, ?, ?, ?)
           ON CONFLICT(session_id) DO UPDATE SET
               cwd = excluded.cwd,
               ssh_command = excluded.ssh_command,
               command = excluded.command,
               updated_at = excluded.updated_at""",
        (
            session_id,
            context.cwd,
            context.ssh_command,
            context.command,
            datetime.now().isoformat(),
        ),
    )
    await db.commit()


async def get_auto_resume(session_id: str) -> AutoResumeContext | None:
    db = await get_db()
    async with db.execute(
        "SELECT cwd, ssh_command, command FROM auto_resume WHERE session_id = ?",
        (session_id,),
    ) as cur:
        row = await cur.fetchone()
        if row:
            return AutoResumeContext(cwd=row[0], ssh_command=row[1], command=row[2])
    return None


# ── Pane instances ──


async def get_pane_instance(session_id: str) -> str | None:
    db = await get_db()
    async with db.execute(
        "SELECT instance FROM pane_instances WHERE session_id = ?", (session_id,)
    ) as cur:
        row = await cur.fetchone()
        return row[0] if row else None


async def set_pane_instance(session_id: str, instance: str) -> None:
    db = await get_db()
    await db.execute(
        "INSERT OR REPLACE INTO pane_instances (session_id, instance) VALUES (?, ?)",
        (session_id, instance),
    )
    await db.commit()


async def stored_session_ids() -> set[str]:
    """Session ids that own any stored variables, auto-resume record or instance."""
    db = await get_db()
    async with db.execute(
        """SELECT session_id FROM session_variables
           UNION SELECT session_id FROM auto_resume
           UNION SELECT session_id FROM pane_instances"""
    ) as cur:
        rows = await cur.fetchall()
        return {r[0] for r in rows}


async def forget_session(session_id: str) -> None:
    """Delete everything stored for a session."""
    db = await get_db()
    for table in ("session_variables", "auto_resume", "pane_instances"):
        await db.execute(f"DELETE FROM {table} WHERE session_id = ?", (session_id,))
    await db.commit()


# ── Events ──


async def log_event(event: Event) -> int:
    """Insert an event record into the database.

    Returns:
        The auto-generated row ID of the new event.
    """
    db = await get_db()
    cur = await db.execute(
        """INSERT INTO events (session_id, event_type, message, trigger_id, timestamp)
           VALUES (?, ?, ?, ?, ?)""",
        (
            event.session_id,
            event.event_type,
            event.message,
            event.trigger_id,
            event.timestamp,
        ),
    )
    await db.commit()
    return cur.lastrowid or 0


async def get_events(session_id: str | None = None, limit: int = 50) -> list[Event]:
    """Fetch recent events, optionally filtered by session.

    Args:
        session_id: If provided, only returns events for this session.
        limit: Maximum number of events to return (default 50).

    Returns:
        List of Event dataclasses, newest first.
    """
    db = await get_db()
    params: tuple[Any, ...]
    if session_id:
        sql = "SELECT * FROM events WHERE session_id = ? ORDER BY id DESC LIMIT ?"
        params = (session_id, limit)
    else:
        sql = "SELECT * FROM events ORDER BY id DESC LIMIT ?"
        params = (limit,)
    async with db.execute(sql, params) as cur:
        rows = await cur.fetchall()
        return [
            Event(
                id=r[0],
                session_id=r[1],
                event_type=r[2],
                message=r[3],
                trigger_id=r[4],
                timestamp=r[5],
            )
            for r in rows
        ]


# ── Pruning ──


async def prune_old_records(max_age_days: int = 30) -> int:
    """Delete events older than max_age_days.

    Returns:
        Number of deleted events.
    """
    db = await get_db()
    cutoff = (datetime.now() - timedelta(days=max_age_days)).isoformat()
    cur = await db.execute("DELETE FROM events WHERE timestamp < ?", (cutoff,))
    await db.commit()
    return cur.rowcount
