"""SQLite database — async init, WAL mode, schema creation."""

from __future__ import annotations

import asyncio

import aiosqlite

from sentinel.config import DB_PATH
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS triggers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    pattern TEXT NOT NULL,
    match_mode TEXT NOT NULL DEFAULT 'regex'
        CHECK(match_mode IN ('regex', 'plain_text', 'variable')),
    cooldown REAL NOT NULL DEFAULT 0 CHECK(cooldown >= 0),
    variables TEXT NOT NULL DEFAULT '[]',
    actions TEXT NOT NULL DEFAULT '[]',
    workspaces TEXT NOT NULL DEFAULT '[]',
    enabled INTEGER NOT NULL DEFAULT 1,
    description TEXT,
    default_id TEXT UNIQUE,
    user_modified INTEGER NOT NULL DEFAULT 0,
    hit_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS session_variables (
    session_id TEXT NOT NULL,
    name TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (session_id, name)
);

CREATE TABLE IF NOT EXISTS auto_resume (
    session_id TEXT PRIMARY KEY,
    cwd TEXT,
    ssh_command TEXT,
    command TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS pane_instances (
    session_id TEXT PRIMARY KEY,
    instance TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT,
    event_type TEXT NOT NULL
        CHECK(event_type IN ('trigger_fired', 'auto_resume', 'system')),
    message TEXT NOT NULL,
    trigger_id INTEGER REFERENCES triggers(id) ON DELETE SET NULL,
    timestamp TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_events_session ON events(session_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type, timestamp);
"""

_db: aiosqlite.Connection | None = None
_db_lock = asyncio.Lock()


async def init_database(db_path: str | None = None) -> aiosqlite.Connection:
    """Initialize SQLite with WAL mode and create tables.

    Args:
        db_path: Override path for the database file. Defaults to
            ``~/.sentinel/sentinel.db``.

    Returns:
        The opened ``aiosqlite.Connection`` with WAL mode enabled.
    """
    global _db
    path = db_path or str(DB_PATH)
    logger.info(f"Initializing database at {path}")

    db = await aiosqlite.connect(path)
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    await db.execute("PRAGMA synchronous=NORMAL")
    await db.executescript(SCHEMA)
    await db.commit()

    _db = db
    logger.info("Database initialized successfully")
    return db


async def get_db() -> aiosqlite.Connection:
    """Get the database connection, initializing if needed."""
    global _db
    if _db is not None:
        return _db
    async with _db_lock:
        if _db is None:
            _db = await init_database()
        return _db


async def close_database() -> None:
    """Close the database connection and reset the singleton."""
    global _db
    if _db:
        await _db.close()
        _db = None
        logger.info("Database closed")
