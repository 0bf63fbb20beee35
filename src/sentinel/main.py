"""Async startup — init config, DB, engine, monitors, bot; run event loop; clean shutdown."""

from __future__ import annotations

import asyncio
import signal
import sys

from aiogram.types import BotCommand

from sentinel.bot.bot import create_bot, set_app_data
from sentinel.bot.handlers.commands import set_engine, set_registry, set_rule_source
from sentinel.bot.notifier import Notifier
from sentinel.config import SENTINEL_HOME, get_config
from sentinel.db import queries as db_queries
from sentinel.db.database import close_database, init_database
from sentinel.sessions.recovery import SessionTracker
from sentinel.sessions.registry import SessionRegistry
from sentinel.triggers.engine import TriggerEngine
from sentinel.triggers.rules import RuleSource, record_hit
from sentinel.utils.errors import ErrorHandler
from sentinel.utils.logger import get_logger, setup_logging

BOT_COMMANDS = [
    BotCommand(command="sessions", description="Watched panes"),
    BotCommand(command="triggers", description="Manage triggers"),
    BotCommand(command="vars", description="Captured variables of a pane"),
    BotCommand(command="help", description="Command reference"),
]


async def _setup_bot_profile(bot) -> None:
    """Register the command menu with Telegram. Non-fatal."""
    try:
        await bot.set_my_commands(BOT_COMMANDS)
    except Exception as e:
        get_logger("sentinel.main").warning(f"Failed to set bot commands: {e}")


async def run() -> None:
    """Main async entry point: wire every subsystem and poll until signalled."""
    SENTINEL_HOME.mkdir(parents=True, exist_ok=True)

    cfg = get_config()
    missing = cfg.validate()
    if missing:
        print(f"❌ Missing required config: {', '.join(missing)}")
        print(f"   Set them in {SENTINEL_HOME / '.env'}")
        sys.exit(1)

    log_cfg = cfg.logging_config
    logger = setup_logging(
        level=cfg.log_level,
        log_file=log_cfg.get("file", "~/.sentinel/sentinel.log"),
        max_bytes=log_cfg.get("max_size_mb", 20) * 1024 * 1024,
        backup_count=log_cfg.get("backup_count", 3),
        console=log_cfg.get("console_output", True),
    )
    logger.info("🛰️ Sentinel starting up...")

    await init_database()
    pruned = await db_queries.prune_old_records(max_age_days=30)
    if pruned:
        logger.info(f"Pruned {pruned} old event records")

    # Rules
    rule_source = RuleSource()
    if cfg.seed_defaults:
        written = await rule_source.seed_defaults(cfg.hidden_defaults, cfg.enable_defaults)
        if written:
            logger.info(f"Seeded {written} built-in trigger(s)")
    await rule_source.reload()
    set_rule_source(rule_source)

    # Bot + notifier
    bot, dp = await create_bot()
    set_app_data("bot", bot)
    await _setup_bot_profile(bot)

    notifier = Notifier(bot, cfg.telegram_user_id)
    await notifier.start()
    set_app_data("notifier", notifier)

    error_handler = ErrorHandler(notifier=notifier)
    await error_handler.start()
    set_app_data("error_handler", error_handler)

    # Engine
    registry = SessionRegistry(prefix=cfg.session_prefix)
    set_registry(registry)

    engine = TriggerEngine(
        rules=rule_source.snapshot,
        registry=registry,
        notifier=notifier,
        on_persist=db_queries.save_variables,
        on_auto_resume=db_queries.set_auto_resume,
        on_fire=record_hit,
        error_handler=error_handler,
        buffer_cap=cfg.buffer_cap,
        dedup_window=cfg.dedup_window_s,
    )
    set_engine(engine)
    set_app_data("engine", engine)

    tracker = SessionTracker(registry, engine, cfg.stream_dir)
    set_app_data("tracker", tracker)

    attached = await tracker.recover_sessions()
    logger.info(f"Watching {len(attached)} pane(s)")

    async def _discovery_loop() -> None:
        while True:
            await asyncio.sleep(cfg.discovery_interval_s)
            try:
                await tracker.recover_sessions()
            except Exception as e:
                await error_handler.handle(e, "pane discovery")

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("🚀 Sentinel is online! Polling for Telegram messages...")

    try:
        polling_task = asyncio.create_task(
            dp.start_polling(bot, allowed_updates=["message"])
        )
        connectivity_task = asyncio.create_task(notifier.connectivity_check())
        discovery_task = asyncio.create_task(_discovery_loop())

        await shutdown_event.wait()

        logger.info("Shutting down...")
        await dp.stop_polling()
        polling_task.cancel()
        connectivity_task.cancel()
        discovery_task.cancel()
        await tracker.stop_all()
        await engine.drain()
        await error_handler.stop()
        await notifier.stop()

        try:
            await polling_task
        except asyncio.CancelledError:
            pass

    except Exception as e:
        logger.error(f"Fatal error: {e}")
    finally:
        await bot.session.close()
        await close_database()
        logger.info("🛰️ Sentinel stopped.")
