"""Telegram bot initialization — Bot + Dispatcher + handler registration."""

from __future__ import annotations

from typing import Any

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties

from sentinel.bot.handlers import commands
from sentinel.config import get_config
from sentinel.security.auth import AuthMiddleware
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.bot")

# App-wide shared data (engine, notifier, tracker)
_app_data: dict[str, Any] = {}


def get_app_data() -> dict[str, Any]:
    return _app_data


def set_app_data(key: str, value: Any) -> None:
    _app_data[key] = value


async def create_bot() -> tuple[Bot, Dispatcher]:
    """Create the Telegram bot and dispatcher with auth and command routes.

    Returns:
        Tuple of ``(Bot, Dispatcher)`` ready for polling.
    """
    cfg = get_config()

    bot = Bot(
        token=cfg.telegram_bot_token,
        default=DefaultBotProperties(parse_mode="HTML"),
    )
    dp = Dispatcher()
    dp.message.middleware(AuthMiddleware())
    dp.include_router(commands.router)

    logger.info("Bot created and handlers registered")
    return bot, dp
