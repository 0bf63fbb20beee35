"""Telegram user ID authentication middleware."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import Message

from sentinel.config import get_config
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.security.auth")


class AuthMiddleware(BaseMiddleware):
    """Only the configured owner may manage triggers."""

    async def __call__(
        self,
        handler: Callable[[Message, dict[str, Any]], Awaitable[Any]],
        event: Message,
        data: dict[str, Any],
    ) -> Any:
        cfg = get_config()
        user_id = event.from_user.id if event.from_user else None

        if user_id != cfg.telegram_user_id:
            logger.warning(f"Unauthorized access attempt from user_id={user_id}")
            await event.answer("⛔ Unauthorized. This bot is private.")
            return None

        return await handler(event, data)
