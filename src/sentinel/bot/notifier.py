"""Push notification sender — batching queue + offline resilience."""

from __future__ import annotations

import asyncio
from typing import Any

from aiogram import Bot

from sentinel.bot.formatter import format_notification
from sentinel.config import get_config
from sentinel.security.redactor import redact_sensitive
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.bot.notifier")

URGENT_SEVERITIES = ("warning", "error")


class Notifier:
    """Notification sender with batching and offline resilience."""

    def __init__(self, bot: Bot, chat_id: int) -> None:
        self.bot = bot
        self.chat_id = chat_id
        self._queue: asyncio.Queue[tuple[str, dict[str, Any], int]] = asyncio.Queue()
        self._max_retries = 5
        self._batch_buffer: list[tuple[str, dict[str, Any]]] = []
        self._batch_task: asyncio.Task | None = None
        self._running = False
        self.is_online = True

        cfg = get_config()
        self._batch_window = cfg.batch_window_s

    async def start(self) -> None:
        """Start the background batch flusher loop."""
        self._running = True
        if self._batch_window > 0:
            self._batch_task = asyncio.create_task(self._batch_loop())

    async def stop(self) -> None:
        """Stop the batch flusher and flush any remaining buffered messages."""
        self._running = False
        if self._batch_task:
            self._batch_task.cancel()
            try:
                await self._batch_task
            except asyncio.CancelledError:
                pass
        await self._flush_batch()

    async def dispatch(
        self,
        title: str,
        body: str,
        severity: str = "info",
        session_id: str | None = None,
    ) -> int | None:
        """Deliver a trigger notification.

        Warnings and errors skip the batch window.

        Args:
            title: Notification title.
            body: Notification body.
            severity: ``'info'``, ``'warning'`` or ``'error'``.
            session_id: Session that raised the notification, for logging.

        Returns:
            Message ID if sent immediately, or None if batched or queued.
        """
        logger.info(f"Notification ({severity}) from {session_id or 'sentinel'}: {title}")
        text = format_notification(title, body, severity)
        if severity in URGENT_SEVERITIES:
            return await self.send_immediate(text)
        return await self.send(text)

    async def send(self, text: str, disable_notification: bool = False) -> int | None:
        """Queue a notification for batched delivery.

        If the batch window is 0, sends immediately.

        Args:
            text: Message text (HTML). Sensitive data is auto-redacted.
            disable_notification: If True, send silently.

        Returns:
            Message ID if sent immediately, or None if batched for later.
        """
        text = redact_sensitive(text)
        kwargs = self._kwargs(disable_notification)
        if self._batch_window <= 0:
            return await self._send_direct(text, kwargs)

        self._batch_buffer.append((text, kwargs))
        return None

    async def send_immediate(
        self, text: str, disable_notification: bool = False
    ) -> int | None:
        """Send a notification immediately, bypassing the batch queue.

        Returns:
            Message ID on success, or None if offline (message queued).
        """
        text = redact_sensitive(text)
        return await self._send_direct(text, self._kwargs(disable_notification))

    @staticmethod
    def _kwargs(disable_notification: bool) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"parse_mode": "HTML"}
        if disable_notification:
            kwargs["disable_notification"] = True
        return kwargs

    async def _send_direct(self, text: str, kwargs: dict) -> int | None:
        """Attempt direct send to Telegram with 429 backoff; queue if offline."""
        backoff = 1.0
        max_backoff = 30.0
        for attempt in range(4):
            try:
                msg = await self.bot.send_message(self.chat_id, text, **kwargs)
                self.is_online = True
                await self._flush_offline_queue()
                return msg.message_id
            except Exception as e:
                err_str = str(e)
                if "429" in err_str or "Too Many Requests" in err_str:
                    logger.warning(
                        f"Telegram 429 — backoff {backoff}s (attempt {attempt + 1})"
                    )
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, max_backoff)
                    continue
                self.is_online = False
                await self._queue.put((text, kwargs, 1))
                logger.warning(
                    f"Queued notification (offline): {e}. Queue: {self._queue.qsize()}"
                )
                return None
        await self._queue.put((text, kwargs, 1))
        return None

    async def _batch_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._batch_window)
            await self._flush_batch()

    async def _flush_batch(self) -> None:
        """Flush buffered messages, combining several into one update."""
        if not self._batch_buffer:
            return

        items = self._batch_buffer[:]
        self._batch_buffer.clear()

        if len(items) == 1:
            text, kwargs = items[0]
            await self._send_direct(text, kwargs)
            return

        combined = f"📬 {len(items)} Updates:\n\n"
        combined += "\n\n".join(text for text, _ in items)
        await self._send_direct(combined, items[0][1].copy())

    async def _flush_offline_queue(self) -> None:
        """Send messages queued while offline; stops on the first failure."""
        while not self._queue.empty():
            text, kwargs, retries = await self._queue.get()
            try:
                await self.bot.send_message(self.chat_id, text, **kwargs)
                await asyncio.sleep(0.1)  # Respect rate limits
            except Exception:
                if retries < self._max_retries:
                    await self._queue.put((text, kwargs, retries + 1))
                else:
                    logger.warning(f"Discarding message after {retries} retries")
                break

    async def connectivity_check(self) -> None:
        """Every 30 seconds while offline, ping Telegram and flush the queue."""
        while self._running:
            if not self.is_online:
                try:
                    await self.bot.get_me()
                    self.is_online = True
                    await self._flush_offline_queue()
                except Exception:
                    logger.debug("Telegram still unreachable")
            await asyncio.sleep(30)
