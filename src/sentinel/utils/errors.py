"""Action error accounting — count failures and escalate repeated ones."""

from __future__ import annotations

import asyncio

from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.utils.errors")

ESCALATION_THRESHOLD = 5
RESET_INTERVAL_S = 300


class ErrorHandler:
    """Collects failures from trigger actions and collaborator calls.

    Each failure is logged and counted by exception type. When one type
    reaches ``ESCALATION_THRESHOLD`` within a reset interval the user is
    told once through the notifier.
    """

    def __init__(self, notifier=None) -> None:
        self.notifier = notifier
        self.error_counts: dict[str, int] = {}
        self._escalated: set[str] = set()
        self._reset_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start periodic error count reset."""
        self._reset_task = asyncio.create_task(self._periodic_reset())

    async def stop(self) -> None:
        if self._reset_task:
            self._reset_task.cancel()

    async def handle(self, error: Exception, context: str) -> None:
        """Log and count a failure; escalate once the threshold is reached."""
        error_type = type(error).__name__
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        logger.error(f"[{context}] {error_type}: {error}")

        if (
            self.error_counts[error_type] >= ESCALATION_THRESHOLD
            and error_type not in self._escalated
        ):
            self._escalated.add(error_type)
            await self._escalate(error_type, context)

    async def _escalate(self, error_type: str, context: str) -> None:
        if self.notifier:
            try:
                await self.notifier.dispatch(
                    "Sentinel",
                    f"🔴 Repeated error in {context}: {error_type} "
                    f"({self.error_counts[error_type]} times). "
                    f"Check daemon logs: ~/.sentinel/sentinel.log",
                    "error",
                    None,
                )
            except Exception:
                logger.critical(f"Cannot notify user about {error_type}")

    async def _periodic_reset(self) -> None:
        while True:
            await asyncio.sleep(RESET_INTERVAL_S)
            self.error_counts.clear()
            self._escalated.clear()
