"""Action executor — run the effects of a fired trigger."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Coroutine

from sentinel.db.models import (
    ACTION_AUTO_RESUME,
    ACTION_NOTIFY,
    ACTION_SEND_TEXT,
    ACTION_SET_STATE,
    AutoResumeContext,
    TriggerAction,
    TriggerRule,
)
from sentinel.triggers.variables import VariableStore
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.triggers.actions")

DEFAULT_NOTIFY_TITLE = "%display"
DEFAULT_SESSION_STATE = "alert"

PreparedAction = tuple[TriggerAction, Callable[[], Awaitable[None]]]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class ActionExecutor:
    """Turn a fired rule into a background task running its actions in order.

    Interpolation happens when the rule fires, so an action sees the
    variables as they were at that moment even if the task runs later.
    Every action is isolated: a failing collaborator call is logged and
    reported, and the remaining actions still run.
    """

    def __init__(
        self,
        variables: VariableStore,
        submit: Callable[[Coroutine], None],
        registry=None,
        notifier=None,
        on_auto_resume: Callable[[str, AutoResumeContext], Awaitable[None]] | None = None,
        error_handler=None,
    ) -> None:
        self.variables = variables
        self.submit = submit
        self.registry = registry
        self.notifier = notifier
        self.on_auto_resume = on_auto_resume
        self.error_handler = error_handler

    def execute(self, rule: TriggerRule, session_id: str) -> None:
        """Prepare the rule's actions now and submit them to run in the background."""
        prepared: list[PreparedAction] = []
        for action in rule.actions:
            try:
                runner = self._prepare(action, session_id)
            except Exception as e:
                self.submit(self._report(e, rule, action))
                continue
            if runner is not None:
                prepared.append((action, runner))
        if prepared:
            self.submit(self._run(rule, session_id, prepared))

    async def _run(
        self, rule: TriggerRule, session_id: str, prepared: list[PreparedAction]
    ) -> None:
        for action, runner in prepared:
            try:
                await runner()
            except Exception as e:
                await self._report(e, rule, action)

    async def _report(
        self, error: Exception, rule: TriggerRule, action: TriggerAction
    ) -> None:
        context = f"trigger '{rule.name}' {action.kind}"
        if self.error_handler:
            await self.error_handler.handle(error, context)
        else:
            logger.error(f"[{context}] {type(error).__name__}: {error}")

    def _prepare(
        self, action: TriggerAction, session_id: str
    ) -> Callable[[], Awaitable[None]] | None:
        if action.kind == ACTION_SEND_TEXT:
            return self._prepare_send_text(action, session_id)
        if action.kind == ACTION_NOTIFY:
            return self._prepare_notify(action, session_id)
        if action.kind == ACTION_SET_STATE:
            return self._prepare_set_state(action, session_id)
        if action.kind == ACTION_AUTO_RESUME:
            return self._prepare_auto_resume(action, session_id)
        logger.warning(f"Unknown trigger action kind {action.kind!r}")
        return None

    # ── send_text ──

    def _prepare_send_text(self, action: TriggerAction, session_id: str):
        if not action.command or self.registry is None:
            return None
        # Unknown %tokens are typed as-is (printf formats, literal percents)
        data = (self.variables.interpolate(session_id, action.command) + "\n").encode(
            "utf-8"
        )

        async def run() -> None:
            written = await _maybe_await(self.registry.write(session_id, data))
            if written is False:
                logger.warning(f"Send failed: session {session_id} not found")
            else:
                logger.info(f"Sent {len(data)} bytes to session {session_id}")

        return run

    # ── notify ──

    def _prepare_notify(self, action: TriggerAction, session_id: str):
        if self.notifier is None:
            return None
        reserved = self._reserved_tokens(session_id)
        title = self.variables.interpolate(
            session_id, action.title or DEFAULT_NOTIFY_TITLE, reserved=reserved
        )
        body = self.variables.interpolate(
            session_id, action.message or "", reserved=reserved
        )

        async def run() -> None:
            await self.notifier.dispatch(title, body, "info", session_id)

        return run

    def _reserved_tokens(self, session_id: str) -> dict[str, str]:
        info = self.registry.describe(session_id) if self.registry else None
        if info is None:
            return {"title": "", "session": "Terminal", "display": "Terminal"}
        return {
            "title": info.title,
            "session": info.name,
            "display": self.display_name(session_id, info),
        }

    def display_name(self, session_id: str, info=None) -> str:
        """Name shown for a session: custom name with tokens resolved, else its title."""
        if info is None:
            info = self.registry.describe(session_id) if self.registry else None
        if info is None:
            return "Terminal"
        if info.custom_name:
            name = info.name
            if info.title:
                name = name.replace("%title", info.title)
            if "%" in name:
                name = self.variables.interpolate(session_id, name, clear_unresolved=True)
            return name
        return info.title or info.name

    # ── set_state ──

    def _prepare_set_state(self, action: TriggerAction, session_id: str):
        if self.registry is None:
            return None
        state = action.state or DEFAULT_SESSION_STATE

        async def run() -> None:
            await _maybe_await(self.registry.set_state(session_id, state))

        return run

    # ── auto_resume ──

    def _prepare_auto_resume(self, action: TriggerAction, session_id: str):
        if self.on_auto_resume is None:
            return None
        command = (
            self.variables.interpolate(session_id, action.command, clear_unresolved=True)
            if action.command
            else None
        )

        async def run() -> None:
            context: dict[str, Any] = {}
            if self.registry is not None:
                context = await _maybe_await(self.registry.get_context(session_id)) or {}
            foreground = context.get("command") or ""
            program = foreground.split()[0].rsplit("/", 1)[-1] if foreground.strip() else ""
            resume = AutoResumeContext(
                cwd=context.get("cwd"),
                ssh_command=foreground if program == "ssh" else None,
                command=command,
            )
            await self.on_auto_resume(session_id, resume)
            logger.info(f"Auto-resume armed for session {session_id} in {resume.cwd}")

        return run
