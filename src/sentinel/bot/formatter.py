"""Message formatting — HTML mode for Telegram."""

from __future__ import annotations

import html

from sentinel.db.models import AutoResumeContext, SessionInfo, TriggerRule

SEVERITY_EMOJI = {
    "info": "🔔",
    "warning": "⚠️",
    "error": "🔴",
}


def bold(text: str) -> str:
    return f"<b>{html.escape(text)}</b>"


def mono(text: str) -> str:
    return f"<code>{html.escape(text)}</code>"


def format_notification(title: str, body: str, severity: str = "info") -> str:
    """Format a trigger notification.

    Args:
        title: Notification title (already interpolated).
        body: Notification body (already interpolated), may be empty.
        severity: ``'info'``, ``'warning'`` or ``'error'``.

    Returns:
        HTML string like ``'🔔 <b>title</b>\\nbody'``.
    """
    emoji = SEVERITY_EMOJI.get(severity, SEVERITY_EMOJI["info"])
    text = f"{emoji} {bold(title)}"
    if body:
        text += f"\n{html.escape(body)}"
    return text


def format_trigger_line(rule: TriggerRule) -> str:
    status = "✅" if rule.enabled else "⏸"
    scope = f" [{', '.join(rule.workspaces)}]" if rule.workspaces else ""
    return (
        f"{status} #{rule.id} {bold(rule.name)} — {mono(rule.pattern)} "
        f"({rule.match_mode}, {rule.hit_count} hits){html.escape(scope)}"
    )


def format_session_line(info: SessionInfo, state: str | None = None) -> str:
    flag = {"question": " ❓", "alert": " ❗"}.get(state or "", "")
    return f"{mono(info.id)} {html.escape(info.name)} ({html.escape(info.workspace_id or '-')}){flag}"


def format_variables(session_name: str, variables: dict[str, str]) -> str:
    if not variables:
        return f"📭 No variables for {bold(session_name)}."
    lines = [f"📦 {bold(session_name)}\n"]
    for name, value in sorted(variables.items()):
        lines.append(f"{mono('%' + name)} = {mono(value)}")
    return "\n".join(lines)


def format_auto_resume(session_id: str, context: AutoResumeContext | None) -> str:
    if context is None:
        return f"📭 No auto-resume recorded for {mono(session_id)}."
    lines = [f"🔁 Auto-resume for {mono(session_id)}\n"]
    if context.ssh_command:
        lines.append(f"Remote: {mono(context.ssh_command)}")
    lines.append(f"Directory: {mono(context.cwd or '-')}")
    lines.append(f"Command: {mono(context.command or '-')}")
    return "\n".join(lines)
