"""Slash command handlers for the Telegram bot."""

from __future__ import annotations

import re

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from sentinel.bot.formatter import (
    bold,
    format_auto_resume,
    format_session_line,
    format_trigger_line,
    format_variables,
    mono,
)
from sentinel.db import queries
from sentinel.db.models import (
    ACTION_SEND_TEXT,
    MATCH_REGEX,
    TriggerAction,
    TriggerRule,
)
from sentinel.sessions.registry import SessionRegistry
from sentinel.triggers import rules as trigger_rules
from sentinel.triggers.condition import ConditionCache
from sentinel.triggers.engine import TriggerEngine
from sentinel.triggers.patterns import PatternCompiler
from sentinel.triggers.rules import RuleSource
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.bot.commands")

router = Router()

MAX_PATTERN_LENGTH = 256

# These get injected at startup
_engine: TriggerEngine | None = None
_rule_source: RuleSource | None = None
_registry: SessionRegistry | None = None


def set_engine(engine: TriggerEngine) -> None:
    global _engine
    _engine = engine


def set_rule_source(source: RuleSource) -> None:
    global _rule_source
    _rule_source = source


def set_registry(registry: SessionRegistry) -> None:
    global _registry
    _registry = registry


def _eng() -> TriggerEngine:
    if _engine is None:
        raise RuntimeError("Trigger engine not initialized")
    return _engine


def _rules() -> RuleSource:
    if _rule_source is None:
        raise RuntimeError("Rule source not initialized")
    return _rule_source


def _reg() -> SessionRegistry:
    if _registry is None:
        raise RuntimeError("Session registry not initialized")
    return _registry


# ── /start ──


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    await message.answer(
        "🛰️ <b>Sentinel</b>\n\n"
        "Watches your tmux panes and reacts to what they print.\n"
        "Triggers can type into a pane, notify you here, flag a pane\n"
        "or remember how to resume a session.\n\n"
        "Type /help for all commands.",
        parse_mode="HTML",
    )


# ── /help ──


@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    await message.answer(
        "📖 <b>Command Reference</b>\n\n"
        "<b>Sessions</b>\n"
        "/sessions — watched panes\n"
        "/sessions rename &lt;pane&gt; &lt;name&gt; — custom name (%title, %vars)\n"
        "/sessions clear &lt;pane&gt; — drop the ❓/❗ flag\n"
        "/sessions resume &lt;pane&gt; — recorded auto-resume\n"
        "/vars &lt;pane|name&gt; [clear] — captured variables\n\n"
        "<b>Triggers</b>\n"
        "/triggers list\n"
        '/triggers add "pattern" "text to send"\n'
        '/triggers edit &lt;#&gt; "pattern"\n'
        "/triggers enable|disable|remove &lt;#&gt;\n"
        "/triggers pause | resume",
        parse_mode="HTML",
    )


# ── /sessions ──


@router.message(Command("sessions"))
async def cmd_sessions(message: Message) -> None:
    reg = _reg()
    args = (message.text or "").split(maxsplit=3)
    subcmd = args[1] if len(args) > 1 else "list"

    if subcmd == "list":
        sessions = reg.list_sessions()
        if not sessions:
            await message.answer("📭 No panes are being watched.")
            return
        lines = [f"🖥️ <b>Watched panes</b> ({len(sessions)})\n"]
        for info in sessions:
            lines.append(format_session_line(info, reg.get_state(info.id)))
        await message.answer("\n".join(lines), parse_mode="HTML")
        return

    if subcmd not in ("rename", "clear", "resume"):
        await message.answer(
            "Usage: /sessions [rename &lt;pane&gt; &lt;name&gt; | clear &lt;pane&gt; "
            "| resume &lt;pane&gt;]",
            parse_mode="HTML",
        )
        return
    if len(args) < 3:
        await message.answer(f"Usage: /sessions {subcmd} &lt;pane|name&gt;", parse_mode="HTML")
        return
    session_id = reg.resolve(args[2])
    if session_id is None:
        await message.answer(f"❌ Session not found: {args[2]}")
        return

    if subcmd == "rename":
        if len(args) < 4:
            await message.answer(
                "Usage: /sessions rename &lt;pane|name&gt; &lt;new name&gt;", parse_mode="HTML"
            )
            return
        try:
            reg.rename(session_id, args[3])
        except ValueError as e:
            await message.answer(f"❌ {e}")
            return
        await message.answer(
            f"✏️ {mono(session_id)} is now {bold(_eng().display_name(session_id))}",
            parse_mode="HTML",
        )

    elif subcmd == "clear":
        if reg.clear_state(session_id):
            await message.answer(f"🧹 Cleared flag on {mono(session_id)}", parse_mode="HTML")
        else:
            await message.answer(f"{mono(session_id)} has no flag", parse_mode="HTML")

    else:
        context = await queries.get_auto_resume(session_id)
        await message.answer(format_auto_resume(session_id, context), parse_mode="HTML")


# ── /vars ──


@router.message(Command("vars"))
async def cmd_vars(message: Message) -> None:
    args = (message.text or "").split()
    if len(args) < 2:
        await message.answer("Usage: /vars &lt;pane|name&gt; [clear]", parse_mode="HTML")
        return

    session_id = _reg().resolve(args[1])
    if session_id is None:
        await message.answer(f"❌ Session not found: {args[1]}")
        return

    engine = _eng()
    name = engine.display_name(session_id)
    if len(args) > 2 and args[2] == "clear":
        engine.clear_variables(session_id)
        await message.answer(f"🧹 Cleared variables for {bold(name)}", parse_mode="HTML")
        return

    await message.answer(
        format_variables(name, engine.get_variables(session_id)), parse_mode="HTML"
    )


# ── /triggers ──


@router.message(Command("triggers"))
async def cmd_triggers(message: Message) -> None:
    source = _rules()
    args = (message.text or "").split(maxsplit=2)
    subcmd = args[1] if len(args) > 1 else "list"

    if subcmd == "list":
        all_rules = await trigger_rules.get_all_rules()
        if not all_rules:
            await message.answer(
                '📋 No triggers.\n\nUse /triggers add "pattern" "text" to create one.'
            )
            return
        lines = ["📋 <b>Triggers</b>\n"]
        lines.extend(format_trigger_line(r) for r in all_rules)
        await message.answer("\n".join(lines), parse_mode="HTML")

    elif subcmd == "add":
        rest = args[2] if len(args) > 2 else ""
        parts = re.findall(r'"([^"]*)"', rest)
        if len(parts) < 2:
            await message.answer('Usage: /triggers add "pattern" "text to send"')
            return
        pattern, command = parts[0], parts[1]
        if len(pattern) > MAX_PATTERN_LENGTH:
            await message.answer(
                f"❌ Pattern too long (max {MAX_PATTERN_LENGTH} characters)."
            )
            return
        if PatternCompiler().compile(pattern, MATCH_REGEX) is None:
            await message.answer("❌ Invalid regex pattern.")
            return
        rule_id = await source.add(
            TriggerRule(
                name=pattern[:40],
                pattern=pattern,
                match_mode=MATCH_REGEX,
                actions=[TriggerAction(kind=ACTION_SEND_TEXT, command=command)],
            )
        )
        await message.answer(
            f"✅ Added trigger #{rule_id}: {mono(pattern)} → {mono(command)}",
            parse_mode="HTML",
        )

    elif subcmd == "edit":
        rest = args[2] if len(args) > 2 else ""
        m = re.match(r'(\d+)\s+"([^"]*)"', rest)
        if not m:
            await message.answer('Usage: /triggers edit &lt;#&gt; "pattern"', parse_mode="HTML")
            return
        rule_id, pattern = int(m.group(1)), m.group(2)
        if len(pattern) > MAX_PATTERN_LENGTH:
            await message.answer(
                f"❌ Pattern too long (max {MAX_PATTERN_LENGTH} characters)."
            )
            return
        rule = await queries.get_trigger(rule_id)
        if rule is None:
            await message.answer(f"❌ Trigger #{rule_id} not found")
            return
        if rule.is_variable_mode:
            valid = ConditionCache().get(pattern) is not None
        else:
            valid = PatternCompiler().compile(pattern, rule.match_mode) is not None
        if not valid:
            await message.answer(f"❌ Invalid {rule.match_mode} pattern.")
            return
        rule.pattern = pattern
        await source.update(rule)
        await message.answer(
            f"✏️ Trigger #{rule_id} now matches {mono(pattern)}", parse_mode="HTML"
        )

    elif subcmd in ("enable", "disable", "remove"):
        try:
            rule_id = int(args[2])
        except (IndexError, ValueError):
            await message.answer(
                f"Usage: /triggers {subcmd} &lt;#&gt;", parse_mode="HTML"
            )
            return
        if subcmd == "remove":
            found = await source.remove(rule_id)
            done = f"🗑️ Removed trigger #{rule_id}"
        else:
            found = await source.set_enabled(rule_id, subcmd == "enable")
            done = f"{'✅' if subcmd == 'enable' else '⏸'} Trigger #{rule_id} {subcmd}d"
        await message.answer(done if found else f"❌ Trigger #{rule_id} not found")

    elif subcmd == "pause":
        await source.pause_all()
        await message.answer("⏸ All triggers disabled.")

    elif subcmd == "resume":
        await source.resume_all()
        await message.answer("▶️ All triggers enabled.")

    else:
        await message.answer(
            "Usage: /triggers &lt;list|add|edit|enable|disable|remove|pause|resume&gt;",
            parse_mode="HTML",
        )
