"""Built-in trigger templates for Claude Code sessions."""

from __future__ import annotations

import copy
from typing import Any

from sentinel.db.models import (
    ACTION_AUTO_RESUME,
    ACTION_NOTIFY,
    ACTION_SET_STATE,
    MATCH_PLAIN_TEXT,
    MATCH_REGEX,
    MATCH_VARIABLE,
    TriggerAction,
    TriggerRule,
    VariableMapping,
)

CLAUDE_RESUME_COMMAND = (
    'if [ -n "%claudeSessionId" ]; then claude --resume %claudeSessionId; '
    'elif [ -n "%claudeResumeCommand" ]; then eval %claudeResumeCommand; '
    "else claude --continue; fi"
)

DEFAULT_TRIGGERS: dict[str, dict[str, Any]] = {
    "claude-resume": {
        "name": "Claude Resume",
        "description": "Captures the claude --resume command and session ID when Claude Code exits.",
        "pattern": r'Resume this session with:.*?(claude --resume (?:"[^"\n]+"|([^\s"\n]+)))',
        "match_mode": MATCH_REGEX,
        "cooldown": 1.0,
        "variables": [
            VariableMapping("claudeResumeCommand", 1),
            VariableMapping("claudeSessionId", 2),
        ],
        "actions": [
            TriggerAction(ACTION_NOTIFY, message="Captured: %claudeResumeCommand"),
        ],
    },
    "claude-session-id": {
        "name": "Claude Session ID",
        "description": "Captures the session UUID from Claude Code's /status output.",
        "pattern": r"Session\s*ID:\s*([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})",
        "match_mode": MATCH_REGEX,
        "cooldown": 0.3,
        "variables": [VariableMapping("claudeSessionId", 1)],
        "actions": [
            TriggerAction(ACTION_NOTIFY, message="Captured: claudeSessionId `%claudeSessionId`"),
        ],
    },
    "claude-question": {
        "name": "Claude Asking Question",
        "description": "Detects when Claude Code stops to ask a question or request confirmation.",
        "pattern": "(Do you want to proceed?|Do you want to make this edit|Enter to confirm · Esc to cancel)",
        "match_mode": MATCH_PLAIN_TEXT,
        "cooldown": 0.3,
        "variables": [],
        "actions": [
            TriggerAction(ACTION_NOTIFY, message="Claude needs your attention."),
            TriggerAction(ACTION_SET_STATE, state="question"),
        ],
    },
    "claude-plan-ready": {
        "name": "Claude Plan Ready",
        "description": "Detects when Claude has a plan ready for review.",
        "pattern": "has written up a plan and is ready to execute",
        "match_mode": MATCH_PLAIN_TEXT,
        "cooldown": 0.3,
        "variables": [],
        "actions": [
            TriggerAction(ACTION_SET_STATE, state="alert"),
            TriggerAction(ACTION_NOTIFY, message="Claude has a plan ready for review"),
        ],
    },
    "claude-compacting": {
        "name": "Claude Compacting",
        "description": "Notifies when Claude Code is compacting the conversation context.",
        "pattern": "Compacting conversation…",
        "match_mode": MATCH_PLAIN_TEXT,
        "cooldown": 0.3,
        "variables": [],
        "actions": [TriggerAction(ACTION_NOTIFY, message="Claude is compacting...")],
    },
    "claude-compaction-complete": {
        "name": "Claude Compaction Complete",
        "description": "Marks the session when conversation compaction finishes.",
        "pattern": "Conversation compacted",
        "match_mode": MATCH_PLAIN_TEXT,
        "cooldown": 0.3,
        "variables": [],
        "actions": [TriggerAction(ACTION_SET_STATE, state="alert")],
    },
    "claude-auto-resume": {
        "name": "Claude Auto-Resume",
        "description": "Arms auto-resume once a Claude session ID or resume command is captured.",
        "pattern": "claudeSessionId || claudeResumeCommand",
        "match_mode": MATCH_VARIABLE,
        "cooldown": 5.0,
        "variables": [],
        "actions": [TriggerAction(ACTION_AUTO_RESUME, command=CLAUDE_RESUME_COMMAND)],
    },
}

_TEMPLATE_FIELDS = (
    "name",
    "description",
    "pattern",
    "match_mode",
    "cooldown",
    "variables",
    "actions",
)


def _apply_template(rule: TriggerRule, template: dict[str, Any]) -> None:
    for name in _TEMPLATE_FIELDS:
        setattr(rule, name, copy.deepcopy(template[name]))


def seed_default_triggers(
    existing: list[TriggerRule],
    hidden_ids: list[str],
    enable_all: bool = False,
) -> list[TriggerRule] | None:
    """Merge the built-in templates into a user's trigger list.

    Linked defaults the user never edited are refreshed to the latest
    template. A user rule with a template's name is adopted as that default.
    Missing defaults are added at the front, disabled unless ``enable_all``.

    Args:
        existing: Current triggers.
        hidden_ids: Default ids the user removed and does not want back.
        enable_all: Enable newly seeded defaults.

    Returns:
        The updated list, or ``None`` when nothing changed.
    """
    rules = list(existing)
    changed = False

    for default_id, template in DEFAULT_TRIGGERS.items():
        if default_id in hidden_ids:
            continue

        linked = next((r for r in rules if r.default_id == default_id), None)
        if linked is not None:
            if not linked.user_modified:
                _apply_template(linked, template)
                changed = True
            continue

        adopted = next(
            (r for r in rules if not r.default_id and r.name == template["name"]), None
        )
        if adopted is not None:
            adopted.default_id = default_id
            if not adopted.description:
                adopted.description = template["description"]
            changed = True
            continue

        seeded = TriggerRule(enabled=enable_all, default_id=default_id)
        _apply_template(seeded, template)
        rules.insert(0, seeded)
        changed = True

    return rules if changed else None
