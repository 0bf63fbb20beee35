"""Data models — dataclasses for triggers, sessions and stored records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

MATCH_REGEX = "regex"
MATCH_PLAIN_TEXT = "plain_text"
MATCH_VARIABLE = "variable"
MATCH_MODES = (MATCH_REGEX, MATCH_PLAIN_TEXT, MATCH_VARIABLE)

ACTION_SEND_TEXT = "send_text"
ACTION_NOTIFY = "notify"
ACTION_SET_STATE = "set_state"
ACTION_AUTO_RESUME = "auto_resume"
ACTION_KINDS = (ACTION_SEND_TEXT, ACTION_NOTIFY, ACTION_SET_STATE, ACTION_AUTO_RESUME)


@dataclass
class VariableMapping:
    """Copies one capture group of a match into a session variable.

    Attributes:
        name: Variable name, referenced elsewhere as ``%name``.
        group: 1-based capture group index.
        template: Optional value template; every ``%`` is replaced by the
            raw captured text.
    """

    name: str
    group: int = 1
    template: str | None = None


@dataclass
class TriggerAction:
    """One effect of a fired trigger.

    Attributes:
        kind: ``'send_text'``, ``'notify'``, ``'set_state'`` or ``'auto_resume'``.
        command: Text to send (``send_text``) or resume command (``auto_resume``).
        title: Notification title (``notify``), defaults to ``%display``.
        message: Notification body (``notify``).
        state: Session state tag (``set_state``), defaults to ``'alert'``.
    """

    kind: str
    command: str | None = None
    title: str | None = None
    message: str | None = None
    state: str | None = None


@dataclass
class TriggerRule:
    """A pattern-or-condition plus the actions it fires.

    Attributes:
        id: Primary key.
        name: Display name.
        pattern: Regex, tolerant plain text, or condition expression.
        match_mode: ``'regex'``, ``'plain_text'`` or ``'variable'``.
        cooldown: Minimum seconds between two firings for the same session.
        variables: Capture-group mappings (ignored in variable mode).
        actions: Ordered effects run on firing.
        workspaces: Workspace ids the rule is limited to (empty = all).
        enabled: Whether the rule is active.
        description: Free-form help text.
        default_id: Stable id of the built-in template this rule came from.
        user_modified: Set once a user edits a built-in rule.
        hit_count: Number of times the rule has fired.
        created_at: ISO timestamp of rule creation.
    """

    id: int | None = None
    name: str = ""
    pattern: str = ""
    match_mode: str = MATCH_REGEX
    cooldown: float = 0.0
    variables: list[VariableMapping] = field(default_factory=list)
    actions: list[TriggerAction] = field(default_factory=list)
    workspaces: list[str] = field(default_factory=list)
    enabled: bool = True
    description: str | None = None
    default_id: str | None = None
    user_modified: bool = False
    hit_count: int = 0
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def is_variable_mode(self) -> bool:
        return self.match_mode == MATCH_VARIABLE


@dataclass
class SessionInfo:
    """What the engine needs to know about a terminal session.

    Attributes:
        id: Session identifier (tmux pane id).
        name: Configured session name.
        workspace_id: Owning workspace (tmux session name), if known.
        title: Raw title reported by the running program.
        custom_name: Whether ``name`` was set by the user and should be
            shown instead of the program title.
    """

    id: str
    name: str = "Terminal"
    workspace_id: str | None = None
    title: str = ""
    custom_name: bool = False


@dataclass
class AutoResumeContext:
    """Where and how to reconnect a session automatically.

    Attributes:
        cwd: Working directory of the session when auto-resume was armed.
        ssh_command: Foreground ``ssh`` command for remote sessions.
        command: Command to run after reconnecting.
    """

    cwd: str | None = None
    ssh_command: str | None = None
    command: str | None = None


@dataclass
class Event:
    """An audit record of something the engine did.

    Attributes:
        id: Auto-incremented primary key.
        session_id: Session the event belongs to.
        event_type: ``'trigger_fired'``, ``'auto_resume'`` or ``'system'``.
        message: Human-readable description.
        trigger_id: Trigger that caused the event, if any.
        timestamp: ISO timestamp of the event.
    """

    id: int | None = None
    session_id: str | None = None
    event_type: str = "system"
    message: str = ""
    trigger_id: int | None = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
