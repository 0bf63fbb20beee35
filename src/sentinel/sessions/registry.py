"""Session registry — tmux panes as trigger sessions, via libtmux."""

from __future__ import annotations

import shlex
from dataclasses import dataclass

import libtmux
import psutil

from sentinel.db.models import SessionInfo
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.sessions.registry")

# Higher wins; a lower state never replaces a higher one until cleared
STATE_PRIORITY = {"alert": 1, "question": 2}


@dataclass
class DiscoveredPane:
    pane: libtmux.Pane
    workspace_id: str
    name: str

    @property
    def session_id(self) -> str:
        return self.pane.pane_id

    @property
    def instance(self) -> str:
        """Pid of the pane's shell; tells a reused pane id from the pane it once named."""
        return str(self.pane.pane_pid or "")


class SessionRegistry:
    """Track the tmux panes the engine watches.

    A pane id (``%3``) is the session identifier, and the tmux session
    owning the pane is its workspace.
    """

    def __init__(self, server: libtmux.Server | None = None, prefix: str = "") -> None:
        self._server = server
        self.prefix = prefix
        self._panes: dict[str, libtmux.Pane] = {}
        self._info: dict[str, SessionInfo] = {}
        self._states: dict[str, str] = {}

    @property
    def server(self) -> libtmux.Server:
        if self._server is None:
            self._server = libtmux.Server()
        return self._server

    # ── Discovery ──

    def discover(self) -> list[DiscoveredPane]:
        """List panes of every tmux session whose name starts with the prefix."""
        found = []
        for tmux_session in self.server.sessions:
            name = tmux_session.session_name or ""
            if not name.startswith(self.prefix):
                continue
            for window in tmux_session.windows:
                for pane in window.panes:
                    found.append(
                        DiscoveredPane(pane, name, window.window_name or "Terminal")
                    )
        return found

    def attach(
        self, pane: libtmux.Pane, workspace_id: str, name: str = "Terminal"
    ) -> SessionInfo:
        info = SessionInfo(id=pane.pane_id, name=name, workspace_id=workspace_id)
        self._panes[info.id] = pane
        self._info[info.id] = info
        logger.info(f"Watching pane {info.id} in '{workspace_id}' ({name})")
        return info

    def detach(self, session_id: str) -> None:
        self._panes.pop(session_id, None)
        self._info.pop(session_id, None)
        self._states.pop(session_id, None)

    def list_sessions(self) -> list[SessionInfo]:
        return list(self._info.values())

    def resolve(self, identifier: str) -> str | None:
        """Resolve a pane id or session name (case-insensitive) to a session id."""
        if identifier in self._info:
            return identifier
        lowered = identifier.lower()
        for info in self._info.values():
            if info.name.lower() == lowered:
                return info.id
        return None

    def rename(self, session_id: str, name: str) -> SessionInfo | None:
        """Give a session a custom name (may contain ``%title`` and ``%variables``).

        Raises:
            ValueError: If the name is empty or longer than 50 characters.
        """
        if not name.strip():
            raise ValueError("Name cannot be empty")
        if len(name) > 50:
            raise ValueError("Name too long (max 50 chars)")
        info = self._info.get(session_id)
        if info is None:
            return None
        info.name = name
        info.custom_name = True
        return info

    # ── Engine collaborator interface ──

    def workspace_of(self, session_id: str) -> str | None:
        info = self._info.get(session_id)
        return info.workspace_id if info else None

    def describe(self, session_id: str) -> SessionInfo | None:
        """Session info with the pane title freshly read from tmux."""
        info = self._info.get(session_id)
        if info is None:
            return None
        info.title = self._query(session_id, "#{pane_title}") or ""
        return info

    def write(self, session_id: str, data: bytes) -> bool:
        """Type bytes into a pane; a trailing newline becomes Enter.

        Returns:
            ``True`` if the input was sent, ``False`` if the pane is unknown.
        """
        pane = self._panes.get(session_id)
        if pane is None:
            return False
        text = data.decode("utf-8", errors="replace")
        enter = text.endswith("\n")
        if enter:
            text = text[:-1]
        pane.send_keys(text, enter=enter, literal=True)
        logger.info(f"Sent input to pane {session_id} ({len(text)} chars)")
        return True

    def set_state(self, session_id: str, state: str) -> None:
        current = self._states.get(session_id)
        if current and STATE_PRIORITY.get(current, 0) > STATE_PRIORITY.get(state, 0):
            return
        self._states[session_id] = state
        logger.info(f"Pane {session_id} marked '{state}'")

    def get_state(self, session_id: str) -> str | None:
        return self._states.get(session_id)

    def clear_state(self, session_id: str) -> bool:
        """Drop a pane's state flag.

        Returns:
            ``True`` if a flag was set.
        """
        return self._states.pop(session_id, None) is not None

    def get_context(self, session_id: str) -> dict[str, str | None]:
        """Working directory and full foreground command line of a pane."""
        return {
            "cwd": self._query(session_id, "#{pane_current_path}"),
            "command": self._foreground_command(session_id),
        }

    def _foreground_command(self, session_id: str) -> str | None:
        """Command line of the pane's foreground process.

        tmux only reports the process name (``ssh``), so the arguments are
        read from the newest descendant of the pane's shell with that name.
        """
        name = self._query(session_id, "#{pane_current_command}")
        pid = self._query(session_id, "#{pane_pid}")
        if not name or not pid:
            return name
        try:
            children = psutil.Process(int(pid)).children(recursive=True)
            proc = next((p for p in reversed(children) if p.name() == name), None)
            if proc is None:
                return name
            return shlex.join(proc.cmdline())
        except (psutil.Error, ValueError) as e:
            logger.debug(f"Could not read foreground command of pane {session_id}: {e}")
            return name

    def _query(self, session_id: str, fmt: str) -> str | None:
        pane = self._panes.get(session_id)
        if pane is None:
            return None
        lines = pane.display_message(fmt, get_text=True)
        return lines[0] if lines else None
