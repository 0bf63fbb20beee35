"""Session discovery — attach monitors to tmux panes and detach vanished ones."""

from __future__ import annotations

import asyncio
from pathlib import Path

from sentinel.db import queries
from sentinel.db.models import SessionInfo
from sentinel.sessions.monitor import OutputMonitor, stream_path_for
from sentinel.sessions.registry import DiscoveredPane, SessionRegistry
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.sessions.recovery")


class SessionTracker:
    """Keeps one ``OutputMonitor`` running per watched pane.

    Stored state is keyed by pane id, which tmux hands out again after a
    server restart. Each pane's shell pid is stored next to it, and state
    left by a different pane under the same id is dropped before attaching.

    Args:
        registry: Registry the panes are attached to.
        engine: ``TriggerEngine`` receiving output and lifecycle calls.
        stream_dir: Directory holding the piped output files.
    """

    def __init__(self, registry: SessionRegistry, engine, stream_dir: Path) -> None:
        self.registry = registry
        self.engine = engine
        self.stream_dir = stream_dir
        self.monitors: dict[str, OutputMonitor] = {}
        self.tasks: dict[str, asyncio.Task] = {}
        self._purged = False

    async def recover_sessions(self) -> list[SessionInfo]:
        """Attach every matching pane that is not yet monitored.

        Persisted variables are loaded into the engine before the monitor
        starts, so conditions that were already true do not fire again.
        The first successful scan also drops stored state of panes that no
        longer exist.

        Returns:
            Sessions attached by this call.
        """
        attached = []
        try:
            discovered = self.registry.discover()
        except Exception as e:
            logger.warning(f"tmux server not reachable, nothing to attach: {e}")
            return []

        if not self._purged:
            await self.purge_stale({found.session_id for found in discovered})
            self._purged = True

        for found in discovered:
            if found.session_id in self.monitors:
                continue
            await self._claim(found)
            info = self.registry.attach(found.pane, found.workspace_id, found.name)
            values = await queries.load_variables(info.id)
            self.engine.on_session_load(info.id, values)

            monitor = OutputMonitor(
                found.pane,
                info.id,
                self.engine,
                stream_path_for(self.stream_dir, info.id),
                on_exit=self.on_pane_exit,
            )
            self.monitors[info.id] = monitor
            task = asyncio.create_task(monitor.start())
            task.add_done_callback(self._on_task_done)
            self.tasks[info.id] = task
            attached.append(info)
        return attached

    async def purge_stale(self, live_ids: set[str]) -> None:
        """Forget stored state and stream files of panes not in ``live_ids``."""
        for session_id in await queries.stored_session_ids() - live_ids:
            await self.forget(session_id)
        if not self.stream_dir.is_dir():
            return
        for path in self.stream_dir.glob("pane-*.log"):
            if f"%{path.stem.removeprefix('pane-')}" not in live_ids:
                path.unlink(missing_ok=True)

    async def forget(self, session_id: str) -> None:
        """Delete everything stored for a session, stream file included."""
        await queries.forget_session(session_id)
        stream_path_for(self.stream_dir, session_id).unlink(missing_ok=True)
        logger.info(f"Dropped stored state of pane {session_id}")

    async def on_pane_exit(self, session_id: str) -> None:
        """A pane closed: drop its state everywhere, including storage."""
        await self.detach(session_id)
        await self.forget(session_id)

    async def detach(self, session_id: str) -> None:
        monitor = self.monitors.pop(session_id, None)
        if monitor:
            await monitor.stop()
        task = self.tasks.pop(session_id, None)
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.engine.on_session_teardown(session_id)
        self.registry.detach(session_id)
        logger.info(f"Detached pane {session_id}")

    async def stop_all(self) -> None:
        """Stop every monitor without forgetting persisted state (daemon shutdown)."""
        for session_id in list(self.monitors):
            await self.detach(session_id)

    async def _claim(self, found: DiscoveredPane) -> None:
        """Record which pane owns an id, dropping state a previous owner left."""
        stored = await queries.get_pane_instance(found.session_id)
        if stored is not None and stored != found.instance:
            logger.info(f"Pane id {found.session_id} now names a different pane")
            await self.forget(found.session_id)
        await queries.set_pane_instance(found.session_id, found.instance)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception():
            logger.error(f"Monitor task failed: {task.exception()}")
