"""Output monitor — stream a tmux pane's raw output into the trigger engine."""

from __future__ import annotations

import asyncio
import shlex
import time
from pathlib import Path

import libtmux

from sentinel.config import get_config
from sentinel.utils.logger import get_logger

logger = get_logger("sentinel.sessions.monitor")

MAX_READ_BYTES = 64 * 1024
REPLAY_BYTES = 64 * 1024
MAX_STREAM_BYTES = 4 * 1024 * 1024
LIVENESS_CHECK_S = 5.0


def stream_path_for(stream_dir: Path, session_id: str) -> Path:
    """File a pane's output is piped into (``%12`` → ``pane-12.log``)."""
    return stream_dir / f"pane-{session_id.lstrip('%')}.log"


class OutputMonitor:
    """Pipe a pane's output to a file with ``tmux pipe-pane`` and tail it.

    tmux hands over the raw byte stream, escape sequences included, which
    the engine needs for redraw detection. Output already in the file when
    the monitor starts (a daemon restart) is replayed with the engine's
    actions suppressed, so it can refresh variables without re-firing.
    """

    def __init__(
        self,
        pane: libtmux.Pane,
        session_id: str,
        engine,
        stream_path: Path,
        on_exit=None,
    ) -> None:
        self.pane = pane
        self.session_id = session_id
        self.engine = engine
        self.stream_path = stream_path
        self.on_exit = on_exit  # async callback(session_id)

        self.offset = 0
        self.idle_seconds: float = 0
        self.active_output: bool = False
        self._stop_event = asyncio.Event()
        self._last_liveness_check = 0.0

        cfg = get_config().monitor_config
        self._poll_default = cfg.get("poll_interval_ms", 250) / 1000
        self._poll_active = cfg.get("active_poll_interval_ms", 100) / 1000
        self._poll_idle = cfg.get("idle_poll_interval_ms", 1000) / 1000

    @property
    def poll_interval(self) -> float:
        if self.idle_seconds > 60:
            return self._poll_idle
        elif self.active_output:
            return self._poll_active
        return self._poll_default

    async def start(self) -> None:
        """Start piping and run the polling loop until stopped or the pane exits."""
        self._stop_event.clear()
        self._open_pipe()
        self.replay()
        logger.info(f"Monitor started for pane {self.session_id}")

        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                chunk = self.read_new()
                if chunk:
                    self.idle_seconds = 0
                    self.active_output = True
                    self.engine.on_session_output(self.session_id, chunk)
                else:
                    self.active_output = False
                    self.idle_seconds += time.monotonic() - started + self.poll_interval
                    if not await self._check_alive():
                        break
            except Exception as e:
                logger.error(f"Monitor error for pane {self.session_id}: {e}")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop the loop (interrupts sleep immediately) and close the pipe."""
        self._stop_event.set()
        self._close_pipe()
        logger.info(f"Monitor stopped for pane {self.session_id}")

    def replay(self) -> int:
        """Feed the tail of existing stream output to the engine with actions off.

        Returns:
            Number of bytes replayed.
        """
        try:
            size = self.stream_path.stat().st_size
        except FileNotFoundError:
            return 0
        start = max(0, size - REPLAY_BYTES)
        with open(self.stream_path, "rb") as f:
            f.seek(start)
            data = f.read(size - start)
        self.offset = size
        if data:
            with self.engine.suppressed(self.session_id):
                self.engine.on_session_output(self.session_id, data)
            logger.info(f"Replayed {len(data)} bytes for pane {self.session_id}")
        return len(data)

    def read_new(self) -> bytes:
        """Read bytes appended since the last call.

        The file is truncated once it grows past ``MAX_STREAM_BYTES``; tmux
        keeps appending to it from the start.
        """
        try:
            size = self.stream_path.stat().st_size
        except FileNotFoundError:
            return b""
        if size < self.offset:
            # Truncated elsewhere
            self.offset = 0
        if size == self.offset:
            return b""

        with open(self.stream_path, "rb") as f:
            f.seek(self.offset)
            data = f.read(MAX_READ_BYTES)
        self.offset += len(data)

        if self.offset >= MAX_STREAM_BYTES and self.offset == size:
            with open(self.stream_path, "r+b") as f:
                f.truncate(0)
            self.offset = 0
        return data

    async def _check_alive(self) -> bool:
        now = time.monotonic()
        if now - self._last_liveness_check < LIVENESS_CHECK_S:
            return True
        self._last_liveness_check = now
        try:
            alive = bool(self.pane.display_message("#{pane_id}", get_text=True))
        except Exception:
            alive = False
        if not alive:
            logger.info(f"Pane {self.session_id} is gone")
            if self.on_exit:
                await self.on_exit(self.session_id)
        return alive

    def _open_pipe(self) -> None:
        self.stream_path.parent.mkdir(parents=True, exist_ok=True)
        self.stream_path.touch(exist_ok=True)
        # Replaces any pipe left open by a previous run
        self.pane.cmd("pipe-pane", f"cat >> {shlex.quote(str(self.stream_path))}")

    def _close_pipe(self) -> None:
        try:
            self.pane.cmd("pipe-pane")
        except Exception as e:
            logger.warning(f"Could not close pipe for pane {self.session_id}: {e}")
