"""Stream buffer — decoding, ANSI stripping and redraw detection per session."""

from __future__ import annotations

import codecs
import re

# CSI, OSC (BEL or ST terminated), charset designation, other two-byte ESC
# sequences, and C0 controls except \t \n \v \f
_ANSI_RE = re.compile(
    r"\x1b(?:\[[0-?]*[ -/]*[@-~]|\][^\x07\x1b]*(?:\x07|\x1b\\)|[()][0-9A-B]|[^\[\]()])"
    r"|[\x00-\x08\x0e-\x1f]"
)

# Cursor up, absolute cursor position, erase display
_REDRAW_RE = re.compile(r"\x1b\[(?:\d*A|\d*(?:;\d*)?[Hf]|[0-3]?J)")

DEFAULT_BUFFER_CAP = 4096


def strip_ansi(text: str) -> str:
    """Remove escape sequences, control codes and carriage returns.

    Args:
        text: Raw terminal text with potential escape sequences.

    Returns:
        Clean text suitable for pattern matching.
    """
    return _ANSI_RE.sub("", text).replace("\r", "")


def looks_like_redraw(raw: str) -> bool:
    """Whether an unstripped chunk repositions the cursor or erases the screen.

    Full-screen programs repaint existing content this way; such a chunk
    replaces the buffer instead of extending it.
    """
    return _REDRAW_RE.search(raw) is not None


class StreamBuffer:
    """Sliding window of recent stripped output, one per session."""

    def __init__(self, cap: int = DEFAULT_BUFFER_CAP) -> None:
        self.cap = cap
        self._buffers: dict[str, str] = {}
        self._decoders: dict[str, codecs.IncrementalDecoder] = {}

    def ingest(self, session_id: str, raw: bytes) -> str:
        """Decode a chunk and fold it into the session's buffer.

        Malformed byte sequences decode to replacement characters. A
        multi-byte character split across two chunks decodes correctly.

        Args:
            session_id: Session the chunk belongs to.
            raw: Raw output bytes.

        Returns:
            The updated buffer text.
        """
        decoder = self._decoders.get(session_id)
        if decoder is None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            self._decoders[session_id] = decoder
        text = decoder.decode(raw)
        clean = strip_ansi(text)

        if looks_like_redraw(text):
            buffer = clean
        else:
            buffer = self._buffers.get(session_id, "") + clean

        if len(buffer) > self.cap:
            buffer = buffer[-self.cap :]

        self._buffers[session_id] = buffer
        return buffer

    def get(self, session_id: str) -> str:
        return self._buffers.get(session_id, "")

    def consume(self, session_id: str, end: int) -> str:
        """Drop everything up to ``end`` and return what is left."""
        remainder = self._buffers.get(session_id, "")[end:]
        self._buffers[session_id] = remainder
        return remainder

    def discard(self, session_id: str) -> None:
        self._buffers.pop(session_id, None)
        self._decoders.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._buffers
