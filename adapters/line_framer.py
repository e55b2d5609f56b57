"""
line_framer.py — Splits decoded stream text into newline-terminated lines

Only complete lines are emitted. The trailing fragment after the last LF is
kept until more text arrives or the stream ends.
"""

from __future__ import annotations

from typing import List


class LineFramer:
    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Partial line waiting for its terminator. Never contains LF."""
        return self._buffer

    def feed(self, text: str) -> List[str]:
        """Append text and return every line it completed, in arrival order."""
        if not text:
            return []
        lines = (self._buffer + text).split("\n")
        self._buffer = lines.pop()
        return lines

    def flush(self) -> List[str]:
        """Emit the residual fragment as a final line (only if non-empty)."""
        if not self._buffer:
            return []
        line, self._buffer = self._buffer, ""
        return [line]
