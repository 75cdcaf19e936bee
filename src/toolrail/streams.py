"""Output sinks for incremental token delivery."""

from __future__ import annotations

import sys
from typing import TextIO

__all__ = ["NullStream", "BufferedStream", "ConsoleStream"]


class NullStream:
    """Sink that discards everything; used for non-interactive runs."""

    def write(self, token: str) -> None:
        return None

    def end(self) -> None:
        return None


class BufferedStream:
    """Sink that collects tokens in memory."""

    def __init__(self) -> None:
        self.tokens: list[str] = []
        self.closed = False

    def write(self, token: str) -> None:
        if self.closed:
            raise RuntimeError("write() called after end()")
        self.tokens.append(token)

    def end(self) -> None:
        self.closed = True

    @property
    def text(self) -> str:
        return "".join(self.tokens)


class ConsoleStream:
    """Sink that writes tokens straight to a text stream (stdout by default)."""

    def __init__(self, target: TextIO | None = None, *, newline_on_end: bool = True) -> None:
        self._target = target or sys.stdout
        self._newline_on_end = newline_on_end

    def write(self, token: str) -> None:
        self._target.write(token)
        self._target.flush()

    def end(self) -> None:
        if self._newline_on_end:
            self._target.write("\n")
        self._target.flush()
