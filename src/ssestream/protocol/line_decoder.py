"""Incremental line splitting for event stream bodies.

Only CRLF, CR and LF end a line. Other Unicode line separators (U+2028,
form feed, ...) are payload, unlike ``str.splitlines()``.
"""

from __future__ import annotations

import re

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class LineDecoder:
    """Splits text chunks into lines, buffering partial lines between chunks."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[str]:
        """Feed a chunk of text, return any complete lines without terminators."""
        self._buffer += chunk

        # A trailing CR may be the first half of a CRLF split across chunks
        held = ""
        if self._buffer.endswith("\r"):
            self._buffer, held = self._buffer[:-1], "\r"

        lines = _LINE_BREAK.split(self._buffer)
        self._buffer = lines.pop() + held
        return lines

    def flush(self) -> list[str]:
        """Return the unterminated last line, if any, at end of stream."""
        if not self._buffer:
            return []
        line, self._buffer = self._buffer, ""
        if line.endswith("\r"):
            line = line[:-1]
        return [line]
