"""SSE line protocol: assembles raw stream lines into event records.

One paragraph of lines (terminated by a blank line or end of stream) becomes
one ServerSentEvent. The builder is fed one line at a time by the event source
and reset after every record and on every connection state change.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Largest accepted reconnection delay (about 24.8 days)
MAX_RETRY_MS = 2**31 - 1

@dataclass(frozen=True)
class ServerSentEvent:
    """A single Server-Sent Event."""

    id: str | None = None
    type: str = ""
    data: str = ""
    retry: int | None = None

    def encode(self) -> bytes:
        """Serialize back to SSE wire format."""
        lines: list[str] = []
        if self.type:
            lines.append(f"event: {self.type}")
        for data_line in self.data.split("\n"):
            lines.append(f"data: {data_line}")
        if self.id is not None:
            lines.append(f"id: {self.id}")
        if self.retry is not None:
            lines.append(f"retry: {self.retry}")
        lines.append("")  # blank line terminates event
        return ("\n".join(lines) + "\n").encode()


def parse_field(line: str) -> tuple[str, str]:
    """Split a non-comment line into (field, value)."""
    if ":" not in line:
        return line, ""
    field_name, _, value = line.partition(":")
    if value.startswith(" "):
        value = value[1:]
    return field_name, value


def parse_retry(value: str) -> int | None:
    """Parse a ``retry:`` value.

    Only plain ASCII digits are accepted, as in the W3C algorithm: signs,
    surrounding whitespace ("+5", " 5") and negative values make the field
    ignored rather than rounded to something usable. Values above
    ``MAX_RETRY_MS`` are ignored too.
    """
    if not (value.isascii() and value.isdigit()):
        return None
    if len(value) > len(str(MAX_RETRY_MS)):
        return None
    milliseconds = int(value)
    if milliseconds > MAX_RETRY_MS:
        return None
    return milliseconds


@dataclass
class EventBuilder:
    """Accumulates lines of one paragraph into a ServerSentEvent."""

    last_id: str | None = None
    event_type: str = ""
    retry: int | None = None
    _data: list[str] = field(default_factory=list)
    _saw_data: bool = False
    _done: bool = False

    def reset(self) -> None:
        self.last_id = None
        self.event_type = ""
        self.retry = None
        self._data = []
        self._saw_data = False
        self._done = False

    def is_done(self) -> bool:
        return self._done

    def is_data_empty(self) -> bool:
        """True when no ``data`` field was seen since the last reset.

        ``data:`` with an empty value still counts as data.
        """
        return not self._saw_data

    def add_line(self, line: str | None) -> None:
        """Feed one line, without its terminator. ``None`` means end of stream."""
        if not line:
            self._done = True
            return

        if line.startswith(":"):
            # Comment, ignore
            return

        field_name, value = parse_field(line)

        if field_name == "event":
            self.event_type = value
        elif field_name == "data":
            self._data.append(value)
            self._data.append("\n")
            self._saw_data = True
        elif field_name == "id":
            self.last_id = value
        elif field_name == "retry":
            retry = parse_retry(value)
            if retry is not None:
                self.retry = retry

    def to_event(self) -> ServerSentEvent:
        """Build the immutable record for the current paragraph."""
        data = "".join(self._data)
        if data.endswith("\n"):
            data = data[:-1]
        return ServerSentEvent(
            id=self.last_id,
            type=self.event_type,
            data=data,
            retry=self.retry,
        )
