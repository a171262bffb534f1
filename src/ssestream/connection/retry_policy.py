"""Reconnection delay arbitration.

Three sources compete for the delay before the next connection attempt:

1. A server-supplied ``Retry-After`` on a 503 response. One-shot: used for
   the next reconnect only, then cleared.
2. The most recent in-stream ``retry:`` field. Sticky: governs every
   reconnect until another ``retry:`` field replaces it.
3. Exponential backoff on the consecutive-failure counter.

Server beats message, message beats backoff.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import structlog

from ssestream.protocol.event_builder import MAX_RETRY_MS

log = structlog.get_logger()

DEFAULT_RECONNECTION_TIME_MS = 3000
MAX_BACKOFF_EXPONENT = 12


def backoff_seconds(attempt: int, max_exponent: int = MAX_BACKOFF_EXPONENT) -> float:
    """Delay for the given consecutive failure count: min(attempt, cap) ** 2."""
    capped = min(max(attempt, 0), max_exponent)
    return float(capped * capped)


def parse_retry_after(
    value: str | None,
    unit: str = "ms",
    now: datetime | None = None,
) -> int | None:
    """Convert a ``Retry-After`` header value to milliseconds.

    Plain digits are read in ``unit`` ("ms" by project convention, "s" for
    servers following HTTP semantics). An HTTP-date becomes the time left
    until that date. Anything else, including a delay above ``MAX_RETRY_MS``,
    returns None.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    if value.isascii() and value.isdigit():
        if len(value) > len(str(MAX_RETRY_MS)):
            return None
        amount = int(value)
        milliseconds = amount * 1000 if unit == "s" else amount
    else:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        milliseconds = max(0, int((when - now).total_seconds() * 1000))

    if milliseconds > MAX_RETRY_MS:
        return None
    return milliseconds


class RetryPolicy:
    """Retry state owned by a single stream connection."""

    def __init__(
        self,
        default_ms: int = DEFAULT_RECONNECTION_TIME_MS,
        max_backoff_exponent: int = MAX_BACKOFF_EXPONENT,
    ) -> None:
        self.default_ms = default_ms
        self.max_backoff_exponent = max_backoff_exponent

        self.reconnection_time_ms: int = default_ms
        self.attempt: int = 0
        self.retry_set_by_server: bool = False
        # Last in-stream retry: value; None until the stream sends one
        self.message_retry_ms: int | None = None

    @property
    def retry_set_by_message(self) -> bool:
        return self.message_retry_ms is not None

    def set_by_server(self, milliseconds: int) -> None:
        """Override the next reconnect delay once (503 + Retry-After)."""
        self.reconnection_time_ms = milliseconds
        self.retry_set_by_server = True

    def set_by_message(self, milliseconds: int) -> None:
        """Use this delay for every reconnect until replaced."""
        self.message_retry_ms = milliseconds

    def on_open(self) -> None:
        """Connection accepted: forget failures and server overrides."""
        self.attempt = 0
        self.reconnection_time_ms = self.default_ms
        self.retry_set_by_server = False

    def next_delay(self) -> float:
        """Return the delay in seconds before the next attempt, updating state."""
        if self.retry_set_by_server:
            delay = self.reconnection_time_ms / 1000
            self.retry_set_by_server = False
            self.attempt = 0
            source = "server"
        elif self.message_retry_ms is not None:
            delay = self.message_retry_ms / 1000
            source = "message"
        else:
            delay = backoff_seconds(self.attempt, self.max_backoff_exponent)
            self.attempt += 1
            source = "backoff"

        log.debug("retry_delay_computed", source=source, delay=delay, attempt=self.attempt)
        return delay
