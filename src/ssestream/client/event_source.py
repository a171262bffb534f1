"""EventSource: the public SSE client.

Drives a StreamConnection from a background task, assembles lines into
events, feeds ``id:``/``retry:`` back into the connection for the next
attempt, and fans events and state changes out to subscribers.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Any

import httpx
import structlog

from ssestream.config import EventSourceConfig
from ssestream.connection.state_machine import ReadyState
from ssestream.connection.stream_connection import Credentials, ErrorHandler, StreamConnection
from ssestream.protocol.event_builder import EventBuilder, ServerSentEvent

from .observers import Observers

log = structlog.get_logger()


class EventSource:
    """Reconnecting Server-Sent Events client for a single URL.

    All callbacks run synchronously on the event source's background task,
    in the order the underlying connection produces them. Subscribers must
    not block: a slow callback delays reading the stream.
    """

    def __init__(
        self,
        url: str,
        config: EventSourceConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.config = config or EventSourceConfig()
        self.on_event: Observers[ServerSentEvent] = Observers("event")
        self.on_state_change: Observers[ReadyState] = Observers("state_change")

        self._builder = EventBuilder()
        self._connection = StreamConnection(url, self.config, http_client, headers)
        self._ready_state = ReadyState.CONNECTING
        self._error_handler: ErrorHandler | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    @property
    def last_event_id(self) -> str | None:
        return self._connection.last_event_id

    @property
    def connection(self) -> StreamConnection:
        return self._connection

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def register_error_handler(self, handler: ErrorHandler | None) -> None:
        """Set the handler called with (status_code, response) for non-200 responses.

        The handler decides whether a status is fatal, typically by calling
        ``stop()``. Otherwise the connection keeps retrying.
        """
        self._error_handler = handler

    def start(self, auth: Credentials | None = None) -> None:
        """Start connecting in the background. Must be called from a running loop."""
        if self.running:
            log.debug("event_source_already_running", url=self.url)
            return

        self._stopped = False
        self._builder.reset()
        self._connection.set_state_change_callback(self._handle_state_change)
        self._task = asyncio.create_task(self._run(auth), name=f"ssestream:{self.url}")
        log.info("event_source_started", url=self.url)

    def stop(self) -> None:
        """Stop the connection. No callbacks fire after this returns.

        Safe to call more than once, before ``start()``, or from inside a
        callback or error handler.
        """
        if self._task is None or self._stopped:
            return

        self._stopped = True
        self._connection.set_state_change_callback(None)
        if not self._task.done():
            self._task.cancel()
        self._builder.reset()

        if self._ready_state is not ReadyState.CLOSED:
            self._ready_state = ReadyState.CLOSED
            self.on_state_change.notify(ReadyState.CLOSED)
        log.info("event_source_stopped", url=self.url, last_event_id=self.last_event_id)

    async def aclose(self) -> None:
        """Stop and wait for the background task to finish."""
        self.stop()
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.wait([task])

    async def __aenter__(self) -> EventSource:
        self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _run(self, auth: Credentials | None) -> None:
        try:
            async with aclosing(self._connection.connect(auth, self._forward_error)) as lines:
                async for line in lines:
                    if self._stopped:
                        break
                    self._handle_line(line)
        except Exception:
            log.exception("event_source_failed", url=self.url)
            self.stop()

    def _forward_error(self, status: int, response: httpx.Response) -> None:
        if self._stopped or self._error_handler is None:
            return
        self._error_handler(status, response)

    def _handle_line(self, line: str | None) -> None:
        builder = self._builder
        builder.add_line(line)
        if not builder.is_done():
            return

        has_data = not builder.is_data_empty()
        event = builder.to_event()
        # Reset before dispatch so a callback that stops or reconnects never
        # sees a half-built record
        builder.reset()

        if event.id:
            self._connection.last_event_id = event.id
        if event.retry is not None:
            self._connection.retry.set_by_message(event.retry)
            log.debug("message_retry_set", url=self.url, retry_ms=event.retry)

        if not has_data:
            return
        self.on_event.notify(event)

    def _handle_state_change(self, state: ReadyState) -> None:
        if self._stopped:
            return
        self._ready_state = state
        self._builder.reset()
        log.info("ready_state_changed", url=self.url, state=state.value)
        self.on_state_change.notify(state)


def stop_on_status(source: EventSource, *statuses: int) -> ErrorHandler:
    """Build an error handler that stops ``source`` on the given statuses.

    With no statuses, any 4xx response is treated as fatal. Other statuses
    are left to the retry loop.
    """
    fatal = set(statuses)

    def handler(status: int, response: httpx.Response) -> None:
        is_fatal = status in fatal if fatal else 400 <= status < 500
        if not is_fatal:
            return
        log.warning("fatal_status", url=source.url, status=status)
        source.stop()

    return handler
