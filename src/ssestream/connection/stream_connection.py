"""Reconnecting SSE connection: the request/retry loop behind an event source.

Each attempt issues a GET for the stream, validates the response, yields the
decoded body lines and, once the body ends or anything goes wrong, publishes
CLOSED and waits for the delay chosen by the RetryPolicy before trying again.
The loop only ends when the consuming task is cancelled or the generator is
closed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Any

import httpx
import structlog

from ssestream.config import EventSourceConfig
from ssestream.protocol.line_decoder import LineDecoder

from .retry_policy import RetryPolicy, parse_retry_after
from .state_machine import ReadyState, transition

log = structlog.get_logger()

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"

ErrorHandler = Callable[[int, httpx.Response], None]
StateChangeCallback = Callable[[ReadyState], None]
Credentials = httpx.Auth | tuple[str, str]


def media_type(response: httpx.Response) -> str:
    """Content type without parameters such as ``;charset=utf-8``."""
    content_type = response.headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower()


def is_event_stream(response: httpx.Response) -> bool:
    return response.status_code == 200 and media_type(response) == EVENT_STREAM_MEDIA_TYPE


class StreamConnection:
    """Owns one retrying HTTP connection to an SSE endpoint."""

    def __init__(
        self,
        url: str,
        config: EventSourceConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.config = config or EventSourceConfig()
        self.retry = RetryPolicy(
            default_ms=self.config.default_reconnection_time_ms,
            max_backoff_exponent=self.config.max_backoff_exponent,
        )
        self.last_event_id: str | None = None
        self.state = ReadyState.CLOSED

        self._http_client = http_client
        self._headers = dict(headers or {})
        self._on_state_change: StateChangeCallback | None = None

    def set_state_change_callback(self, callback: StateChangeCallback | None) -> None:
        """Set the single sink for state transitions."""
        self._on_state_change = callback

    def build_headers(self) -> dict[str, str]:
        headers = {
            "Accept": EVENT_STREAM_MEDIA_TYPE,
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "Connection": "keep-alive",
            "User-Agent": self.config.user_agent,
        }
        headers.update(self.config.extra_headers)
        headers.update(self._headers)
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id
        return headers

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                self.config.read_timeout_seconds,
                connect=self.config.connect_timeout_seconds,
            ),
            follow_redirects=self.config.follow_redirects,
        )

    def _publish(self, target: ReadyState, trigger: str = "") -> None:
        self.state = transition(self.state, target, self.url, trigger)
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(target)
        except Exception:
            log.exception("state_change_callback_error", url=self.url, state=target.value)

    async def _wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def connect(
        self,
        auth: Credentials | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> AsyncIterator[str | None]:
        """Yield stream lines across reconnects until cancelled.

        ``None`` is yielded when a response body ends cleanly, so a trailing
        paragraph without a blank line is still completed.
        """
        if isinstance(auth, tuple):
            auth = httpx.BasicAuth(*auth)

        # A previous loop may have been cancelled mid-attempt
        self.state = ReadyState.CLOSED
        client = self._http_client or self._create_client()
        try:
            while True:
                async with aclosing(self._attempt(client, auth, error_handler)) as lines:
                    async for line in lines:
                        yield line

                delay = self.retry.next_delay()
                log.info(
                    "reconnect_scheduled",
                    url=self.url,
                    delay=delay,
                    attempt=self.retry.attempt,
                )
                await self._wait(delay)
        finally:
            if client is not self._http_client:
                await client.aclose()

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        auth: httpx.Auth | None,
        error_handler: ErrorHandler | None,
    ) -> AsyncIterator[str | None]:
        """Run one connection attempt. Cancellation skips the CLOSED publish."""
        request_kwargs: dict[str, Any] = {"headers": self.build_headers()}
        if auth is not None:
            request_kwargs["auth"] = auth

        self._publish(ReadyState.CONNECTING, "attempt")
        trigger = "stream_ended"
        try:
            async with client.stream("GET", self.url, **request_kwargs) as response:
                if await self._accept(response, error_handler):
                    self._publish(ReadyState.OPEN, f"status={response.status_code}")
                    self.retry.on_open()
                    log.info("connection_opened", url=self.url, last_event_id=self.last_event_id)

                    # Event streams are always UTF-8, whatever the charset says
                    response.encoding = "utf-8"
                    decoder = LineDecoder()
                    async for text in response.aiter_text():
                        for line in decoder.feed(text):
                            yield line
                    for line in decoder.flush():
                        yield line
                    yield None
                else:
                    trigger = "rejected"
        except httpx.HTTPError as exc:
            trigger = "transport_error"
            log.warning(
                "connection_failed",
                url=self.url,
                error=str(exc) or type(exc).__name__,
            )

        self._publish(ReadyState.CLOSED, trigger)

    async def _accept(
        self,
        response: httpx.Response,
        error_handler: ErrorHandler | None,
    ) -> bool:
        """Validate a response, escalating non-200 statuses to the error handler."""
        status = response.status_code
        if status != 200:
            # Read error body while response is still open
            await response.aread()
            log.warning(
                "unexpected_status",
                url=self.url,
                status=status,
                body=response.text[: self.config.error_body_limit],
            )
            if status == 503:
                retry_ms = parse_retry_after(
                    response.headers.get("retry-after"),
                    unit=self.config.retry_after_unit,
                )
                if retry_ms is not None:
                    self.retry.set_by_server(retry_ms)
                    log.info("server_retry_after", url=self.url, retry_ms=retry_ms)
            if error_handler is not None:
                try:
                    error_handler(status, response)
                except Exception:
                    log.exception("error_handler_failed", url=self.url, status=status)
            return False

        if not is_event_stream(response):
            log.warning(
                "not_an_event_stream",
                url=self.url,
                content_type=response.headers.get("content-type"),
            )
            return False
        return True
