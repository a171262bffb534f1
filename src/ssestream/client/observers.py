"""Ordered observer lists for event source notifications."""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")


class Observers(Generic[T]):
    """Registered callbacks, notified synchronously in registration order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[Callable[[T], None]] = []

    def add(self, callback: Callable[[T], None]) -> Callable[[T], None]:
        """Register a callback. Returns it, so this also works as a decorator."""
        self._callbacks.append(callback)
        log.debug("observer_added", observers=self.name, total=len(self._callbacks))
        return callback

    def remove(self, callback: Callable[[T], None]) -> None:
        """Unregister a callback. Unknown callbacks are ignored."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            return
        log.debug("observer_removed", observers=self.name, total=len(self._callbacks))

    def notify(self, value: T) -> None:
        """Call every callback with ``value``. A failing callback is logged and skipped."""
        # Copy so callbacks may unsubscribe themselves while being notified
        for callback in list(self._callbacks):
            try:
                callback(value)
            except Exception:
                log.exception("observer_callback_error", observers=self.name)

    def __len__(self) -> int:
        return len(self._callbacks)
