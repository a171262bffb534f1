"""Connection ready-state machine.

CLOSED ──[attempt starts]──→ CONNECTING ──[headers validated]──→ OPEN
   ↑                              │                               │
   └──────[request failed]────────┘                               │
   └──────────────────[body ended / error / stop]─────────────────┘

CLOSED is terminal only when the event source is stopped; otherwise every
CLOSED is followed by a retry delay and a new CONNECTING.
"""

from __future__ import annotations

import enum

import structlog

log = structlog.get_logger()


class ReadyState(enum.Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


# Valid transitions: (from_state, to_state)
VALID_TRANSITIONS: set[tuple[ReadyState, ReadyState]] = {
    (ReadyState.CLOSED, ReadyState.CONNECTING),
    (ReadyState.CONNECTING, ReadyState.OPEN),
    (ReadyState.CONNECTING, ReadyState.CLOSED),  # request failed before validation
    (ReadyState.OPEN, ReadyState.CLOSED),
}


class InvalidTransition(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: ReadyState, to_state: ReadyState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} → {to_state.value}")


def validate_transition(from_state: ReadyState, to_state: ReadyState) -> None:
    """Validate a state transition, raising InvalidTransition if not allowed."""
    if (from_state, to_state) not in VALID_TRANSITIONS:
        raise InvalidTransition(from_state, to_state)


def transition(
    current: ReadyState,
    target: ReadyState,
    url: str,
    trigger: str = "",
) -> ReadyState:
    """Execute a validated state transition, logging the change."""
    validate_transition(current, target)
    log.debug(
        "state_transition",
        url=url,
        from_state=current.value,
        to_state=target.value,
        trigger=trigger,
    )
    return target
