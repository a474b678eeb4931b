# session lifecycle states and the events that drive them

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from warelay.handler.messages import InboundMessage


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    PAIRING = "pairing"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.AUTH_FAILED, SessionState.DISCONNECTED)


class SessionEventKind(str, Enum):
    PAIRING = "pairing"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"
    LOADING = "loading"
    MESSAGE = "message"


# Allowed lifecycle moves. UNINITIALIZED → READY happens when stored
# credentials restore the session without a new pairing code, and
# PAIRING → PAIRING when the provider rotates the code. The provider can drop
# the connection before it ever reports ready.
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset(
        {SessionState.PAIRING, SessionState.READY, SessionState.DISCONNECTED}
    ),
    SessionState.PAIRING: frozenset(
        {
            SessionState.PAIRING,
            SessionState.READY,
            SessionState.AUTH_FAILED,
            SessionState.DISCONNECTED,
        }
    ),
    SessionState.READY: frozenset({SessionState.DISCONNECTED}),
    SessionState.AUTH_FAILED: frozenset(),
    SessionState.DISCONNECTED: frozenset(),
}

_KIND_TO_STATE: dict[SessionEventKind, SessionState] = {
    SessionEventKind.PAIRING: SessionState.PAIRING,
    SessionEventKind.READY: SessionState.READY,
    SessionEventKind.AUTH_FAILED: SessionState.AUTH_FAILED,
    SessionEventKind.DISCONNECTED: SessionState.DISCONNECTED,
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class SessionEvent:
    """One notification from a session transport.

    Only the fields relevant to ``kind`` are populated:
        * PAIRING      → ``code``
        * AUTH_FAILED  → ``reason``
        * DISCONNECTED → ``reason``
        * LOADING      → ``percent``, ``text``
        * MESSAGE      → ``message``
    """

    kind: SessionEventKind
    label: str = ""
    code: str | None = None
    reason: str | None = None
    percent: int | None = None
    text: str | None = None
    message: InboundMessage | None = None

    @property
    def target_state(self) -> SessionState | None:
        """The lifecycle state this event moves to, or None if informational."""
        return _KIND_TO_STATE.get(self.kind)
