"""Session lifecycle states and allowed transitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SessionState(str, Enum):
    CREATED = "created"
    CONNECTING = "connecting"
    PROVISIONING = "provisioning"
    READY = "ready"
    RECONNECTING = "reconnecting"
    ERROR = "error"
    STOPPING = "stopping"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @classmethod
    def parse(cls, value: str) -> SessionState | None:
        """Parse a peer-reported state name, ignoring case."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


TERMINAL_STATES = frozenset({SessionState.STOPPED, SessionState.ERROR})

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset({SessionState.PROVISIONING}),
    SessionState.PROVISIONING: frozenset({SessionState.READY, SessionState.RECONNECTING}),
    SessionState.READY: frozenset({SessionState.RECONNECTING, SessionState.STOPPING}),
    SessionState.RECONNECTING: frozenset({SessionState.READY, SessionState.PROVISIONING}),
    SessionState.STOPPING: frozenset({SessionState.STOPPED}),
    SessionState.STOPPED: frozenset(),
    SessionState.ERROR: frozenset(),
}


def can_transition(old: SessionState, new: SessionState) -> bool:
    """Whether ``old -> new`` is allowed. Any non-terminal state may fail."""
    if old is new:
        return False
    if new is SessionState.ERROR:
        return not old.is_terminal
    # Closing a live session always passes through Stopping
    if new is SessionState.STOPPING and not old.is_terminal:
        return True
    return new in _TRANSITIONS[old]


@dataclass
class Session:
    """A remote session as seen by the client."""

    session_id: str | None = None
    state: SessionState = SessionState.CREATED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: str | None = None  # Last status string reported by the peer
    error: str | None = None
