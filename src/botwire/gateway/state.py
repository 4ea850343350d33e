"""Gateway connection state machine and session record."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto


class ConnectionState(Enum):
    """
    Lifecycle of a gateway connection.

    State Machine Diagram
    ---------------------
    ::

        DISCONNECTED --> CONNECTING --> CONNECTED <--> RECONNECTING --> FAILED
             ^               |              |               |             |
             +---------------+--------------+---------------+             |
             ^                                                            |
             +------------------------------------------------------------+

    Transitions
    -----------
    DISCONNECTED -> CONNECTING
        - Triggered when: ``connect`` is called
    CONNECTING -> CONNECTED
        - Triggered when: the handshake completes
    CONNECTING -> FAILED
        - Triggered when: the endpoint is unreachable
    CONNECTED -> RECONNECTING
        - Triggered when: the connection drops with a network error
    RECONNECTING -> CONNECTED
        - Triggered when: an attempt within budget succeeds
    RECONNECTING -> FAILED
        - Triggered when: the attempt budget is exhausted
    Any live state -> DISCONNECTED
        - Triggered when: ``disconnect`` is called
    FAILED -> CONNECTING
        - Triggered when: the caller starts over with ``connect``
    """

    DISCONNECTED = auto()
    """No session. Initial state, and terminal state after explicit teardown."""

    CONNECTING = auto()
    """Session establishment in progress."""

    CONNECTED = auto()
    """Session live; events are being delivered."""

    RECONNECTING = auto()
    """Connection lost; backing off between attempts."""

    FAILED = auto()
    """Unrecoverable failure. Terminal until ``connect`` is called again."""

    def can_transition_to(self, target: ConnectionState) -> bool:
        """
        Check if transition to target state is valid.

        Args:
            target: The proposed target state.

        Returns:
            True if the transition is allowed by the state machine rules.
        """
        return target in _VALID_TRANSITIONS.get(self, set())

    @property
    def is_live(self) -> bool:
        """True while a session exists or is being established."""
        return self in {
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
        }


_VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.CONNECTED: {
        ConnectionState.RECONNECTING,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.RECONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.FAILED: {ConnectionState.CONNECTING, ConnectionState.DISCONNECTED},
}
"""Valid state transitions for the gateway state machine."""


@dataclass(slots=True)
class Session:
    """
    One logical connection lifetime.

    Created by ``connect`` and destroyed by ``disconnect`` or by an
    unrecoverable failure. Only the owning client mutates it.
    """

    credential: str
    """Validated token used to identify."""

    state: ConnectionState = ConnectionState.CONNECTING
    """Current connection state."""

    session_id: str | None = None
    """Identity token issued by the remote on READY. Enables RESUME."""

    sequence: int | None = None
    """Last dispatch sequence number observed."""

    reconnect_attempts: int = 0
    """Reconnect attempts since the remote last accepted the session (READY or RESUMED)."""
