"""
Gateway: the persistent connection delivering push events.

Exports the client, its state machine, the event types and the transport
seam used to plug in a socket implementation.
"""

from .client import GatewayClient
from .credential import validate_credential
from .events import EventEnvelope, EventHandler, EventKind
from .state import ConnectionState, Session
from .transport import (
    GatewayClosed,
    GatewayConnection,
    GatewayFrame,
    GatewayOp,
    GatewayTransport,
    SessionInvalidated,
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "ConnectionState",
    "EventEnvelope",
    "EventHandler",
    "EventKind",
    "GatewayClient",
    "GatewayClosed",
    "GatewayConnection",
    "GatewayFrame",
    "GatewayOp",
    "GatewayTransport",
    "Session",
    "SessionInvalidated",
    "WebSocketConnection",
    "WebSocketTransport",
    "validate_credential",
]
