"""
Inbound gateway events.

Event kinds form an open set. The kinds a bot commonly handles are listed in
``EventKind``; anything else the remote sends still arrives as an
``EventEnvelope`` carrying the raw tag, and is routed to the catch-all handler
when no handler is registered for it.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import GatewayClient


class EventKind(str, Enum):
    """Well-known dispatch event names."""

    READY = "READY"
    RESUMED = "RESUMED"
    GUILD_CREATE = "GUILD_CREATE"
    GUILD_DELETE = "GUILD_DELETE"
    CHANNEL_CREATE = "CHANNEL_CREATE"
    MESSAGE_CREATE = "MESSAGE_CREATE"
    MESSAGE_UPDATE = "MESSAGE_UPDATE"
    MESSAGE_DELETE = "MESSAGE_DELETE"
    INTERACTION_CREATE = "INTERACTION_CREATE"
    PRESENCE_UPDATE = "PRESENCE_UPDATE"

    @classmethod
    def lookup(cls, tag: str) -> EventKind | None:
        """Return the matching member, or None for a kind outside the known set."""
        try:
            return cls(tag)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class EventEnvelope:
    """
    One inbound notification.

    Transient: handed to handlers and not retained by the client.
    """

    kind: str
    """Event tag as sent by the remote (e.g. "MESSAGE_CREATE")."""

    payload: Any
    """Event body. Opaque to the client."""

    sequence: int | None = None
    """Dispatch sequence number, when the transport supplies one."""

    received_at: float = field(default_factory=time.time)
    """Wall-clock arrival time."""

    @property
    def known_kind(self) -> EventKind | None:
        """The event kind as a known member, or None if outside the known set."""
        return EventKind.lookup(self.kind)


EventHandler = Callable[["GatewayClient", EventEnvelope], Awaitable[None] | None]
"""
Handler signature.

The owning client is passed explicitly so handlers never reach for a
module-level client. Plain functions and coroutine functions are both accepted.
"""


def kind_tag(kind: EventKind | str) -> str:
    """Normalize a kind given as enum member or raw string to its tag."""
    if isinstance(kind, EventKind):
        return kind.value
    return kind
