"""
Diagnostic channel for transport-level observability.

Domain events (messages, interactions, guild updates) flow to the handlers a
bot registers with ``GatewayClient.on``. Transport-level incidents flow here
instead:

- reconnect attempts (the gateway's "shard error" notifications),
- request timeouts,
- terminal failures,
- exceptions raised by user handlers.

Keeping the two streams apart means a misbehaving connection never reaches
domain code, and a misbehaving handler never tears down the connection.

With no handler registered, an event is logged and dropped. Emission never
raises.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from botwire.types import ClassifiedError

logger = logging.getLogger(__name__)


class DiagnosticKind(str, Enum):
    """Category of a diagnostic event."""

    RECONNECT_ATTEMPT = "reconnect_attempt"
    """A reconnect is about to be attempted after the given delay."""

    CONNECT_FAILED = "connect_failed"
    """A connection or reconnection attempt failed."""

    TERMINAL_FAILURE = "terminal_failure"
    """The retry budget is exhausted; the session is gone."""

    REQUEST_TIMEOUT = "request_timeout"
    """A REST call exceeded its deadline and was cancelled."""

    HANDLER_ERROR = "handler_error"
    """A user-supplied event handler raised."""


@dataclass(frozen=True, slots=True)
class DiagnosticEvent:
    """One observability record."""

    kind: DiagnosticKind
    """What happened."""

    message: str
    """Human-readable summary."""

    error: ClassifiedError | None = None
    """Classified error attached to the incident, if any."""

    attempt: int | None = None
    """Reconnect attempt number (1-based), for reconnect events."""

    delay: float | None = None
    """Backoff delay in seconds preceding the attempt."""

    correlation_id: int | None = None
    """Correlation id of the REST call, for request events."""

    timestamp: float = field(default_factory=time.time)
    """Wall-clock time the event was created."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.attempt is not None:
            data["attempt"] = self.attempt
        if self.delay is not None:
            data["delay"] = self.delay
        if self.correlation_id is not None:
            data["correlation_id"] = self.correlation_id
        return data


DiagnosticHandler = Callable[[DiagnosticEvent], Awaitable[None] | None]
"""Handler signature. Plain functions and coroutine functions are both accepted."""


async def maybe_await(result: Awaitable[Any] | Any) -> Any:
    """Await the result of a handler call if it returned an awaitable."""
    if inspect.isawaitable(result):
        return await result
    return result


@dataclass(slots=True)
class DiagnosticChannel:
    """Fan-out of diagnostic events to registered handlers."""

    _handlers: list[DiagnosticHandler] = field(default_factory=list)
    """Handlers in registration order."""

    def subscribe(self, handler: DiagnosticHandler) -> None:
        """Register a handler. Handlers run in registration order."""
        self._handlers.append(handler)

    def unsubscribe(self, handler: DiagnosticHandler) -> None:
        """Remove a previously registered handler. Unknown handlers are ignored."""
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._handlers)

    async def emit(self, event: DiagnosticEvent) -> None:
        """
        Deliver an event to every handler.

        Never raises. Handler exceptions are logged and the remaining handlers
        still run.
        """
        if not self._handlers:
            logger.warning("Unhandled diagnostic %s: %s", event.kind.value, event.message)
            return

        for handler in list(self._handlers):
            try:
                await maybe_await(handler(event))
            except Exception:
                logger.exception("Diagnostic handler failed on %s", event.kind.value)
