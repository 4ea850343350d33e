"""
In-flight request bookkeeping and the deferred-reply handle.

A deferred reply is a two-phase response. The caller receives an
acknowledgment immediately, can show a provisional "pending" state to its own
consumers, and later receives the authoritative result:

::

    reply = dispatcher.send_deferred("POST", "/channels/1/messages", body)
    show_pending(reply.ack.correlation_id)
    result = await reply
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .responses import Result
from .routes import HTTPMethod


@dataclass(slots=True)
class PendingRequest:
    """
    One outstanding call.

    Owned by the dispatcher from registration until completion or timeout.
    """

    correlation_id: int
    """Identifier unique among the dispatcher's outstanding requests."""

    method: HTTPMethod
    """Request method."""

    path: str
    """Request path."""

    deadline: float
    """Event-loop time after which the call is abandoned."""

    task: asyncio.Task[Any] | None = field(default=None, repr=False)
    """Task performing the HTTP exchange, once started."""

    cancel_count: int = 0
    """Number of times the in-flight call was actually cancelled. Never above 1."""

    @property
    def cancelled(self) -> bool:
        """True once the call has been cancelled."""
        return self.cancel_count > 0

    def remaining(self) -> float:
        """Seconds until the deadline, floored at zero."""
        return max(0.0, self.deadline - asyncio.get_running_loop().time())

    def cancel(self) -> bool:
        """
        Cancel the in-flight call.

        Idempotent: only the first call has an effect. Cancellation is
        best-effort; the remote may still complete work it already started.

        Returns:
            True if this call performed the cancellation.
        """
        if self.cancelled:
            return False
        self.cancel_count += 1
        if self.task is not None and not self.task.done():
            self.task.cancel()
        return True


@dataclass(frozen=True, slots=True)
class Acknowledgement:
    """Immediate receipt for a deferred call."""

    correlation_id: int
    """Correlation id of the underlying request."""

    method: HTTPMethod
    """Request method."""

    path: str
    """Request path."""

    acknowledged_at: float = field(default_factory=time.time)
    """Wall-clock time the call was accepted."""


@dataclass(slots=True)
class DeferredReply:
    """
    Handle to the eventual result of a deferred call.

    Await it, or register a callback. Awaiting never raises for remote or
    network failures: the result is a ``Success`` or a ``ClassifiedError``.
    """

    ack: Acknowledgement
    """Receipt returned at submission time."""

    _future: asyncio.Future[Result] = field(repr=False)
    """Resolved once with the authoritative result."""

    _pending: PendingRequest = field(repr=False)
    """The outstanding request backing this reply."""

    def __await__(self):
        # Shielded so an impatient awaiter does not cancel the request itself.
        return asyncio.shield(self._future).__await__()

    def done(self) -> bool:
        """True once the result is available."""
        return self._future.done()

    def result(self) -> Result:
        """
        Return the result.

        Raises:
            asyncio.InvalidStateError: If the call has not completed yet.
        """
        return self._future.result()

    def add_done_callback(self, callback: Callable[[Result], Any]) -> None:
        """Call ``callback(result)`` once the result is available."""
        self._future.add_done_callback(lambda future: callback(future.result()))

    def cancel(self) -> bool:
        """
        Cancel the call. Idempotent.

        The reply then resolves to an ``InternalError`` reporting the
        cancellation.

        Returns:
            True if this call performed the cancellation.
        """
        return self._pending.cancel()
