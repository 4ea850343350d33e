"""
Gateway client: session lifecycle, event delivery and reconnection.

The Problem
-----------
A bot keeps one long-lived connection open to the platform's gateway.
Events arrive on it continuously. Networks are unreliable: the socket drops,
the remote asks us to reconnect, a heartbeat goes unanswered. None of that
should reach the bot's domain handlers, and none of it should crash the host
process.

The client owns the connection and:

1. Validates the credential locally before touching the network
2. Delivers inbound events to handlers in arrival order, one at a time
3. Reconnects with exponential backoff when the connection drops
4. Reports every reconnect attempt and terminal failure on a diagnostic
   channel kept apart from domain events
5. Tears down deterministically on ``disconnect``

Handlers receive the client as their first argument. A handler never needs
a module-level client to reply or to inspect the session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from botwire.classify import classify_exception
from botwire.config import GatewayConfig
from botwire.diagnostics import (
    DiagnosticChannel,
    DiagnosticEvent,
    DiagnosticHandler,
    DiagnosticKind,
    maybe_await,
)
from botwire.metrics import (
    gateway_connected,
    gateway_events_dispatched,
    gateway_reconnect_attempts,
)
from botwire.types import (
    ClassifiedError,
    InternalError,
    NetworkError,
    NetworkFailure,
    ValidationError,
)

from .credential import validate_credential
from .events import EventEnvelope, EventHandler, EventKind, kind_tag
from .state import ConnectionState, Session
from .transport import (
    GatewayConnection,
    GatewayTransport,
    SessionInvalidated,
    WebSocketTransport,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GatewayClient:
    """
    Owns one gateway session and routes its events to handlers.

    Concurrency Model
    -----------------
    A single reader task consumes the connection. Handlers for an event run
    sequentially in registration order before the next event is read, so the
    arrival order is the delivery order.

    At most one session exists at a time. ``connect`` fails fast while a
    session is being established or is live.
    """

    transport: GatewayTransport
    """Opens connections. Injected so tests can use an in-memory fake."""

    config: GatewayConfig = field(default_factory=GatewayConfig)
    """Handshake timeout and reconnection policy."""

    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    """Backoff sleep. Replaceable so tests need not wait in real time."""

    _handlers: dict[str, list[EventHandler]] = field(default_factory=dict, repr=False)
    """Handlers by event tag, in registration order."""

    _unhandled: list[EventHandler] = field(default_factory=list, repr=False)
    """Catch-all handlers for events with no specific handler."""

    _diagnostics: DiagnosticChannel = field(default_factory=DiagnosticChannel, repr=False)
    """Transport-level observability channel."""

    _state: ConnectionState = ConnectionState.DISCONNECTED
    """Current connection state."""

    _session: Session | None = None
    """The active session, if any."""

    _connection: GatewayConnection | None = field(default=None, repr=False)
    """The live transport connection, if any."""

    _reader: asyncio.Task[None] | None = field(default=None, repr=False)
    """Background task reading the connection."""

    _closed: asyncio.Event | None = field(default=None, repr=False)
    """Set when the current session ends for any reason."""

    _terminal_error: ClassifiedError | None = None
    """Error that ended the last session, if it ended by failure."""

    @classmethod
    def create(cls, config: GatewayConfig | None = None) -> GatewayClient:
        """
        Create a client backed by the WebSocket transport.

        Args:
            config: Gateway configuration. Defaults are used if None.

        Returns:
            A disconnected client.
        """
        config = config or GatewayConfig()
        transport = WebSocketTransport(
            url=config.url,
            intents=config.intents,
            handshake_timeout=config.handshake_timeout,
        )
        return cls(transport=transport, config=config)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def session(self) -> Session | None:
        """The active session, or None when disconnected or failed."""
        return self._session

    @property
    def terminal_error(self) -> ClassifiedError | None:
        """Error that ended the last session, or None."""
        return self._terminal_error

    def handler_count(self, kind: EventKind | str) -> int:
        """Number of handlers registered for an event kind."""
        return len(self._handlers.get(kind_tag(kind), ()))

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def on(self, kind: EventKind | str, handler: EventHandler) -> None:
        """
        Register a handler for an event kind.

        Handlers for the same kind run in registration order. There is no
        limit on how many may be registered.

        Args:
            kind: Event kind, as a known member or a raw tag.
            handler: Called as ``handler(client, event)``.
        """
        self._handlers.setdefault(kind_tag(kind), []).append(handler)

    def off(self, kind: EventKind | str, handler: EventHandler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(kind_tag(kind))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def on_unhandled(self, handler: EventHandler) -> None:
        """Register a catch-all for events with no kind-specific handler."""
        self._unhandled.append(handler)

    def on_diagnostic(self, handler: DiagnosticHandler) -> None:
        """Register a handler on the diagnostic channel."""
        self._diagnostics.subscribe(handler)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, credential: str) -> ClassifiedError | None:
        """
        Establish a session.

        The credential is checked locally before any network call. Once the
        transport handshake completes, a reader task starts delivering events.

        Args:
            credential: Bot token, optionally prefixed with ``"Bot "``.

        Returns:
            None on success. On failure, the classified error; the client is
            then in FAILED.

        Raises:
            ValidationError: If the credential is malformed, or a session is
                already being established or live.
        """
        token = validate_credential(credential)

        # State is checked and advanced before the first await.
        #
        # A second concurrent call observes CONNECTING and fails fast.
        if self._state.is_live:
            raise ValidationError(f"connect() called while {self._state.name}")

        session = Session(credential=token)
        self._session = session
        self._terminal_error = None
        self._closed = asyncio.Event()
        self._transition(ConnectionState.CONNECTING)
        logger.info("Connecting to gateway")

        try:
            connection = await asyncio.wait_for(
                self.transport.open(token), timeout=self.config.handshake_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_exception(e)
            if self._session is not session:
                return error
            await self._diagnostics.emit(
                DiagnosticEvent(
                    kind=DiagnosticKind.CONNECT_FAILED,
                    message=f"Initial connection failed: {error.message}",
                    error=error,
                )
            )
            await self._fail(error)
            return error

        # disconnect() may have run while the handshake was in flight.
        if self._session is not session:
            await connection.close()
            return None

        self._connection = connection
        self._transition(ConnectionState.CONNECTED)
        self._reader = asyncio.create_task(self._run(connection), name="gateway-reader")
        logger.info("Gateway connected")
        return None

    async def disconnect(self) -> None:
        """
        Tear down the session.

        Cancels the reader and any pending reconnect, then closes the
        connection. No event is delivered after this returns. Idempotent.

        Safe to call from inside a handler: the remaining handlers for the
        current event are skipped.
        """
        if self._state is ConnectionState.DISCONNECTED:
            return

        self._transition(ConnectionState.DISCONNECTED)
        self._session = None

        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        await self._close_connection()
        if self._closed is not None:
            self._closed.set()
        logger.info("Gateway disconnected")

    async def wait_closed(self) -> ClassifiedError | None:
        """
        Wait until the current session ends.

        Returns:
            The terminal error if the session failed, None if it was
            disconnected explicitly.
        """
        if self._closed is not None:
            await self._closed.wait()
        return self._terminal_error

    # -------------------------------------------------------------------------
    # Reader
    # -------------------------------------------------------------------------

    async def _run(self, connection: GatewayConnection) -> None:
        """Read events until teardown, reconnecting after network failures."""
        current: GatewayConnection | None = connection
        while current is not None:
            error = await self._pump(current)
            if error is None:
                return
            current = await self._reconnect(error)

    async def _pump(self, connection: GatewayConnection) -> ClassifiedError | None:
        """
        Deliver events from one connection until it ends.

        Returns:
            The error that ended the connection, or None if the session was
            torn down from within a handler.
        """
        try:
            async for envelope in connection:
                await self._dispatch(envelope)
                if self._connection is not connection:
                    return None
        except asyncio.CancelledError:
            raise
        except SessionInvalidated as e:
            # The next handshake must IDENTIFY from scratch.
            if self._session is not None:
                self._session.session_id = None
                self._session.sequence = None
            error = classify_exception(e)
        except Exception as e:
            error = classify_exception(e)
        else:
            error = NetworkError(
                "Gateway connection ended",
                reason=NetworkFailure.CLOSED,
            )

        logger.warning("Gateway connection lost: %s", error.message)
        await self._close_connection()
        return error

    async def _dispatch(self, envelope: EventEnvelope) -> None:
        """Route one event to its handlers, or to the catch-all."""
        session = self._session
        if session is None:
            return

        if envelope.sequence is not None:
            session.sequence = envelope.sequence

        known = envelope.known_kind

        # READY carries the identity token needed to resume later.
        if known is EventKind.READY and isinstance(envelope.payload, dict):
            session_id = envelope.payload.get("session_id")
            if isinstance(session_id, str):
                session.session_id = session_id

        # A reconnect only counts as recovered once the remote accepts the session.
        if known in (EventKind.READY, EventKind.RESUMED):
            session.reconnect_attempts = 0

        handlers = self._handlers.get(envelope.kind) or self._unhandled
        if not handlers:
            logger.debug("No handler for event %s", envelope.kind)
            return

        # Remote-chosen tags outside the known set share one label value.
        gateway_events_dispatched.labels(kind=known.value if known else "other").inc()

        # Copy so handlers may register or remove handlers while running.
        for handler in list(handlers):
            if self._session is not session:
                return
            try:
                await maybe_await(handler(self, envelope))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Handler for %s raised", envelope.kind)
                error = InternalError(f"Handler for {envelope.kind} raised: {e!r}")
                error.__cause__ = e
                await self._diagnostics.emit(
                    DiagnosticEvent(
                        kind=DiagnosticKind.HANDLER_ERROR,
                        message=error.message,
                        error=error,
                    )
                )

    # -------------------------------------------------------------------------
    # Reconnection
    # -------------------------------------------------------------------------

    async def _reconnect(self, error: ClassifiedError) -> GatewayConnection | None:
        """
        Re-establish the connection with exponential backoff.

        Only network errors are retried. Any other error, or exhausting the
        attempt budget, fails the session.

        Returns:
            The new connection, or None if the session failed.
        """
        session = self._session
        if session is None:
            return None

        if not isinstance(error, NetworkError):
            await self._fail(error)
            return None

        self._transition(ConnectionState.RECONNECTING)
        policy = self.config.reconnect
        last_error: ClassifiedError = error

        while session.reconnect_attempts < policy.max_attempts:
            session.reconnect_attempts += 1
            attempt = session.reconnect_attempts
            delay = policy.delay_for(attempt)

            gateway_reconnect_attempts.inc()
            logger.warning(
                "Reconnect attempt %d/%d in %.2fs after: %s",
                attempt,
                policy.max_attempts,
                delay,
                last_error.message,
            )
            await self._diagnostics.emit(
                DiagnosticEvent(
                    kind=DiagnosticKind.RECONNECT_ATTEMPT,
                    message=f"Reconnect attempt {attempt} of {policy.max_attempts}",
                    error=last_error,
                    attempt=attempt,
                    delay=delay,
                )
            )
            await self.sleep(delay)

            try:
                connection = await asyncio.wait_for(
                    self.transport.open(
                        session.credential,
                        session_id=session.session_id,
                        sequence=session.sequence,
                    ),
                    timeout=self.config.handshake_timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = classify_exception(e)
                await self._diagnostics.emit(
                    DiagnosticEvent(
                        kind=DiagnosticKind.CONNECT_FAILED,
                        message=f"Reconnect attempt {attempt} failed: {last_error.message}",
                        error=last_error,
                        attempt=attempt,
                    )
                )
                if not isinstance(last_error, NetworkError):
                    break
                continue

            logger.info("Gateway reconnected on attempt %d", attempt)
            self._connection = connection
            self._transition(ConnectionState.CONNECTED)
            return connection

        await self._fail(last_error)
        return None

    async def _fail(self, error: ClassifiedError) -> None:
        """Move to FAILED, drop the session and report the terminal error."""
        logger.error("Gateway session failed: %s", error.message)
        self._transition(ConnectionState.FAILED)
        self._session = None
        self._terminal_error = error
        self._reader = None
        await self._close_connection()
        await self._diagnostics.emit(
            DiagnosticEvent(
                kind=DiagnosticKind.TERMINAL_FAILURE,
                message=f"Gateway session failed: {error.message}",
                error=error,
            )
        )
        if self._closed is not None:
            self._closed.set()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _transition(self, target: ConnectionState) -> None:
        """Advance the state machine, rejecting transitions it does not allow."""
        if not self._state.can_transition_to(target):
            raise InternalError(f"Invalid gateway transition {self._state.name} -> {target.name}")
        logger.debug("Gateway state %s -> %s", self._state.name, target.name)
        self._state = target
        if self._session is not None:
            self._session.state = target
        gateway_connected.set(1 if target is ConnectionState.CONNECTED else 0)

    async def _close_connection(self) -> None:
        """Close the live connection, if any. Close errors are logged, not raised."""
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.debug("Error closing gateway connection: %s", e)
