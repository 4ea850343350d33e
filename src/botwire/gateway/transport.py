"""
Gateway transport: the socket beneath the gateway client.

The client depends only on the two Protocols below. The shipped
implementation speaks a minimal JSON frame format over an aiohttp WebSocket;
tests substitute an in-memory fake.

Frame Format
------------
Every frame is one JSON object::

    {"op": <opcode>, "d": <data>, "s": <sequence or null>, "t": <event name or null>}

Handshake
---------
1. Open the WebSocket.
2. Receive HELLO carrying ``heartbeat_interval`` in milliseconds.
3. Send IDENTIFY (fresh session) or RESUME (known session id).
4. Start heartbeating; DISPATCH frames become ``EventEnvelope`` objects.

RECONNECT and INVALID_SESSION frames, a missed heartbeat ACK, and socket
closure all end iteration with ``GatewayClosed``. The client classifies that
as a network failure and reconnects. A non-resumable INVALID_SESSION raises
the ``SessionInvalidated`` subtype so the client starts a fresh session.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol, runtime_checkable

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from botwire.config import DEFAULT_HANDSHAKE_TIMEOUT
from botwire.types import WireModel

from .events import EventEnvelope

logger = logging.getLogger(__name__)


class GatewayClosed(ConnectionError):
    """Raised when the gateway connection ends or must be re-established."""


class SessionInvalidated(GatewayClosed):
    """
    Raised when the remote rejects the session itself.

    The session id and sequence are no longer usable: the next connection
    must IDENTIFY rather than RESUME.
    """


_CLOSING_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
)
"""Message types that mean the socket is going away."""


class GatewayOp(IntEnum):
    """Gateway frame opcodes."""

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class GatewayFrame(WireModel):
    """One decoded gateway frame."""

    op: int
    d: Any = None
    s: int | None = None
    t: str | None = None


@runtime_checkable
class GatewayConnection(Protocol):
    """
    One established gateway connection.

    Iteration yields events in the order the remote sent them. Iteration ends
    by raising when the connection fails; a clean end of iteration also means
    the remote closed the connection.
    """

    def __aiter__(self) -> AsyncIterator[EventEnvelope]:
        """Iterate inbound events."""
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


@runtime_checkable
class GatewayTransport(Protocol):
    """Factory for gateway connections."""

    async def open(
        self,
        credential: str,
        *,
        session_id: str | None = None,
        sequence: int | None = None,
    ) -> GatewayConnection:
        """
        Establish a connection and complete the handshake.

        Args:
            credential: Validated bot token.
            session_id: Known session id. When set, the transport resumes.
            sequence: Last sequence number seen, for resumption.

        Returns:
            A live connection.

        Raises:
            Exception: Any transport failure. The client classifies it.
        """
        ...


@dataclass(slots=True)
class WebSocketConnection:
    """Gateway connection over an aiohttp WebSocket."""

    http: aiohttp.ClientSession
    """HTTP session owning the socket."""

    ws: aiohttp.ClientWebSocketResponse
    """The WebSocket."""

    heartbeat_interval: float
    """Seconds between heartbeats, from HELLO."""

    sequence: int | None = None
    """Last dispatch sequence number, echoed in heartbeats."""

    _ack_pending: bool = field(default=False, repr=False)
    """True between sending a heartbeat and receiving its ACK."""

    _heartbeat_task: asyncio.Task[None] | None = field(default=None, repr=False)
    """Background heartbeat loop."""

    def __aiter__(self) -> AsyncIterator[EventEnvelope]:
        return self._events()

    async def _events(self) -> AsyncIterator[EventEnvelope]:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat(), name="gateway-heartbeat")

        while True:
            msg = await self.ws.receive()

            if msg.type in _CLOSING_TYPES:
                raise GatewayClosed(f"Gateway closed the connection (code {self.ws.close_code})")
            if msg.type is aiohttp.WSMsgType.ERROR:
                raise GatewayClosed(f"Gateway socket error: {self.ws.exception()}")
            if msg.type is not aiohttp.WSMsgType.TEXT:
                logger.debug("Ignoring non-text gateway message %s", msg.type)
                continue

            try:
                frame = GatewayFrame.model_validate_json(msg.data)
            except PydanticValidationError as e:
                logger.warning("Dropping malformed gateway frame: %s", e)
                continue

            match frame.op:
                case GatewayOp.DISPATCH:
                    if frame.s is not None:
                        self.sequence = frame.s
                    if frame.t is None:
                        logger.warning("Dropping dispatch frame without event name")
                        continue
                    yield EventEnvelope(kind=frame.t, payload=frame.d, sequence=frame.s)

                case GatewayOp.HEARTBEAT:
                    # The remote may request an immediate heartbeat.
                    await self._send_heartbeat()

                case GatewayOp.HEARTBEAT_ACK:
                    self._ack_pending = False

                case GatewayOp.RECONNECT:
                    raise GatewayClosed("Gateway requested a reconnect")

                case GatewayOp.INVALID_SESSION:
                    # d is true when the session may still be resumed.
                    if frame.d is True:
                        raise GatewayClosed("Gateway asked for a resumable reconnect")
                    raise SessionInvalidated("Gateway invalidated the session")

                case _:
                    logger.debug("Ignoring gateway opcode %d", frame.op)

    async def _send_heartbeat(self) -> None:
        self._ack_pending = True
        await self.ws.send_json({"op": GatewayOp.HEARTBEAT, "d": self.sequence})

    async def _heartbeat(self) -> None:
        """Send heartbeats until the socket closes. A missed ACK closes the socket."""
        try:
            while not self.ws.closed:
                await asyncio.sleep(self.heartbeat_interval)
                if self._ack_pending:
                    logger.warning("Heartbeat not acknowledged; closing zombie connection")
                    await self.ws.close()
                    return
                await self._send_heartbeat()
        except asyncio.CancelledError:
            pass
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.debug("Heartbeat loop stopped: %s", e)

    async def close(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        if not self.ws.closed:
            await self.ws.close()
        if not self.http.closed:
            await self.http.close()


@dataclass(slots=True)
class WebSocketTransport:
    """Opens gateway connections over aiohttp WebSockets."""

    url: str
    """Gateway WebSocket URL."""

    intents: int = 0
    """Event group bitfield sent in IDENTIFY."""

    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    """Deadline for receiving HELLO."""

    session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession
    """Creates the HTTP session owning each socket."""

    async def open(
        self,
        credential: str,
        *,
        session_id: str | None = None,
        sequence: int | None = None,
    ) -> WebSocketConnection:
        http = self.session_factory()
        try:
            ws = await http.ws_connect(self.url, autoping=True)
            interval = await asyncio.wait_for(
                self._receive_hello(ws), timeout=self.handshake_timeout
            )

            if session_id is not None:
                logger.info("Resuming gateway session %s at sequence %s", session_id, sequence)
                await ws.send_json(
                    {
                        "op": GatewayOp.RESUME,
                        "d": {"token": credential, "session_id": session_id, "seq": sequence},
                    }
                )
            else:
                await ws.send_json({"op": GatewayOp.IDENTIFY, "d": self._identify(credential)})

        except BaseException:
            await http.close()
            raise

        return WebSocketConnection(
            http=http, ws=ws, heartbeat_interval=interval, sequence=sequence
        )

    async def _receive_hello(self, ws: aiohttp.ClientWebSocketResponse) -> float:
        """
        Wait for HELLO and return the heartbeat interval in seconds.

        Raises:
            GatewayClosed: If the socket closes first or the first frame is
                not a well-formed HELLO.
        """
        msg = await ws.receive()
        if msg.type in _CLOSING_TYPES:
            raise GatewayClosed(
                f"Gateway closed the connection before HELLO (code {ws.close_code})"
            )
        if msg.type is aiohttp.WSMsgType.ERROR:
            raise GatewayClosed(f"Gateway socket error before HELLO: {ws.exception()}")
        if msg.type is not aiohttp.WSMsgType.TEXT:
            raise GatewayClosed(f"Expected HELLO, got a {msg.type.name} message")

        try:
            hello = GatewayFrame.model_validate_json(msg.data)
        except PydanticValidationError as e:
            raise GatewayClosed(f"Malformed HELLO frame: {e}") from e
        if hello.op != GatewayOp.HELLO or not isinstance(hello.d, dict):
            raise GatewayClosed(f"Expected HELLO, got opcode {hello.op}")

        try:
            return float(hello.d["heartbeat_interval"]) / 1000
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayClosed("HELLO carries no usable heartbeat_interval") from e

    def _identify(self, credential: str) -> dict[str, Any]:
        return {
            "token": credential,
            "intents": self.intents,
            "properties": {"os": sys.platform, "browser": "botwire", "device": "botwire"},
        }
