"""Tests for the gateway client lifecycle and event delivery."""

from __future__ import annotations

import asyncio
import warnings

import pytest
from hypothesis import given
from hypothesis import strategies as st

from botwire.config import GatewayConfig
from botwire.diagnostics import DiagnosticKind
from botwire.gateway import ConnectionState, EventEnvelope, EventKind, GatewayClient
from botwire.gateway.credential import TOKEN_PATTERN
from botwire.types import InternalError, NetworkError, NetworkFailure, ValidationError
from tests.botwire.helpers import (
    VALID_TOKEN,
    DiagnosticRecorder,
    FakeConnection,
    FakeGatewayTransport,
    make_event,
    run_async,
)


class TestConnectValidation:
    """Credential checks happen before any network call."""

    @pytest.mark.anyio
    @pytest.mark.parametrize("credential", ["", "Bot ", "not-a-token", "a.b.c", 42, None])
    async def test_malformed_credential_raises_without_io(
        self, client: GatewayClient, transport: FakeGatewayTransport, credential: object
    ) -> None:
        """A malformed credential raises and the transport is never touched."""
        with pytest.raises(ValidationError):
            await client.connect(credential)  # type: ignore[arg-type]

        assert transport.calls == []
        assert client.state is ConnectionState.DISCONNECTED
        assert client.session is None

    @given(credential=st.text(max_size=120))
    def test_arbitrary_text_never_reaches_transport(self, credential: str) -> None:
        """Any string that is not token-shaped is rejected locally."""
        token = credential.removeprefix("Bot ")
        if TOKEN_PATTERN.fullmatch(token):
            return

        transport = FakeGatewayTransport()
        client = GatewayClient(transport=transport)

        async def attempt() -> None:
            with pytest.raises(ValidationError):
                await client.connect(credential)

        run_async(attempt())
        assert transport.calls == []

    @pytest.mark.anyio
    async def test_error_does_not_echo_token(self, client: GatewayClient) -> None:
        """The validation message never contains the credential."""
        bad = VALID_TOKEN.replace(".", "!")
        with pytest.raises(ValidationError) as exc_info:
            await client.connect(bad)
        assert bad not in exc_info.value.message

    @pytest.mark.anyio
    async def test_bot_prefix_is_stripped(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """The transport receives the bare token."""
        assert await client.connect(f"Bot {VALID_TOKEN}") is None
        assert transport.calls[0]["credential"] == VALID_TOKEN
        await client.disconnect()


class TestConnect:
    """Session establishment."""

    @pytest.mark.anyio
    async def test_successful_connect(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """Connect reaches CONNECTED with a fresh session."""
        assert await client.connect(VALID_TOKEN) is None

        assert client.state is ConnectionState.CONNECTED
        session = client.session
        assert session is not None
        assert session.credential == VALID_TOKEN
        assert session.state is ConnectionState.CONNECTED
        assert session.session_id is None
        assert transport.calls == [
            {"credential": VALID_TOKEN, "session_id": None, "sequence": None}
        ]
        await client.disconnect()

    @pytest.mark.anyio
    async def test_unreachable_endpoint_fails(
        self,
        client: GatewayClient,
        transport: FakeGatewayTransport,
        diagnostics: DiagnosticRecorder,
    ) -> None:
        """An unreachable endpoint yields a NetworkError and FAILED, without retrying."""
        transport.script = [ConnectionRefusedError("connection refused")]

        error = await client.connect(VALID_TOKEN)

        assert isinstance(error, NetworkError)
        assert error.reason is NetworkFailure.REFUSED
        assert client.state is ConnectionState.FAILED
        assert client.session is None
        assert client.terminal_error is error
        assert len(transport.calls) == 1
        assert diagnostics.of_kind(DiagnosticKind.CONNECT_FAILED)
        assert diagnostics.of_kind(DiagnosticKind.TERMINAL_FAILURE)
        assert await client.wait_closed() is error

    @pytest.mark.anyio
    async def test_connect_after_failure_starts_over(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """FAILED is terminal only until connect is called again."""
        transport.script = [ConnectionRefusedError()]
        assert await client.connect(VALID_TOKEN) is not None

        assert await client.connect(VALID_TOKEN) is None
        assert client.state is ConnectionState.CONNECTED
        assert client.terminal_error is None
        await client.disconnect()

    @pytest.mark.anyio
    async def test_connect_while_connected_raises(self, client: GatewayClient) -> None:
        """A second connect on a live session fails fast."""
        await client.connect(VALID_TOKEN)

        with pytest.raises(ValidationError):
            await client.connect(VALID_TOKEN)

        assert client.state is ConnectionState.CONNECTED
        await client.disconnect()

    @pytest.mark.anyio
    async def test_concurrent_connect_fails_fast(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """A connect racing an in-flight handshake raises instead of opening twice."""
        transport.gate = asyncio.Event()
        first = asyncio.create_task(client.connect(VALID_TOKEN))
        await asyncio.sleep(0)
        assert client.state is ConnectionState.CONNECTING

        with pytest.raises(ValidationError):
            await client.connect(VALID_TOKEN)

        transport.gate.set()
        assert await first is None
        assert len(transport.calls) == 1
        await client.disconnect()

    @pytest.mark.anyio
    async def test_handshake_timeout_is_network_error(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """A handshake that never completes times out as a network failure."""
        client.config = GatewayConfig(handshake_timeout=0.01, reconnect=client.config.reconnect)
        transport.gate = asyncio.Event()

        error = await client.connect(VALID_TOKEN)

        assert isinstance(error, NetworkError)
        assert error.reason is NetworkFailure.TIMEOUT
        assert client.state is ConnectionState.FAILED

    @pytest.mark.anyio
    async def test_disconnect_during_handshake(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """Tearing down mid-handshake closes the late connection."""
        connection = FakeConnection()
        transport.script = [connection]
        transport.gate = asyncio.Event()

        pending = asyncio.create_task(client.connect(VALID_TOKEN))
        await asyncio.sleep(0)
        await client.disconnect()
        transport.gate.set()

        assert await pending is None
        assert client.state is ConnectionState.DISCONNECTED
        assert connection.closed


class TestEventDelivery:
    """Ordering and routing of inbound events."""

    @pytest.mark.anyio
    async def test_events_delivered_in_arrival_order(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """E1, E2, E3 arrive at the handler as E1, E2, E3."""
        events = [make_event(EventKind.MESSAGE_CREATE.value, {"n": n}, n) for n in (1, 2, 3)]
        connection = FakeConnection(events=events)
        transport.script = [connection]
        received: list[int] = []

        async def on_message(_client: GatewayClient, event: EventEnvelope) -> None:
            # Yield to the loop so a concurrent delivery would interleave.
            await asyncio.sleep(0)
            received.append(event.payload["n"])

        client.on(EventKind.MESSAGE_CREATE, on_message)
        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert received == [1, 2, 3]
        assert client.session is not None
        assert client.session.sequence == 3
        await client.disconnect()

    @pytest.mark.anyio
    async def test_handlers_run_in_registration_order(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """Handlers for the same kind run sequentially in registration order."""
        connection = FakeConnection(events=[make_event("MESSAGE_CREATE")])
        transport.script = [connection]
        calls: list[str] = []

        client.on("MESSAGE_CREATE", lambda c, e: calls.append("sync"))

        async def second(_client: GatewayClient, _event: EventEnvelope) -> None:
            calls.append("async")

        client.on(EventKind.MESSAGE_CREATE, second)
        client.on("MESSAGE_CREATE", lambda c, e: calls.append("last"))

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert calls == ["sync", "async", "last"]
        await client.disconnect()

    @pytest.mark.anyio
    async def test_handler_receives_client(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """The owning client is passed to each handler."""
        connection = FakeConnection(events=[make_event("MESSAGE_CREATE")])
        transport.script = [connection]
        seen: list[GatewayClient] = []
        client.on("MESSAGE_CREATE", lambda c, e: seen.append(c))

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert seen == [client]
        await client.disconnect()

    @pytest.mark.anyio
    async def test_thousand_handlers_without_warning(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """There is no listener cap and no warning for many handlers."""
        connection = FakeConnection(events=[make_event("MESSAGE_CREATE")])
        transport.script = [connection]
        count = 0

        def handler(_client: GatewayClient, _event: EventEnvelope) -> None:
            nonlocal count
            count += 1

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            for _ in range(1000):
                client.on("MESSAGE_CREATE", handler)

        assert client.handler_count(EventKind.MESSAGE_CREATE) == 1000

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert count == 1000
        await client.disconnect()

    @pytest.mark.anyio
    async def test_unknown_kind_goes_to_catch_all(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """Kinds outside the known set reach the catch-all, not the kind handlers."""
        connection = FakeConnection(
            events=[make_event("THREAD_MEMBERS_UPDATE", {"id": "1"}), make_event("MESSAGE_CREATE")]
        )
        transport.script = [connection]
        unhandled: list[str] = []
        messages: list[str] = []

        client.on_unhandled(lambda c, e: unhandled.append(e.kind))
        client.on("MESSAGE_CREATE", lambda c, e: messages.append(e.kind))

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert unhandled == ["THREAD_MEMBERS_UPDATE"]
        assert messages == ["MESSAGE_CREATE"]
        assert make_event("THREAD_MEMBERS_UPDATE").known_kind is None
        await client.disconnect()

    @pytest.mark.anyio
    async def test_event_without_any_handler_is_dropped(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """An event nobody listens to does not disturb the session."""
        connection = FakeConnection(events=[make_event("GUILD_DELETE")])
        transport.script = [connection]

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert client.state is ConnectionState.CONNECTED
        await client.disconnect()

    @pytest.mark.anyio
    async def test_off_removes_handler(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """A removed handler no longer receives events."""
        connection = FakeConnection(events=[make_event("MESSAGE_CREATE")])
        transport.script = [connection]
        calls: list[str] = []

        def handler(_client: GatewayClient, _event: EventEnvelope) -> None:
            calls.append("called")

        client.on("MESSAGE_CREATE", handler)
        client.off("MESSAGE_CREATE", handler)
        client.off("MESSAGE_CREATE", handler)

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert calls == []
        await client.disconnect()

    @pytest.mark.anyio
    async def test_ready_records_session_id(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """The READY payload's session id is kept for resumption."""
        connection = FakeConnection(events=[make_event("READY", {"session_id": "abc"}, 1)])
        transport.script = [connection]

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert client.session is not None
        assert client.session.session_id == "abc"
        assert client.session.sequence == 1
        await client.disconnect()


class TestHandlerErrors:
    """A failing handler never takes down the session."""

    @pytest.mark.anyio
    async def test_handler_error_becomes_diagnostic(
        self,
        client: GatewayClient,
        transport: FakeGatewayTransport,
        diagnostics: DiagnosticRecorder,
    ) -> None:
        """The exception is reported and the next handler and event still run."""
        connection = FakeConnection(
            events=[make_event("MESSAGE_CREATE", None, 1), make_event("MESSAGE_CREATE", None, 2)]
        )
        transport.script = [connection]
        delivered: list[int | None] = []

        def broken(_client: GatewayClient, _event: EventEnvelope) -> None:
            raise RuntimeError("boom")

        client.on("MESSAGE_CREATE", broken)
        client.on("MESSAGE_CREATE", lambda c, e: delivered.append(e.sequence))

        await client.connect(VALID_TOKEN)
        await connection.exhausted.wait()

        assert delivered == [1, 2]
        errors = diagnostics.of_kind(DiagnosticKind.HANDLER_ERROR)
        assert len(errors) == 2
        assert isinstance(errors[0].error, InternalError)
        assert isinstance(errors[0].error.__cause__, RuntimeError)
        assert client.state is ConnectionState.CONNECTED
        await client.disconnect()


class TestDisconnect:
    """Deterministic teardown."""

    @pytest.mark.anyio
    async def test_disconnect_is_idempotent(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """Repeated calls leave the client DISCONNECTED and close once."""
        connection = FakeConnection()
        transport.script = [connection]
        await client.connect(VALID_TOKEN)

        await client.disconnect()
        await client.disconnect()

        assert client.state is ConnectionState.DISCONNECTED
        assert client.session is None
        assert connection.close_calls == 1
        assert await client.wait_closed() is None

    @pytest.mark.anyio
    async def test_disconnect_before_connect_is_noop(self, client: GatewayClient) -> None:
        """Disconnecting a fresh client does nothing."""
        await client.disconnect()
        assert client.state is ConnectionState.DISCONNECTED

    @pytest.mark.anyio
    async def test_no_events_after_disconnect(
        self, client: GatewayClient, transport: FakeGatewayTransport
    ) -> None:
        """A disconnect from inside a handler stops delivery immediately."""
        connection = FakeConnection(
            events=[make_event("MESSAGE_CREATE", None, n) for n in (1, 2, 3)]
        )
        transport.script = [connection]
        delivered: list[int | None] = []

        async def first(c: GatewayClient, event: EventEnvelope) -> None:
            delivered.append(event.sequence)
            await c.disconnect()

        client.on("MESSAGE_CREATE", first)
        client.on("MESSAGE_CREATE", lambda c, e: delivered.append(-1))

        await client.connect(VALID_TOKEN)
        await client.wait_closed()
        for _ in range(5):
            await asyncio.sleep(0)

        assert delivered == [1]
        assert client.state is ConnectionState.DISCONNECTED
        assert connection.closed
        assert len(transport.calls) == 1

    @pytest.mark.anyio
    async def test_disconnect_cancels_reconnect(
        self,
        client: GatewayClient,
        transport: FakeGatewayTransport,
    ) -> None:
        """Teardown during backoff stops further attempts."""
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def blocking_sleep(_delay: float) -> None:
            entered.set()
            await gate.wait()

        client.sleep = blocking_sleep
        transport.script = [FakeConnection(fail_with=ConnectionResetError("reset"))]

        await client.connect(VALID_TOKEN)
        await entered.wait()
        assert client.state is ConnectionState.RECONNECTING

        await client.disconnect()
        gate.set()
        await asyncio.sleep(0)

        assert client.state is ConnectionState.DISCONNECTED
        assert len(transport.calls) == 1
