"""Shared fixtures for botwire tests."""

from __future__ import annotations

import pytest

from botwire.config import GatewayConfig, ReconnectPolicy
from botwire.gateway import GatewayClient

from tests.botwire.helpers import DiagnosticRecorder, FakeGatewayTransport, RecordingSleep


@pytest.fixture
def anyio_backend() -> str:
    """The client is built on asyncio primitives."""
    return "asyncio"


@pytest.fixture
def transport() -> FakeGatewayTransport:
    """In-memory gateway transport with an empty script."""
    return FakeGatewayTransport()


@pytest.fixture
def sleep() -> RecordingSleep:
    """Backoff sleep that records delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def diagnostics() -> DiagnosticRecorder:
    """Recorder for diagnostic events."""
    return DiagnosticRecorder()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Gateway config with a short handshake timeout and a 3-attempt budget."""
    return GatewayConfig(
        handshake_timeout=1.0,
        reconnect=ReconnectPolicy(
            initial_delay=0.5, multiplier=2.0, max_delay=4.0, max_attempts=3
        ),
    )


@pytest.fixture
def client(
    transport: FakeGatewayTransport,
    gateway_config: GatewayConfig,
    sleep: RecordingSleep,
    diagnostics: DiagnosticRecorder,
) -> GatewayClient:
    """Gateway client wired to the fakes above."""
    client = GatewayClient(transport=transport, config=gateway_config, sleep=sleep)
    client.on_diagnostic(diagnostics)
    return client
