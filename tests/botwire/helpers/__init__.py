"""Test helpers for botwire unit tests."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

import httpx

from botwire.config import RestConfig
from botwire.gateway import EventEnvelope
from botwire.rest import RequestDispatcher

from .fakes import (
    DiagnosticRecorder,
    FakeConnection,
    FakeGatewayTransport,
    RecordingHandler,
    RecordingSleep,
)

VALID_TOKEN = "MTk4NjIyNDgzNDcxOTI1MjQ4.Cl2FMQ.ZnCjm1XVW7vRze4b7Cq4se7kKWs"
"""A structurally valid (and meaningless) bot token."""

TEST_BASE_URL = "https://api.botwire.test/v10"
"""Base URL for dispatchers backed by a mock transport."""

_T = TypeVar("_T")


def run_async(coro: Coroutine[object, object, _T]) -> _T:
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def make_event(kind: str, payload: object = None, sequence: int | None = None) -> EventEnvelope:
    """Build an inbound event."""
    return EventEnvelope(kind=kind, payload=payload, sequence=sequence)


def make_dispatcher(handler: RecordingHandler, **config: Any) -> RequestDispatcher:
    """Build a dispatcher whose HTTP traffic goes to the given handler."""
    return RequestDispatcher.create(
        VALID_TOKEN,
        RestConfig(base_url=TEST_BASE_URL, **config),
        transport=httpx.MockTransport(handler),
    )


__all__ = [
    "DiagnosticRecorder",
    "FakeConnection",
    "FakeGatewayTransport",
    "RecordingHandler",
    "RecordingSleep",
    "TEST_BASE_URL",
    "VALID_TOKEN",
    "make_dispatcher",
    "make_event",
    "run_async",
]
