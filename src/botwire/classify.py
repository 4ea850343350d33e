"""
Mapping of raw transport exceptions onto the classified error taxonomy.

Both components funnel every exception they catch through
``classify_exception``, so the same underlying condition always yields the
same ``ClassifiedError`` whether it surfaced on the gateway socket or on a
REST call.
"""

from __future__ import annotations

import asyncio
import socket

import aiohttp
import httpx

from botwire.types import (
    ClassifiedError,
    InternalError,
    NetworkError,
    NetworkFailure,
    RemoteAPIError,
)


def _network_failure(exc: BaseException) -> NetworkFailure | None:
    """
    Identify the network condition behind an exception, if any.

    Order matters: TimeoutError is an OSError subclass, and the httpx and
    aiohttp connect errors wrap the socket error that caused them.
    """
    match exc:
        case asyncio.TimeoutError() | TimeoutError() | httpx.TimeoutException():
            return NetworkFailure.TIMEOUT
        case socket.gaierror():
            return NetworkFailure.UNREACHABLE
        case httpx.ConnectError():
            # httpx chains the socket-level cause.
            if isinstance(exc.__cause__ or exc.__context__, socket.gaierror):
                return NetworkFailure.UNREACHABLE
            return NetworkFailure.REFUSED
        case aiohttp.ClientConnectorError():
            if isinstance(exc.os_error, socket.gaierror):
                return NetworkFailure.UNREACHABLE
            return NetworkFailure.REFUSED
        case ConnectionRefusedError():
            return NetworkFailure.REFUSED
        case ConnectionResetError() | ConnectionAbortedError() | BrokenPipeError():
            return NetworkFailure.RESET
        case aiohttp.ServerDisconnectedError():
            return NetworkFailure.CLOSED
        case ConnectionError():
            return NetworkFailure.CLOSED
        case httpx.TransportError() | aiohttp.ClientError():
            return NetworkFailure.RESET
        case OSError():
            return NetworkFailure.UNREACHABLE
    return None


def classify_exception(
    exc: BaseException,
    *,
    path: str | None = None,
    method: str | None = None,
) -> ClassifiedError:
    """
    Classify a raised exception.

    Already-classified errors pass through unchanged. Network conditions
    become ``NetworkError``. A rejected WebSocket upgrade is a remote answer
    and becomes ``RemoteAPIError``. Everything else becomes ``InternalError``.

    Args:
        exc: The exception to classify.
        path: Endpoint path to attach, for REST calls.
        method: HTTP method to attach, for REST calls.

    Returns:
        The classified error, with the original exception chained as cause.
    """
    if isinstance(exc, ClassifiedError):
        return exc

    error: ClassifiedError
    if isinstance(exc, aiohttp.WSServerHandshakeError):
        error = RemoteAPIError(
            f"Gateway rejected the connection: {exc.message}",
            code=exc.status,
            status=exc.status,
            path=path,
            method=method,
        )
    elif (reason := _network_failure(exc)) is not None:
        detail = str(exc) or type(exc).__name__
        error = NetworkError(
            f"Network {reason.value}: {detail}",
            reason=reason,
            path=path,
            method=method,
        )
    else:
        error = InternalError(
            f"Unexpected {type(exc).__name__}: {exc}",
            path=path,
            method=method,
        )

    error.__cause__ = exc
    return error
