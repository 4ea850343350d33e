"""
REST request dispatcher.

Issues request/response calls against the remote service and classifies
every outcome. The contract has three rules:

1. Malformed caller input raises ``ValidationError`` at the call site,
   before any I/O. Validation therefore wins over any remote rejection the
   same input would have earned.
2. Every other failure is returned as a value: ``RemoteAPIError`` for remote
   rejections, ``NetworkError`` for connectivity problems and deadlines,
   ``InternalError`` for anything unexpected.
3. Nothing is retried. A remote "Unknown Message" is an answer, not a fault.

Deadlines
---------
Every call carries a deadline; the default comes from configuration. Time
spent waiting for a concurrency slot counts against it. When the deadline
passes the in-flight call is cancelled exactly once and the result is
``NetworkError`` with reason TIMEOUT.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from botwire.classify import classify_exception
from botwire.config import RestConfig
from botwire.diagnostics import (
    DiagnosticChannel,
    DiagnosticEvent,
    DiagnosticHandler,
    DiagnosticKind,
)
from botwire.gateway.credential import validate_credential
from botwire.metrics import rest_pending_requests, rest_request_duration, rest_requests
from botwire.types import (
    ClassifiedError,
    InternalError,
    NetworkError,
    NetworkFailure,
    ValidationError,
)

from .pending import Acknowledgement, DeferredReply, PendingRequest
from .responses import Result, Success, interpret_response
from .routes import HTTPMethod, parse_method, validate_path

logger = logging.getLogger(__name__)

CANCEL_GRACE_SECONDS: float = 1.0
"""How long a timed-out call is given to unwind after cancellation."""


def _encode_body(body: Any, method: HTTPMethod, path: str) -> bytes | None:
    """
    Encode a request body as JSON.

    Raises:
        ValidationError: If the method takes no body or the body is not
            JSON-serializable.
    """
    if body is None:
        return None
    if not method.allows_body:
        raise ValidationError(
            f"{method.value} requests cannot carry a body", path=path, method=method.value
        )
    try:
        return json.dumps(body, separators=(",", ":")).encode()
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Body is not JSON-serializable: {e}", path=path, method=method.value
        ) from e


@dataclass(slots=True)
class RequestDispatcher:
    """
    Issues REST calls and classifies their outcomes.

    Thread Safety
    -------------
    Designed for single-threaded async operation. Any number of calls may be
    outstanding at once, bounded only by ``config.max_concurrency`` when set.
    No ordering holds between concurrent calls.
    """

    http: httpx.AsyncClient
    """HTTP client with base URL and authorization already configured."""

    config: RestConfig = field(default_factory=RestConfig)
    """Deadline and concurrency settings."""

    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False)
    """Monotonic correlation id source."""

    _pending: dict[int, PendingRequest] = field(default_factory=dict, repr=False)
    """Outstanding requests by correlation id."""

    _runners: set[asyncio.Task[Result]] = field(default_factory=set, repr=False)
    """Tasks driving deferred calls, held until they finish."""

    _limiter: asyncio.Semaphore | None = field(default=None, init=False, repr=False)
    """Concurrency gate, present only when a limit is configured."""

    _diagnostics: DiagnosticChannel = field(default_factory=DiagnosticChannel, repr=False)
    """Transport-level observability channel."""

    def __post_init__(self) -> None:
        if self.config.max_concurrency is not None:
            self._limiter = asyncio.Semaphore(self.config.max_concurrency)

    @classmethod
    def create(
        cls,
        credential: str,
        config: RestConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RequestDispatcher:
        """
        Create a dispatcher authorized with a bot token.

        Args:
            credential: Bot token, optionally prefixed with ``"Bot "``.
            config: REST configuration. Defaults are used if None.
            transport: httpx transport override, e.g. ``httpx.MockTransport``.

        Returns:
            A ready dispatcher. Close it with ``aclose``.

        Raises:
            ValidationError: If the credential is malformed.
        """
        token = validate_credential(credential)
        config = config or RestConfig()
        http = httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": config.user_agent,
            },
            timeout=config.request_timeout,
            transport=transport,
        )
        return cls(http=http, config=config)

    async def __aenter__(self) -> RequestDispatcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.http.aclose()

    @property
    def pending(self) -> int:
        """Number of outstanding requests."""
        return len(self._pending)

    def outstanding(self) -> list[PendingRequest]:
        """Snapshot of outstanding requests, oldest first."""
        return list(self._pending.values())

    def on_diagnostic(self, handler: DiagnosticHandler) -> None:
        """Register a handler on the diagnostic channel."""
        self._diagnostics.subscribe(handler)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def send(
        self,
        method: HTTPMethod | str,
        path: str,
        body: Any = None,
        *,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Result:
        """
        Issue one call and wait for its outcome.

        Args:
            method: One of GET, POST, PATCH, PUT, DELETE.
            path: Path relative to the base URL, e.g. ``"/channels/1/messages/2"``.
            body: JSON-serializable body. Not allowed for GET.
            timeout: Deadline in seconds. Defaults to ``config.request_timeout``.
            headers: Extra headers for this call.

        Returns:
            ``Success`` or a ``ClassifiedError``. Remote and network failures
            are returned, never raised.

        Raises:
            ValidationError: If method, path, body or timeout is malformed.
        """
        pending, content = self._prepare(method, path, body, timeout)
        try:
            return await self._execute(pending, content, headers)
        finally:
            self._release(pending)

    def send_deferred(
        self,
        method: HTTPMethod | str,
        path: str,
        body: Any = None,
        *,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> DeferredReply:
        """
        Issue one call and return immediately.

        Input is validated synchronously. The returned reply carries an
        acknowledgment now and resolves to the result later.

        Must be called from within a running event loop.

        Raises:
            ValidationError: If method, path, body or timeout is malformed.
        """
        pending, content = self._prepare(method, path, body, timeout)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Result] = loop.create_future()

        runner = loop.create_task(
            self._execute(pending, content, headers),
            name=f"rest-deferred-{pending.correlation_id}",
        )
        self._runners.add(runner)
        runner.add_done_callback(self._runners.discard)

        def resolve(task: asyncio.Task[Result]) -> None:
            self._release(pending)
            if future.done():
                return
            if task.cancelled():
                future.set_result(self._cancelled_error(pending))
            elif (exc := task.exception()) is not None:
                future.set_result(
                    classify_exception(exc, path=pending.path, method=pending.method.value)
                )
            else:
                future.set_result(task.result())

        runner.add_done_callback(resolve)

        ack = Acknowledgement(
            correlation_id=pending.correlation_id,
            method=pending.method,
            path=pending.path,
        )
        logger.debug(
            "Deferred %s %s as #%d", pending.method.value, pending.path, pending.correlation_id
        )
        return DeferredReply(ack=ack, _future=future, _pending=pending)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _prepare(
        self,
        method: HTTPMethod | str,
        path: str,
        body: Any,
        timeout: float | None,
    ) -> tuple[PendingRequest, bytes | None]:
        """Validate input and register the request. Performs no I/O."""
        http_method = parse_method(method)
        validate_path(path, method=http_method.value)
        content = _encode_body(body, http_method, path)

        if timeout is None:
            timeout = self.config.request_timeout
        if not timeout > 0:
            raise ValidationError(
                f"Timeout must be positive, got {timeout}", path=path, method=http_method.value
            )

        correlation_id = next(self._ids)
        pending = PendingRequest(
            correlation_id=correlation_id,
            method=http_method,
            path=path,
            deadline=asyncio.get_running_loop().time() + timeout,
        )
        self._pending[correlation_id] = pending
        rest_pending_requests.set(len(self._pending))
        return pending, content

    def _release(self, pending: PendingRequest) -> None:
        self._pending.pop(pending.correlation_id, None)
        rest_pending_requests.set(len(self._pending))

    def _cancelled_error(self, pending: PendingRequest) -> InternalError:
        return InternalError(
            f"Request #{pending.correlation_id} was cancelled",
            path=pending.path,
            method=pending.method.value,
        )

    async def _execute(
        self,
        pending: PendingRequest,
        content: bytes | None,
        headers: Mapping[str, str] | None,
    ) -> Result:
        """Run the exchange under the request's deadline."""
        if pending.cancelled:
            return self._cancelled_error(pending)

        started = time.perf_counter()
        task = asyncio.ensure_future(self._perform(pending, content, headers))
        pending.task = task

        try:
            done, _ = await asyncio.wait({task}, timeout=pending.remaining())
        except asyncio.CancelledError:
            # The caller went away; take the request down with it.
            pending.cancel()
            raise

        result: Result
        if not done:
            pending.cancel()
            await asyncio.wait({task}, timeout=CANCEL_GRACE_SECONDS)
            result = NetworkError(
                f"Request #{pending.correlation_id} exceeded its deadline",
                reason=NetworkFailure.TIMEOUT,
                path=pending.path,
                method=pending.method.value,
            )
            logger.warning("%s %s timed out", pending.method.value, pending.path)
            await self._diagnostics.emit(
                DiagnosticEvent(
                    kind=DiagnosticKind.REQUEST_TIMEOUT,
                    message=result.message,
                    error=result,
                    correlation_id=pending.correlation_id,
                )
            )
        elif task.cancelled():
            result = self._cancelled_error(pending)
        else:
            result = task.result()

        rest_request_duration.observe(time.perf_counter() - started)
        outcome = "success" if isinstance(result, Success) else result.kind.value
        rest_requests.labels(method=pending.method.value, outcome=outcome).inc()
        return result

    async def _perform(
        self,
        pending: PendingRequest,
        content: bytes | None,
        headers: Mapping[str, str] | None,
    ) -> Result:
        """Perform the HTTP exchange. Classifies instead of raising."""
        request_headers = dict(headers or {})
        if content is not None:
            request_headers.setdefault("Content-Type", "application/json")

        try:
            if self._limiter is not None:
                async with self._limiter:
                    response = await self._request(pending, content, request_headers)
            else:
                response = await self._request(pending, content, request_headers)
            result = interpret_response(response, path=pending.path, method=pending.method.value)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error: ClassifiedError = classify_exception(
                e, path=pending.path, method=pending.method.value
            )
            logger.debug("%s %s failed: %s", pending.method.value, pending.path, error.message)
            return error

        if isinstance(result, ClassifiedError):
            logger.debug(
                "%s %s -> %d %s",
                pending.method.value,
                pending.path,
                response.status_code,
                result.message,
            )
        return result

    async def _request(
        self,
        pending: PendingRequest,
        content: bytes | None,
        headers: dict[str, str],
    ) -> httpx.Response:
        return await self.http.request(
            pending.method.value,
            pending.path,
            content=content,
            headers=headers,
            timeout=max(pending.remaining(), 0.001),
        )
