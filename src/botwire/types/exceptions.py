"""
Classified error hierarchy shared by the gateway client and the REST dispatcher.

Every failure the client can observe is mapped onto exactly one of four kinds:

+------------------+-----------------------------------------------+----------+
| Kind             | Meaning                                       | Retried  |
+==================+===============================================+==========+
| RemoteAPIError   | The remote service answered and rejected us   | never    |
+------------------+-----------------------------------------------+----------+
| NetworkError     | Connection refused, reset, closed, timed out  | gateway  |
+------------------+-----------------------------------------------+----------+
| ValidationError  | Caller passed malformed input                 | never    |
+------------------+-----------------------------------------------+----------+
| InternalError    | Anything else                                 | never    |
+------------------+-----------------------------------------------+----------+

The classes derive from Exception so that ValidationError can be raised at the
call site. The other kinds are normally returned as values through the result
channel of a request or through the diagnostic channel of the gateway.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar


class ErrorKind(str, Enum):
    """Tag identifying which branch of the taxonomy an error belongs to."""

    REMOTE_API = "RemoteAPIError"
    NETWORK = "NetworkError"
    VALIDATION = "ValidationError"
    INTERNAL = "InternalError"


class NetworkFailure(str, Enum):
    """Sub-kind of a NetworkError."""

    REFUSED = "refused"
    """The remote endpoint actively refused the connection."""

    RESET = "reset"
    """An established connection was reset mid-exchange."""

    TIMEOUT = "timeout"
    """No response arrived before the deadline."""

    UNREACHABLE = "unreachable"
    """Name resolution or routing failed before a connection existed."""

    CLOSED = "closed"
    """The remote side closed the connection or asked us to reconnect."""


class ClassifiedError(Exception):
    """
    Base class for every error kind in the taxonomy.

    Instances are immutable once constructed. Public attributes cannot be
    reassigned, which keeps an error safe to share between the caller, the
    diagnostic channel and the metrics layer.

    Attributes:
        message: Human-readable description.
        code: Numeric code reported by the remote service, if any.
        path: Endpoint path the failure relates to, if any.
        method: HTTP method of the failed call, if any.
    """

    kind: ClassVar[ErrorKind]

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        path: str | None = None,
        method: str | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.path = path
        self.method = method
        super().__init__(message)
        self._sealed = True

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False) and not name.startswith("__"):
            raise AttributeError(f"{type(self).__name__} is immutable; cannot set {name!r}")
        super().__setattr__(name, value)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize the error for logs and diagnostics.

        The shape mirrors the remote service's own error envelope so operators
        can cross-reference upstream documentation. Absent optional fields are
        omitted rather than emitted as null.
        """
        data: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.code is not None:
            data["code"] = self.code
        if self.path is not None:
            data["path"] = self.path
        if self.method is not None:
            data["method"] = self.method
        return data


class RemoteAPIError(ClassifiedError):
    """
    The remote service processed the call and reported a failure.

    Expected and never fatal to the client.

    Attributes:
        status: HTTP status of the response.
        errors: Nested field-level detail sent with validation rejections.
        retry_after: Seconds to wait before retrying, for rate-limited calls.
    """

    kind = ErrorKind.REMOTE_API

    def __init__(
        self,
        message: str,
        *,
        code: int,
        status: int,
        path: str | None = None,
        method: str | None = None,
        errors: dict[str, Any] | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.status = status
        self.errors = errors
        self.retry_after = retry_after
        super().__init__(message, code=code, path=path, method=method)


class NetworkError(ClassifiedError):
    """
    The remote service could not be reached or stopped answering.

    Transient by default. The gateway client retries these with backoff;
    the REST dispatcher reports them without retrying.

    Attributes:
        reason: Which network condition was observed.
    """

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        reason: NetworkFailure,
        path: str | None = None,
        method: str | None = None,
    ) -> None:
        self.reason = reason
        super().__init__(message, path=path, method=method)


class ValidationError(ClassifiedError):
    """Caller supplied malformed input. Always raised before any I/O."""

    kind = ErrorKind.VALIDATION


class InternalError(ClassifiedError):
    """Unexpected internal fault. Surfaced as-is and never retried."""

    kind = ErrorKind.INTERNAL
