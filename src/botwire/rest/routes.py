"""HTTP methods and local validation of request paths."""

from __future__ import annotations

import re
from enum import Enum
from typing import Final

from botwire.types import ValidationError

MAX_PATH_LENGTH: Final = 2048
"""Longest path accepted, query string included."""

_FORBIDDEN_CHARS: Final = re.compile(r"[\s#\x00-\x1f\x7f]")
"""Whitespace, fragment markers and control characters."""


class HTTPMethod(str, Enum):
    """Methods the REST API accepts."""

    GET = "GET"
    POST = "POST"
    PATCH = "PATCH"
    PUT = "PUT"
    DELETE = "DELETE"

    @property
    def allows_body(self) -> bool:
        """True if requests with this method may carry a JSON body."""
        return self is not HTTPMethod.GET


def parse_method(method: HTTPMethod | str) -> HTTPMethod:
    """
    Normalize a method given as enum member or string.

    Raises:
        ValidationError: If the method is not one the API accepts.
    """
    if isinstance(method, HTTPMethod):
        return method
    if isinstance(method, str):
        try:
            return HTTPMethod(method.upper())
        except ValueError:
            pass
    raise ValidationError(f"Unsupported HTTP method: {method!r}")


def validate_path(path: object, *, method: str | None = None) -> str:
    """
    Check that a request path is well formed.

    A valid path is relative to the API base URL: it starts with a single
    slash, has no scheme or host, no ``..`` segments, no whitespace, control
    characters or fragment. A query string is allowed.

    Args:
        path: Path as supplied by the caller, e.g. ``"/channels/1/messages"``.
        method: Method to attach to the error, if validation fails.

    Returns:
        The path unchanged.

    Raises:
        ValidationError: If the path is malformed.
    """

    def reject(reason: str) -> ValidationError:
        return ValidationError(
            f"Malformed path: {reason}",
            path=path if isinstance(path, str) else None,
            method=method,
        )

    if not isinstance(path, str):
        raise reject(f"expected str, got {type(path).__name__}")
    if not path.startswith("/") or path.startswith("//"):
        raise reject("must start with a single '/'")
    if len(path) > MAX_PATH_LENGTH:
        raise reject(f"longer than {MAX_PATH_LENGTH} characters")
    if "://" in path:
        raise reject("must not contain a scheme")
    if _FORBIDDEN_CHARS.search(path):
        raise reject("contains whitespace, control characters or a fragment")

    route = path.split("?", 1)[0]
    if any(segment in (".", "..") for segment in route.split("/")):
        raise reject("must not contain '.' or '..' segments")

    return path
