"""
Interpretation of HTTP responses.

A response is either a success carrying the decoded payload, or a
``RemoteAPIError`` built from the remote's error envelope. Only a success
body that cannot be decoded becomes an ``InternalError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from botwire.types import ClassifiedError, InternalError, RemoteAPIError, WireModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Success:
    """A completed call that the remote accepted."""

    status: int
    """HTTP status of the response (2xx)."""

    payload: Any
    """Decoded JSON body, raw bytes for non-JSON bodies, or None when empty."""


Result = Success | ClassifiedError
"""Outcome of a REST call: a success payload or a classified error."""


class RemoteErrorBody(WireModel):
    """The remote's JSON error envelope. All fields are optional on the wire."""

    code: int | None = None
    message: str | None = None
    errors: dict[str, Any] | None = None
    retry_after: float | None = None


def _is_json(response: httpx.Response) -> bool:
    return response.headers.get("content-type", "").split(";")[0].strip() == "application/json"


def _parse_error_body(response: httpx.Response) -> RemoteErrorBody:
    if not _is_json(response) or not response.content:
        return RemoteErrorBody()
    try:
        return RemoteErrorBody.model_validate_json(response.content)
    except PydanticValidationError:
        logger.debug("Error body is not a recognized envelope: %r", response.content[:200])
        return RemoteErrorBody()


def _retry_after(response: httpx.Response, body: RemoteErrorBody) -> float | None:
    if body.retry_after is not None:
        return body.retry_after
    header = response.headers.get("retry-after")
    if header is None:
        return None
    try:
        return float(header)
    except ValueError:
        return None


def interpret_response(response: httpx.Response, *, path: str, method: str) -> Result:
    """
    Turn an HTTP response into a result.

    Non-2xx responses become ``RemoteAPIError``. The JSON ``code`` from the
    body is used when present; otherwise the HTTP status stands in as the
    code so the field is always numeric.

    Args:
        response: The response, body already read.
        path: Request path, attached to errors.
        method: Request method, attached to errors.

    Returns:
        Success or a classified error.
    """
    status = response.status_code

    if response.is_success:
        if status == 204 or not response.content:
            return Success(status=status, payload=None)
        if not _is_json(response):
            return Success(status=status, payload=response.content)
        # ValueError covers both malformed JSON and bytes that are not valid text.
        try:
            return Success(status=status, payload=response.json())
        except ValueError as e:
            error = InternalError(
                f"Undecodable JSON in {status} response: {e}", path=path, method=method
            )
            error.__cause__ = e
            return error

    body = _parse_error_body(response)
    return RemoteAPIError(
        body.message or response.reason_phrase or f"HTTP {status}",
        code=body.code if body.code is not None else status,
        status=status,
        path=path,
        method=method,
        errors=body.errors,
        retry_after=_retry_after(response, body),
    )
