"""
Local credential shape check.

A bot token is three base64url segments joined by dots::

    <user id><timestamp><hmac>
    MTk4NjIyNDgzNDcxOTI1MjQ4.Cl2FMQ.ZnCjm1XVW7vRze4b7Cq4se7kKWs

Only the shape is checked. The token is otherwise opaque and the remote is
the authority on whether it is valid.
"""

from __future__ import annotations

import re
from typing import Final

from botwire.types import ValidationError

BOT_PREFIX: Final = "Bot "
"""Optional scheme prefix accepted and stripped before checking."""

TOKEN_PATTERN: Final = re.compile(r"[A-Za-z0-9_-]{18,}\.[A-Za-z0-9_-]{6,}\.[A-Za-z0-9_-]{27,}")
"""Three base64url segments with minimum lengths 18, 6 and 27."""


def validate_credential(credential: object) -> str:
    """
    Check the structural shape of a bot token.

    Args:
        credential: Token as supplied by the caller, optionally prefixed
            with ``"Bot "``.

    Returns:
        The bare token, without prefix.

    Raises:
        ValidationError: If the credential is not a string, is empty, or
            does not have the expected shape.
    """
    if not isinstance(credential, str):
        raise ValidationError(f"Credential must be a string, got {type(credential).__name__}")

    token = credential.removeprefix(BOT_PREFIX)
    if not token:
        raise ValidationError("Credential is empty")

    if TOKEN_PATTERN.fullmatch(token) is None:
        # Never echo the token itself.
        raise ValidationError(f"Credential has an unexpected shape (length {len(token)})")

    return token
