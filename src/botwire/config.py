"""
Client configuration.

All tunables are operator-facing. Defaults live in module-level constants and
every value can be overridden through a ``BOTWIRE_*`` environment variable.

Reconnection multipliers and attempt limits are configurable per deployment.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Final

from pydantic import Field, model_validator

from botwire.types import StrictBaseModel

DEFAULT_GATEWAY_URL: Final = "wss://gateway.discord.gg/?v=10&encoding=json"
"""Gateway WebSocket endpoint."""

DEFAULT_API_BASE_URL: Final = "https://discord.com/api/v10"
"""Base URL prepended to every REST path."""

DEFAULT_REQUEST_TIMEOUT: Final = 15.0
"""Per-request deadline in seconds. Every request carries one."""

DEFAULT_HANDSHAKE_TIMEOUT: Final = 10.0
"""Seconds allowed for the gateway handshake (HELLO through READY)."""

DEFAULT_USER_AGENT: Final = "botwire (https://github.com/botwire/botwire, 0.1.0)"
"""User-Agent header sent with REST calls."""

RECONNECT_INITIAL_DELAY: Final = 1.0
"""Delay before the first reconnect attempt, in seconds."""

RECONNECT_MULTIPLIER: Final = 2.0
"""Growth factor applied to the delay after each failed attempt."""

RECONNECT_MAX_DELAY: Final = 60.0
"""Upper bound on a single reconnect delay, in seconds."""

RECONNECT_MAX_ATTEMPTS: Final = 5
"""Consecutive failed attempts tolerated before the session is declared failed."""

ENV_PREFIX: Final = "BOTWIRE_"
"""Prefix shared by all environment overrides."""


class ReconnectPolicy(StrictBaseModel):
    """Exponential backoff parameters for gateway reconnection."""

    initial_delay: float = Field(default=RECONNECT_INITIAL_DELAY, ge=0)
    """Delay before attempt 1."""

    multiplier: float = Field(default=RECONNECT_MULTIPLIER, ge=1)
    """Factor applied per attempt. At least 1 so delays never shrink."""

    max_delay: float = Field(default=RECONNECT_MAX_DELAY, ge=0)
    """Cap applied after multiplication."""

    max_attempts: int = Field(default=RECONNECT_MAX_ATTEMPTS, ge=0)
    """Attempts allowed per outage. Zero disables reconnection."""

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> ReconnectPolicy:
        """The cap must not sit below the starting delay."""
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        return self

    def delay_for(self, attempt: int) -> float:
        """
        Compute the delay preceding a given attempt.

        The sequence is non-decreasing: each delay is the previous one times
        the multiplier, clamped to the cap.

        Args:
            attempt: 1-based attempt number.

        Returns:
            Delay in seconds.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


class GatewayConfig(StrictBaseModel):
    """Settings for the persistent gateway connection."""

    url: str = DEFAULT_GATEWAY_URL
    """WebSocket URL of the gateway."""

    intents: int = Field(default=0, ge=0)
    """Bitfield of event groups requested in IDENTIFY."""

    handshake_timeout: float = Field(default=DEFAULT_HANDSHAKE_TIMEOUT, gt=0)
    """Deadline for establishing a session."""

    reconnect: ReconnectPolicy = Field(default_factory=ReconnectPolicy)
    """Backoff applied after the connection drops."""


class RestConfig(StrictBaseModel):
    """Settings for the REST request dispatcher."""

    base_url: str = DEFAULT_API_BASE_URL
    """Base URL for every request path."""

    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    """Default per-request deadline."""

    max_concurrency: int | None = Field(default=None, ge=1)
    """Maximum requests in flight at once. None means unbounded."""

    user_agent: str = DEFAULT_USER_AGENT
    """User-Agent header value."""


class ClientConfig(StrictBaseModel):
    """Top-level configuration combining both components."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    rest: RestConfig = Field(default_factory=RestConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """
        Build a configuration from ``BOTWIRE_*`` environment variables.

        Recognized variables::

            BOTWIRE_GATEWAY_URL
            BOTWIRE_GATEWAY_INTENTS
            BOTWIRE_HANDSHAKE_TIMEOUT
            BOTWIRE_RECONNECT_INITIAL_DELAY
            BOTWIRE_RECONNECT_MULTIPLIER
            BOTWIRE_RECONNECT_MAX_DELAY
            BOTWIRE_RECONNECT_MAX_ATTEMPTS
            BOTWIRE_API_BASE_URL
            BOTWIRE_REQUEST_TIMEOUT
            BOTWIRE_MAX_CONCURRENCY
            BOTWIRE_USER_AGENT

        Unset variables keep their defaults.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
            pydantic.ValidationError: If a value is out of range.
        """
        env = os.environ if environ is None else environ

        def read(name: str, convert: type) -> Any:
            raw = env.get(f"{ENV_PREFIX}{name}")
            if raw is None or raw == "":
                return None
            try:
                return convert(raw)
            except ValueError as exc:
                raise ValueError(f"Invalid {ENV_PREFIX}{name}: {raw!r}") from exc

        def present(values: dict[str, Any]) -> dict[str, Any]:
            return {key: value for key, value in values.items() if value is not None}

        reconnect = present(
            {
                "initial_delay": read("RECONNECT_INITIAL_DELAY", float),
                "multiplier": read("RECONNECT_MULTIPLIER", float),
                "max_delay": read("RECONNECT_MAX_DELAY", float),
                "max_attempts": read("RECONNECT_MAX_ATTEMPTS", int),
            }
        )
        gateway = present(
            {
                "url": read("GATEWAY_URL", str),
                "intents": read("GATEWAY_INTENTS", int),
                "handshake_timeout": read("HANDSHAKE_TIMEOUT", float),
            }
        )
        rest = present(
            {
                "base_url": read("API_BASE_URL", str),
                "request_timeout": read("REQUEST_TIMEOUT", float),
                "max_concurrency": read("MAX_CONCURRENCY", int),
                "user_agent": read("USER_AGENT", str),
            }
        )

        return cls(
            gateway=GatewayConfig(**gateway, reconnect=ReconnectPolicy(**reconnect)),
            rest=RestConfig(**rest),
        )
