"""
botwire command-line entry point.

Connect to the gateway and log events, or issue a single REST call.

Usage::

    python -m botwire listen --token $TOKEN
    python -m botwire request GET /channels/123/messages/456
    python -m botwire request POST /channels/123/messages --body '{"content": "hi"}'

Options:
    --token        Bot token (defaults to the BOTWIRE_TOKEN environment variable)
    --verbose      Enable debug logging
    --no-color     Disable colored log output

Every other setting is read from BOTWIRE_* environment variables; see
``botwire.config.ClientConfig.from_env``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import ClassVar

from botwire.config import ClientConfig
from botwire.diagnostics import DiagnosticEvent
from botwire.gateway import EventEnvelope, EventKind, GatewayClient
from botwire.rest import RequestDispatcher, Success
from botwire.types import ValidationError

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "BOTWIRE_TOKEN"


LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Tints the level by severity and the logger name by component."""

    LEVEL_STYLES: ClassVar[dict[int, str]] = {
        logging.DEBUG: "2",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "1;31",
    }
    """SGR parameters per level."""

    COMPONENT_STYLES: ClassVar[dict[str, str]] = {
        "botwire.gateway": "36",
        "botwire.rest": "35",
    }
    """SGR parameters per logger prefix. Other loggers are left plain."""

    def __init__(self, datefmt: str | None = LOG_DATE_FORMAT) -> None:
        super().__init__(LOG_FORMAT, datefmt=datefmt)

    @staticmethod
    def _paint(text: str, style: str | None) -> str:
        return f"\x1b[{style}m{text}\x1b[0m" if style else text

    def _component_style(self, name: str) -> str | None:
        for prefix, style in self.COMPONENT_STYLES.items():
            if name.startswith(prefix):
                return style
        return None

    def format(self, record: logging.LogRecord) -> str:
        # Styled fields go on a copy so other handlers see the plain record.
        styled = logging.makeLogRecord(record.__dict__)
        styled.levelname = self._paint(
            f"{record.levelname:<8}", self.LEVEL_STYLES.get(record.levelno)
        )
        styled.name = self._paint(record.name, self._component_style(record.name))
        return super().format(styled)


def setup_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Configure root logging with optional colors."""
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT) if no_color else ColoredFormatter()
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)


def _log_event(client: GatewayClient, event: EventEnvelope) -> None:
    logger.info("Event %s (seq=%s)", event.kind, event.sequence)


def _log_ready(client: GatewayClient, event: EventEnvelope) -> None:
    session = client.session
    logger.info("Ready, session_id=%s", session.session_id if session else None)


def _log_diagnostic(event: DiagnosticEvent) -> None:
    logger.warning("Diagnostic %s", json.dumps(event.to_dict()))


async def run_listen(token: str, config: ClientConfig) -> int:
    """
    Connect to the gateway and log events until the session ends.

    Returns:
        Process exit code.
    """
    client = GatewayClient.create(config.gateway)
    client.on(EventKind.READY, _log_ready)
    client.on_unhandled(_log_event)
    client.on_diagnostic(_log_diagnostic)

    error = await client.connect(token)
    if error is not None:
        logger.error("Could not connect: %s", json.dumps(error.to_dict()))
        return 1

    try:
        error = await client.wait_closed()
    finally:
        await client.disconnect()

    if error is not None:
        logger.error("Session ended: %s", json.dumps(error.to_dict()))
        return 1
    return 0


async def run_request(
    token: str,
    config: ClientConfig,
    method: str,
    path: str,
    body: object,
    timeout: float | None,
) -> int:
    """
    Issue one REST call and print its outcome as JSON.

    Returns:
        Process exit code.
    """
    async with RequestDispatcher.create(token, config.rest) as dispatcher:
        dispatcher.on_diagnostic(_log_diagnostic)
        result = await dispatcher.send(method, path, body, timeout=timeout)

    if isinstance(result, Success):
        payload = result.payload
        if isinstance(payload, bytes):
            payload = payload.decode(errors="replace")
        print(json.dumps({"status": result.status, "payload": payload}, indent=2))
        return 0

    print(json.dumps(result.to_dict(), indent=2))
    return 1


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Resilient chat-platform bot client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--token",
        default=os.environ.get(TOKEN_ENV_VAR),
        help=f"Bot token (default: ${TOKEN_ENV_VAR})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored log output",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("listen", help="Connect to the gateway and log events")

    request = subparsers.add_parser("request", help="Issue a single REST call")
    request.add_argument("method", help="HTTP method (GET, POST, PATCH, PUT, DELETE)")
    request.add_argument("path", help="Path relative to the API base URL")
    request.add_argument("--body", help="JSON request body")
    request.add_argument("--timeout", type=float, help="Deadline in seconds")

    args = parser.parse_args()
    setup_logging(args.verbose, args.no_color)

    if not args.token:
        parser.error(f"a token is required (--token or ${TOKEN_ENV_VAR})")

    # pydantic's ValidationError is a ValueError too.
    try:
        config = ClientConfig.from_env()
    except ValueError as e:
        logger.error("Invalid BOTWIRE_* configuration: %s", e)
        sys.exit(2)

    try:
        if args.command == "listen":
            code = asyncio.run(run_listen(args.token, config))
        else:
            body = json.loads(args.body) if args.body is not None else None
            code = asyncio.run(
                run_request(args.token, config, args.method, args.path, body, args.timeout)
            )
    except ValidationError as e:
        logger.error("Invalid input: %s", e.message)
        code = 2
    except json.JSONDecodeError as e:
        logger.error("--body is not valid JSON: %s", e)
        code = 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        code = 130

    sys.exit(code)


if __name__ == "__main__":
    main()
