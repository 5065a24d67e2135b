"""
=============================================================================
TCPACCEPTOR CLI ENTRY POINT
=============================================================================

    # Defaults (127.0.0.1:4221, "Hey Client!")
    python -m tcpacceptor

    # Slow work, small pool: watch the 503s under load
    python -m tcpacceptor --delay 8 --workers 2 --queue-size 4

    # All interfaces, JSON access log
    python -m tcpacceptor --host 0.0.0.0 --log-format json

Defaults come from ACCEPTOR_* environment variables (see
AcceptorConfig.from_env), flags override them.

Exit status: 0 after a clean shutdown, 1 if the port could not be bound
or accepting failed, 2 for invalid arguments.

=============================================================================
"""

import argparse
import sys
from dataclasses import replace
from typing import List, Optional

from . import __version__
from .config import AcceptorConfig, LOG_FORMATS
from .errors import AcceptorError
from .server import AcceptorServer


def build_parser(defaults: AcceptorConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcpacceptor",
        description="Bounded, timeout-aware TCP connection acceptor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tcpacceptor                          # Run with defaults
  python -m tcpacceptor --port 8080              # Custom port
  python -m tcpacceptor --delay 8                # Simulate slow work
  python -m tcpacceptor --workers 2 --queue-size 4
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on, 0 for any free port (default: {defaults.port})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LIMITS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=defaults.max_workers,
        help=f"Maximum concurrent handlers (default: {defaults.max_workers})"
    )

    parser.add_argument(
        "--queue-size", "-q",
        type=int,
        default=defaults.queue_size,
        help=f"Connections allowed to wait for a worker (default: {defaults.queue_size})"
    )

    parser.add_argument(
        "--max-request-size",
        type=int,
        default=defaults.max_request_size,
        help=f"Largest request in bytes, 413 beyond it (default: {defaults.max_request_size})"
    )

    parser.add_argument(
        "--read-timeout",
        type=float,
        default=defaults.read_timeout,
        help=f"Seconds to receive a whole request (default: {defaults.read_timeout})"
    )

    parser.add_argument(
        "--handler-timeout",
        type=float,
        default=defaults.handler_timeout,
        help=f"Maximum handler lifetime in seconds (default: {defaults.handler_timeout})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # WORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--delay", "-d",
        type=float,
        default=defaults.work_delay,
        help=f"Simulated work per request in seconds (default: {defaults.work_delay})"
    )

    parser.add_argument(
        "--body",
        default=defaults.response_body,
        help=f"Response body (default: {defaults.response_body!r})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level})"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=defaults.log_format,
        help=f"Access log format (default: {defaults.log_format})"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"tcpacceptor {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace, defaults: AcceptorConfig) -> AcceptorConfig:
    """Overlay parsed CLI arguments on the environment defaults."""
    return replace(
        defaults,
        host=args.host,
        port=args.port,
        min_workers=min(defaults.min_workers, args.workers),
        max_workers=args.workers,
        queue_size=args.queue_size,
        max_request_size=args.max_request_size,
        read_timeout=args.read_timeout,
        handler_timeout=args.handler_timeout,
        work_delay=args.delay,
        response_body=args.body,
        log_level=args.log_level,
        log_format=args.log_format,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit status."""
    try:
        defaults = AcceptorConfig.from_env()
    except ValueError as e:
        print(f"Error: invalid ACCEPTOR_* environment variable: {e}", file=sys.stderr)
        return 2

    parser = build_parser(defaults)
    args = parser.parse_args(argv)

    config = config_from_args(args, defaults)
    try:
        server = AcceptorServer(config)
    except ValueError as e:
        parser.error(str(e))

    try:
        server.serve_forever()
    except AcceptorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
