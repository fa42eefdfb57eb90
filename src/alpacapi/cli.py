"""CLI entry point for alpacapi.

Provides the ``alpacapi`` console script with subcommands:

- ``serve`` - Run the Alpaca server (default if no subcommand)
- ``discover`` - Find Alpaca servers on the local network
- ``init-config`` - Write an annotated sample configuration

Usage::

    # Run with digital twin devices
    alpacapi

    # Run from a config file, overriding the port
    alpacapi serve --config ~/alpacapi.jsonc --port 11111

    # List servers, with their devices
    alpacapi discover --details

    # Start a config file to edit
    alpacapi init-config ~/alpacapi.jsonc
"""

from __future__ import annotations

import argparse
import logging
import sys
from functools import lru_cache
from pathlib import Path

import requests

from alpacapi import __version__
from alpacapi.config import (
    CONFIG_ENV_VAR,
    ConfigError,
    DriverMode,
    load_config,
    sample_config,
)
from alpacapi.discovery import describe_server, discover
from alpacapi.discovery.client import DEFAULT_DISCOVERY_TIMEOUT
from alpacapi.discovery.server import DISCOVERY_PORT

DEFAULT_CONFIG_NAME = "alpacapi.jsonc"


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Plain message-only logger for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    return logging.getLogger(__name__)


def _log(message: str) -> None:
    _get_logger().info(message)


# =============================================================================
# Subcommands
# =============================================================================


def run_serve(args: argparse.Namespace) -> int:
    from alpacapi.server import serve

    try:
        config = load_config(args.config)
    except ConfigError as e:
        _log(f"Config error: {e}")
        return 2
    if args.port is not None:
        config.port = args.port
    if args.host is not None:
        config.host = args.host
    if args.digital_twin:
        config.mode = DriverMode.DIGITAL_TWIN
    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.json_logs:
        config.logging.json = True
    try:
        serve(config)
    except ConfigError as e:
        _log(f"Config error: {e}")
        return 2
    except KeyboardInterrupt:
        pass
    return 0


def run_discover(args: argparse.Namespace) -> int:
    records = discover(timeout=args.timeout, port=args.port)
    if not records:
        _log("No Alpaca servers found")
        return 1
    for record in records:
        _log(f"{record.base_url}")
        if not args.details:
            continue
        try:
            devices = describe_server(record)
        except requests.RequestException as e:
            _log(f"    (could not list devices: {e})")
            continue
        for device in devices:
            _log(
                f"    {device.get('DeviceType')} {device.get('DeviceNumber')}: "
                f"{device.get('DeviceName')}"
            )
    return 0


def run_init_config(args: argparse.Namespace) -> int:
    path = Path(args.path).expanduser()
    if path.exists() and not args.force:
        _log(f"{path} already exists, use --force to overwrite")
        return 1
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(sample_config(), encoding="utf-8")
    _log(f"Wrote {path}")
    _log(f"Run: alpacapi serve --config {path}  (or set {CONFIG_ENV_VAR})")
    return 0


# =============================================================================
# Argument parsing
# =============================================================================


def _add_serve_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help=f"Config file (default: ${CONFIG_ENV_VAR}, else digital twin devices)",
    )
    parser.add_argument("--port", type=int, default=None, help="HTTP port")
    parser.add_argument("--host", type=str, default=None, help="Bind address")
    parser.add_argument(
        "--digital-twin",
        action="store_true",
        help="Simulate every device regardless of the config mode",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (default from config, INFO)",
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit logs as JSON lines"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alpacapi",
        description="ASCOM Alpaca device server for astronomy instruments",
    )
    parser.add_argument("--version", action="version", version=f"alpacapi {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser(
        "serve", help="Run the Alpaca server (default if no subcommand)"
    )
    _add_serve_arguments(serve_parser)

    discover_parser = subparsers.add_parser(
        "discover", help="Find Alpaca servers on the local network"
    )
    discover_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_DISCOVERY_TIMEOUT,
        help=f"Seconds to wait for replies (default: {DEFAULT_DISCOVERY_TIMEOUT})",
    )
    discover_parser.add_argument(
        "--port", type=int, default=DISCOVERY_PORT, help="Discovery UDP port"
    )
    discover_parser.add_argument(
        "--details", action="store_true", help="List each server's devices"
    )

    init_parser = subparsers.add_parser(
        "init-config", help="Write an annotated sample configuration"
    )
    init_parser.add_argument(
        "path", nargs="?", default=DEFAULT_CONFIG_NAME, help="Where to write it"
    )
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing file"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for alpacapi.

    No subcommand (or only serve options) runs the server.

    Returns:
        Exit code 0 for success, non-zero for errors.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (
        argv[0].startswith("-") and argv[0] not in ("-h", "--help", "--version")
    ):
        argv.insert(0, "serve")
    args = build_parser().parse_args(argv)

    if args.command == "discover":
        return run_discover(args)
    if args.command == "init-config":
        return run_init_config(args)
    return run_serve(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
