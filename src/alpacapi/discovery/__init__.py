"""Alpaca UDP discovery: responder for the server, client for the CLI."""

from alpacapi.discovery.client import DiscoveryRecord, describe_server, discover
from alpacapi.discovery.server import (
    DISCOVERY_PORT,
    DISCOVERY_TOKEN,
    DiscoveryResponder,
)

__all__ = [
    "DISCOVERY_PORT",
    "DISCOVERY_TOKEN",
    "DiscoveryRecord",
    "DiscoveryResponder",
    "describe_server",
    "discover",
]
