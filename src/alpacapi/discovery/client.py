"""Alpaca UDP discovery client.

Broadcasts the discovery token and collects replies for a bounded window.
Replies are de-duplicated by source IP, so a server reachable through
several interfaces is listed once with the first port it announced.
"""

from __future__ import annotations

import json
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import requests

from alpacapi.discovery.server import DISCOVERY_PORT, DISCOVERY_TOKEN
from alpacapi.observability import get_logger

logger = get_logger(__name__)

DEFAULT_DISCOVERY_TIMEOUT: float = 2.0
BROADCAST_ADDRESS = "255.255.255.255"


@dataclass(frozen=True)
class DiscoveryRecord:
    """One Alpaca server found on the network."""

    ip: str
    alpaca_port: int
    first_seen: float

    @property
    def base_url(self) -> str:
        return f"http://{self.ip}:{self.alpaca_port}"


def parse_discovery_reply(data: bytes) -> int | None:
    """Extract AlpacaPort from a reply, None for anything garbled."""
    try:
        payload = json.loads(data.decode("utf-8"))
        port = payload["AlpacaPort"]
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError):
        return None
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        return None
    return port


def collect_replies(
    sock: socket.socket,
    timeout: float,
    clock: Callable[[], float] = time.monotonic,
) -> list[DiscoveryRecord]:
    """Read replies from ``sock`` until ``timeout`` elapses.

    A socket error ends collection early; replies already read are kept.
    """
    records: dict[str, DiscoveryRecord] = {}
    deadline = clock() + timeout
    while True:
        remaining = deadline - clock()
        if remaining <= 0:
            break
        sock.settimeout(remaining)
        try:
            data, (ip, _port) = sock.recvfrom(1024)
        except TimeoutError:
            break
        except OSError as e:
            logger.warning(
                "Discovery receive failed", error=str(e), servers=len(records)
            )
            break
        alpaca_port = parse_discovery_reply(data)
        if alpaca_port is None:
            logger.debug("Discarding garbled discovery reply", source=ip)
            continue
        if ip not in records:
            records[ip] = DiscoveryRecord(ip, alpaca_port, time.time())
            logger.debug("Alpaca server found", ip=ip, alpaca_port=alpaca_port)
    return list(records.values())


def discover(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    port: int = DISCOVERY_PORT,
    address: str = BROADCAST_ADDRESS,
    sock: socket.socket | None = None,
) -> list[DiscoveryRecord]:
    """Find Alpaca servers on the local network.

    Args:
        timeout: Seconds to collect replies.
        port: Discovery UDP port.
        address: Broadcast (or unicast) destination.
        sock: Pre-built UDP socket, closed afterwards.

    Returns:
        One record per responding IP, in reply order. Empty when nobody
        answered or the broadcast could not be sent.
    """
    sock = sock or socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.sendto(DISCOVERY_TOKEN, (address, port))
        records = collect_replies(sock, timeout)
    except OSError as e:
        logger.warning("Discovery broadcast failed", address=address, error=str(e))
        return []
    finally:
        sock.close()
    logger.info("Discovery complete", servers=len(records), timeout_s=timeout)
    return records


def describe_server(record: DiscoveryRecord, timeout: float = 5.0) -> list[dict[str, Any]]:
    """Fetch the configured-devices list from a discovered server.

    Raises:
        requests.RequestException: If the server does not answer properly.
    """
    response = requests.get(
        f"{record.base_url}/management/v1/configureddevices", timeout=timeout
    )
    response.raise_for_status()
    value = response.json().get("Value", [])
    return value if isinstance(value, list) else []


__all__ = [
    "DEFAULT_DISCOVERY_TIMEOUT",
    "DiscoveryRecord",
    "collect_replies",
    "describe_server",
    "discover",
    "parse_discovery_reply",
]
