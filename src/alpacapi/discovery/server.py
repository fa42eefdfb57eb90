"""Alpaca UDP discovery responder.

Clients broadcast the ASCII token ``alpacadiscovery1`` to UDP port 32227.
Every Alpaca server on the subnet answers the sender directly with
``{"AlpacaPort": <http port>}``. The responder keeps no state between
datagrams, so a flood of requests costs one small reply each.
"""

from __future__ import annotations

import json
import socket
import threading

from alpacapi.observability import get_logger

logger = get_logger(__name__)

DISCOVERY_PORT: int = 32227
DISCOVERY_TOKEN: bytes = b"alpacadiscovery1"

#: recvfrom timeout, bounds how long stop() waits for the thread.
SOCKET_TIMEOUT: float = 1.0

#: Pause after a socket error before receiving again.
RECEIVE_ERROR_BACKOFF: float = 0.5


def is_discovery_request(data: bytes) -> bool:
    return data.strip() == DISCOVERY_TOKEN


def discovery_reply(alpaca_port: int) -> bytes:
    return json.dumps({"AlpacaPort": alpaca_port}).encode("ascii")


class DiscoveryResponder:
    """Answers discovery broadcasts on a daemon thread.

    Example:
        responder = DiscoveryResponder(alpaca_port=6800)
        responder.start()
        ...
        responder.stop()
    """

    def __init__(
        self,
        alpaca_port: int,
        port: int = DISCOVERY_PORT,
        host: str = "",
        sock: socket.socket | None = None,
    ) -> None:
        """Create a stopped responder.

        Args:
            alpaca_port: HTTP port advertised in replies.
            port: UDP port to listen on.
            host: Interface address to bind, all interfaces when empty.
            sock: Pre-built socket, used as-is (tests inject one).
        """
        self.alpaca_port = alpaca_port
        self.port = port
        self.host = host
        self._sock = sock
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self.replies_sent = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _open_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind((self.host, self.port))
        return sock

    def start(self) -> None:
        """Bind and start answering.

        Raises:
            OSError: If the UDP port cannot be bound.
        """
        if self.running:
            logger.warning("Discovery responder already running")
            return
        if self._sock is None:
            self._sock = self._open_socket()
        self._sock.settimeout(SOCKET_TIMEOUT)
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._serve, name="alpaca-discovery", daemon=True
        )
        self._thread.start()
        logger.info(
            "Discovery responder started",
            udp_port=self.port,
            alpaca_port=self.alpaca_port,
        )

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=SOCKET_TIMEOUT * 3)
            self._thread = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        logger.info("Discovery responder stopped", replies_sent=self.replies_sent)

    def handle_datagram(self, data: bytes, address: tuple[str, int]) -> bool:
        """Reply to one datagram if it is a discovery request."""
        if not is_discovery_request(data):
            logger.debug("Ignoring datagram", source=address[0], size=len(data))
            return False
        if self._sock is None:
            raise RuntimeError("Discovery responder has no socket")
        self._sock.sendto(discovery_reply(self.alpaca_port), address)
        self.replies_sent += 1
        logger.debug("Discovery reply sent", client=f"{address[0]}:{address[1]}")
        return True

    def _serve(self) -> None:
        sock = self._sock
        if sock is None:
            logger.error("Discovery responder started without a socket")
            return
        while not self._stop.is_set():
            try:
                data, address = sock.recvfrom(1024)
            except TimeoutError:
                continue
            except OSError as e:
                if self._stop.is_set():
                    break
                logger.warning("Discovery receive failed", error=str(e))
                self._stop.wait(RECEIVE_ERROR_BACKOFF)
                continue
            try:
                self.handle_datagram(data, address)
            except OSError as e:
                logger.warning("Discovery reply failed", client=address[0], error=str(e))


__all__ = [
    "DISCOVERY_PORT",
    "DISCOVERY_TOKEN",
    "DiscoveryResponder",
    "discovery_reply",
    "is_discovery_request",
]
