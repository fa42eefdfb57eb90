"""Tests for UDP discovery: reply parsing, the responder and the client."""

from __future__ import annotations

import socket
import time
from unittest.mock import MagicMock, patch

import pytest

from alpacapi.discovery import DISCOVERY_TOKEN, DiscoveryResponder, describe_server, discover
from alpacapi.discovery.client import DiscoveryRecord, collect_replies, parse_discovery_reply
from alpacapi.discovery.server import discovery_reply, is_discovery_request

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def loopback_responder():
    """Responder on an ephemeral loopback port; yields (responder, port)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    responder = DiscoveryResponder(alpaca_port=6800, port=port, sock=sock)
    responder.start()
    yield responder, port
    responder.stop()


def reply_socket(*replies: tuple[bytes, str]) -> MagicMock:
    """Mock UDP socket returning ``replies`` then timing out."""
    sock = MagicMock()
    sock.recvfrom.side_effect = [(data, (ip, 32227)) for data, ip in replies] + [
        TimeoutError()
    ]
    return sock


# =============================================================================
# Wire format
# =============================================================================


class TestWireFormat:
    def test_request_token(self) -> None:
        assert is_discovery_request(b"alpacadiscovery1")
        assert is_discovery_request(b"alpacadiscovery1\n")
        assert not is_discovery_request(b"alpacadiscovery2")
        assert not is_discovery_request(b"")

    def test_reply(self) -> None:
        assert discovery_reply(6800) == b'{"AlpacaPort": 6800}'
        assert parse_discovery_reply(discovery_reply(11111)) == 11111

    @pytest.mark.parametrize(
        "data",
        [
            b"garbage",
            b"\xff\xfe",
            b"[6800]",
            b'{"Port": 6800}',
            b'{"AlpacaPort": "6800"}',
            b'{"AlpacaPort": true}',
            b'{"AlpacaPort": 0}',
            b'{"AlpacaPort": 70000}',
        ],
    )
    def test_garbled_reply(self, data: bytes) -> None:
        assert parse_discovery_reply(data) is None


# =============================================================================
# Responder
# =============================================================================


class TestResponder:
    def test_answers_token_only(self) -> None:
        sock = MagicMock()
        responder = DiscoveryResponder(alpaca_port=6800, sock=sock)

        assert responder.handle_datagram(DISCOVERY_TOKEN, ("10.0.0.9", 50000)) is True
        assert responder.handle_datagram(b"hello", ("10.0.0.9", 50000)) is False

        sock.sendto.assert_called_once_with(b'{"AlpacaPort": 6800}', ("10.0.0.9", 50000))
        assert responder.replies_sent == 1

    def test_start_stop(self, loopback_responder) -> None:
        responder, _ = loopback_responder

        assert responder.running

        responder.stop()

        assert not responder.running

    def test_stop_without_start(self) -> None:
        DiscoveryResponder(alpaca_port=6800).stop()

    def test_reply_without_socket(self) -> None:
        responder = DiscoveryResponder(alpaca_port=6800)

        with pytest.raises(RuntimeError):
            responder.handle_datagram(DISCOVERY_TOKEN, ("10.0.0.9", 50000))
        assert responder.replies_sent == 0

    def test_serve_without_socket_returns(self) -> None:
        DiscoveryResponder(alpaca_port=6800)._serve()

    def test_receive_errors_back_off(self) -> None:
        sock = MagicMock()
        sock.recvfrom.side_effect = OSError("Network is down")
        responder = DiscoveryResponder(alpaca_port=6800, sock=sock)

        responder.start()
        time.sleep(0.2)
        responder.stop()

        assert not responder.running
        assert 1 <= sock.recvfrom.call_count <= 2

    def test_round_trip_over_loopback(self, loopback_responder) -> None:
        responder, port = loopback_responder

        records = discover(timeout=0.5, port=port, address="127.0.0.1")

        assert len(records) == 1
        assert records[0].ip == "127.0.0.1"
        assert records[0].alpaca_port == 6800
        assert records[0].base_url == "http://127.0.0.1:6800"
        assert responder.replies_sent == 1


# =============================================================================
# Client
# =============================================================================


class TestCollectReplies:
    def test_deduplicates_by_ip(self) -> None:
        sock = reply_socket(
            (b'{"AlpacaPort": 6800}', "10.0.0.2"),
            (b'{"AlpacaPort": 7000}', "10.0.0.2"),
            (b'{"AlpacaPort": 6800}', "10.0.0.2"),
        )

        records = collect_replies(sock, timeout=5.0)

        assert [(r.ip, r.alpaca_port) for r in records] == [("10.0.0.2", 6800)]

    def test_skips_garbled_replies(self) -> None:
        sock = reply_socket(
            (b"not json", "10.0.0.3"),
            (b'{"AlpacaPort": 11111}', "10.0.0.4"),
            (b'{"AlpacaPort": 6800}', "10.0.0.3"),
        )

        records = collect_replies(sock, timeout=5.0)

        assert [(r.ip, r.alpaca_port) for r in records] == [
            ("10.0.0.4", 11111),
            ("10.0.0.3", 6800),
        ]

    def test_socket_error_keeps_earlier_replies(self) -> None:
        sock = MagicMock()
        sock.recvfrom.side_effect = [
            (b'{"AlpacaPort": 6800}', ("10.0.0.2", 32227)),
            ConnectionRefusedError("Connection refused"),
        ]

        records = collect_replies(sock, timeout=5.0)

        assert [(r.ip, r.alpaca_port) for r in records] == [("10.0.0.2", 6800)]
        assert sock.recvfrom.call_count == 2

    def test_window_is_bounded(self) -> None:
        sock = MagicMock()
        sock.recvfrom.return_value = (b'{"AlpacaPort": 6800}', ("10.0.0.2", 32227))
        clock = iter([0.0, 0.0, 1.0, 2.0]).__next__

        records = collect_replies(sock, timeout=2.0, clock=clock)

        assert len(records) == 1
        assert sock.recvfrom.call_count == 2


class TestDiscover:
    def test_send_failure_returns_empty(self) -> None:
        sock = MagicMock()
        sock.sendto.side_effect = OSError("Network is unreachable")

        assert discover(timeout=0.1, sock=sock) == []
        sock.close.assert_called_once()

    def test_receive_failure_returns_replies_so_far(self) -> None:
        sock = MagicMock()
        sock.recvfrom.side_effect = [
            (b'{"AlpacaPort": 11111}', ("10.0.0.4", 32227)),
            OSError("Network is down"),
        ]

        records = discover(timeout=1.0, sock=sock)

        assert [(r.ip, r.alpaca_port) for r in records] == [("10.0.0.4", 11111)]
        sock.close.assert_called_once()

    def test_nobody_answers(self) -> None:
        sock = reply_socket()

        assert discover(timeout=0.1, sock=sock) == []
        sock.sendto.assert_called_once_with(DISCOVERY_TOKEN, ("255.255.255.255", 32227))


class TestDescribeServer:
    def test_fetches_configured_devices(self) -> None:
        devices = [{"DeviceName": "Mount", "DeviceType": "Telescope", "DeviceNumber": 0}]
        response = MagicMock()
        response.json.return_value = {"Value": devices, "ErrorNumber": 0}

        with patch("alpacapi.discovery.client.requests.get", return_value=response) as get:
            result = describe_server(DiscoveryRecord("10.0.0.2", 6800, 0.0), timeout=1.0)

        assert result == devices
        get.assert_called_once_with(
            "http://10.0.0.2:6800/management/v1/configureddevices", timeout=1.0
        )
        response.raise_for_status.assert_called_once()

    def test_non_list_value(self) -> None:
        response = MagicMock()
        response.json.return_value = {"Value": "oops"}

        with patch("alpacapi.discovery.client.requests.get", return_value=response):
            assert describe_server(DiscoveryRecord("10.0.0.2", 6800, 0.0)) == []
