"""Byte transports for instrument links.

Command/response instruments are reached either over a serial port (USB
adapters, RS-232) or a TCP socket (Wi-Fi and Ethernet mount adapters).
Both sit behind the ``Transport`` protocol so the command queue and the
drivers never care which one they hold.

Protocols:
    SerialPort: The subset of pyserial.Serial the serial transport uses
    Transport: Open/close plus terminator-delimited reads with a deadline

Classes:
    SerialTransport: pyserial-backed transport
    TcpTransport: socket-backed transport, readiness via select()

Functions:
    list_serial_ports: pyserial port enumeration
    auto_detect_serial_path: pick a likely USB serial adapter

Example:
    transport = TcpTransport("192.168.4.1", 4030)
    transport.open()
    transport.write(b":GEP#")
    reply = transport.read_until(b"#", timeout=2.0)

Testing:
    Inject fakes instead of hardware:

        transport = SerialTransport._create_with_serial(MockSerialPort())
        transport = TcpTransport._create_with_socket(fake_socket)
"""

from __future__ import annotations

import select
import socket
import time
from typing import Any, Protocol, runtime_checkable

from alpacapi.alpaca.errors import CommunicationTimeoutError, TransportError
from alpacapi.observability import get_logger

logger = get_logger(__name__)

#: Default baud rate for USB serial mounts.
DEFAULT_BAUD_RATE: int = 115200

#: Serial path used when auto-detection finds nothing.
FALLBACK_SERIAL_PATH: str = "/dev/ttyUSB0"

#: Longest single blocking read; keeps deadline checks responsive.
_READ_SLICE_SECONDS: float = 0.05

#: Cap on an unterminated reply, guards against a babbling device.
MAX_REPLY_BYTES: int = 4096


@runtime_checkable
class SerialPort(Protocol):  # pragma: no cover
    """Subset of pyserial.Serial used by SerialTransport.

    Example:
        class MockSerialPort:
            is_open = True
            in_waiting = 0
            timeout = 0.05

            def read(self, size=1):
                return b""

            def write(self, data):
                return len(data)

            def reset_input_buffer(self):
                pass

            def close(self):
                self.is_open = False
    """

    timeout: float | None

    @property
    def is_open(self) -> bool:
        """True while the port is open."""
        ...

    @property
    def in_waiting(self) -> int:
        """Bytes buffered and readable without blocking."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to ``size`` bytes, blocking at most ``timeout``."""
        ...

    def write(self, data: bytes) -> int | None:
        """Write bytes to the port."""
        ...

    def reset_input_buffer(self) -> None:
        """Discard unread input."""
        ...

    def close(self) -> None:
        """Close the port."""
        ...


@runtime_checkable
class Transport(Protocol):  # pragma: no cover
    """Bidirectional byte link to one instrument.

    A transport is owned by exactly one device. Only that device's polling
    loop performs I/O on it, so implementations need no locking.
    """

    @property
    def is_open(self) -> bool:
        """True once open() succeeded and until close()."""
        ...

    @property
    def description(self) -> str:
        """Human-readable endpoint, e.g. "/dev/ttyUSB0" or "10.0.0.5:4030"."""
        ...

    def open(self) -> None:
        """Open the link.

        Raises:
            TransportError: If the endpoint is unreachable.
        """
        ...

    def close(self) -> None:
        """Release the link. Safe to call when already closed."""
        ...

    def write(self, data: bytes) -> None:
        """Write a complete command.

        Raises:
            TransportError: If the link is closed or the write fails.
        """
        ...

    def read_until(self, terminator: bytes, timeout: float) -> bytes:
        """Read up to and including ``terminator``.

        Raises:
            CommunicationTimeoutError: If the terminator did not arrive in
                ``timeout`` seconds. Partial input is discarded.
            TransportError: If the link fails while reading.
        """
        ...

    def read_exact(self, count: int, timeout: float) -> bytes:
        """Read exactly ``count`` bytes (unterminated status replies).

        Raises:
            CommunicationTimeoutError: If fewer bytes arrived in time.
            TransportError: If the link fails while reading.
        """
        ...

    def reset_input(self) -> None:
        """Drop any unread input (stale replies after a timeout)."""
        ...


class _BufferedReader:
    """Shared terminator scanning for transports that read in chunks."""

    def __init__(self) -> None:
        self._pending = b""

    def _take_reply(self, terminator: bytes) -> bytes | None:
        index = self._pending.find(terminator)
        if index < 0:
            return None
        end = index + len(terminator)
        reply, self._pending = self._pending[:end], self._pending[end:]
        return reply

    def _read_chunk(self, wait: float) -> bytes:
        raise NotImplementedError  # pragma: no cover

    def read_until(self, terminator: bytes, timeout: float) -> bytes:
        deadline = time.monotonic() + timeout
        while True:
            reply = self._take_reply(terminator)
            if reply is not None:
                return reply
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                partial, self._pending = self._pending, b""
                raise CommunicationTimeoutError(
                    f"No reply terminated by {terminator!r} within {timeout:.2f}s"
                    + (f" (discarded {partial!r})" if partial else "")
                )
            self._pending += self._read_chunk(min(remaining, _READ_SLICE_SECONDS))
            if len(self._pending) > MAX_REPLY_BYTES:
                self._pending = b""
                raise TransportError("Reply exceeded maximum length without terminator")

    def read_exact(self, count: int, timeout: float) -> bytes:
        deadline = time.monotonic() + timeout
        while len(self._pending) < count:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                partial, self._pending = self._pending, b""
                raise CommunicationTimeoutError(
                    f"Expected {count} byte(s) within {timeout:.2f}s, got {len(partial)}"
                )
            self._pending += self._read_chunk(min(remaining, _READ_SLICE_SECONDS))
        reply, self._pending = self._pending[:count], self._pending[count:]
        return reply


# =============================================================================
# Serial
# =============================================================================


class SerialTransport(_BufferedReader):
    """Transport over a pyserial port."""

    def __init__(self, path: str, baud_rate: int = DEFAULT_BAUD_RATE) -> None:
        super().__init__()
        self._path = path
        self._baud_rate = baud_rate
        self._serial: SerialPort | None = None

    @classmethod
    def _create_with_serial(
        cls, serial_port: SerialPort, path: str = "/dev/mock"
    ) -> SerialTransport:
        """Create an already-open transport around an injected port (tests)."""
        instance = cls(path)
        instance._serial = serial_port
        return instance

    @property
    def is_open(self) -> bool:
        return self._serial is not None and bool(self._serial.is_open)

    @property
    def description(self) -> str:
        return self._path

    @property
    def baud_rate(self) -> int:
        return self._baud_rate

    def open(self) -> None:
        if self.is_open:
            return
        try:
            import serial as serial_module
        except ImportError:
            raise TransportError("pyserial not installed. Run: pip install pyserial")
        try:
            self._serial = serial_module.Serial(
                self._path, baudrate=self._baud_rate, timeout=_READ_SLICE_SECONDS
            )
        except Exception as e:
            raise TransportError(f"Failed to open serial port {self._path}: {e}")
        self._pending = b""
        logger.info("Serial port opened", path=self._path, baud_rate=self._baud_rate)

    def close(self) -> None:
        port, self._serial = self._serial, None
        self._pending = b""
        if port is None:
            return
        try:
            port.close()
        except Exception as e:
            logger.warning("Error closing serial port", path=self._path, error=str(e))
        else:
            logger.info("Serial port closed", path=self._path)

    def _port(self) -> SerialPort:
        if not self.is_open or self._serial is None:
            raise TransportError(f"Serial port {self._path} is not open")
        return self._serial

    def write(self, data: bytes) -> None:
        port = self._port()
        try:
            port.write(data)
        except Exception as e:
            raise TransportError(f"Write to {self._path} failed: {e}")

    def _read_chunk(self, wait: float) -> bytes:
        port = self._port()
        try:
            port.timeout = wait
            return port.read(max(1, port.in_waiting))
        except Exception as e:
            raise TransportError(f"Read from {self._path} failed: {e}")

    def reset_input(self) -> None:
        self._pending = b""
        if self.is_open and self._serial is not None:
            try:
                self._serial.reset_input_buffer()
            except Exception as e:
                raise TransportError(f"Flush of {self._path} failed: {e}")


# =============================================================================
# TCP
# =============================================================================


class TcpTransport(_BufferedReader):
    """Transport over a TCP socket (Wi-Fi/Ethernet serial bridges)."""

    def __init__(self, host: str, port: int, connect_timeout: float = 5.0) -> None:
        super().__init__()
        self._host = host
        self._port_number = port
        self._connect_timeout = connect_timeout
        self._sock: Any = None

    @classmethod
    def _create_with_socket(
        cls, sock: Any, host: str = "mock", port: int = 0
    ) -> TcpTransport:
        """Create an already-open transport around an injected socket (tests)."""
        instance = cls(host, port)
        instance._sock = sock
        return instance

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    @property
    def description(self) -> str:
        return f"{self._host}:{self._port_number}"

    def open(self) -> None:
        if self.is_open:
            return
        try:
            sock = socket.create_connection(
                (self._host, self._port_number), timeout=self._connect_timeout
            )
        except OSError as e:
            raise TransportError(f"Failed to connect to {self.description}: {e}")
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.setblocking(False)
        self._sock = sock
        self._pending = b""
        logger.info("TCP link opened", endpoint=self.description)

    def close(self) -> None:
        sock, self._sock = self._sock, None
        self._pending = b""
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.warning("Error closing socket", endpoint=self.description, error=str(e))
        else:
            logger.info("TCP link closed", endpoint=self.description)

    def _socket(self) -> Any:
        if self._sock is None:
            raise TransportError(f"Socket to {self.description} is not open")
        return self._sock

    def write(self, data: bytes) -> None:
        sock = self._socket()
        try:
            sock.sendall(data)
        except OSError as e:
            raise TransportError(f"Write to {self.description} failed: {e}")

    def _read_chunk(self, wait: float) -> bytes:
        sock = self._socket()
        try:
            readable, _, _ = select.select([sock], [], [], wait)
            if not readable:
                return b""
            chunk = sock.recv(256)
        except BlockingIOError:
            return b""
        except OSError as e:
            raise TransportError(f"Read from {self.description} failed: {e}")
        if not chunk:
            raise TransportError(f"Connection to {self.description} closed by peer")
        return chunk

    def reset_input(self) -> None:
        self._pending = b""
        if self._sock is None:
            return
        # Drain whatever is already readable without waiting.
        while True:
            try:
                readable, _, _ = select.select([self._sock], [], [], 0)
                if not readable or not self._sock.recv(256):
                    return
            except (BlockingIOError, OSError):
                return


# =============================================================================
# Port discovery
# =============================================================================


def list_serial_ports() -> list[Any]:  # pragma: no cover
    """List serial ports via pyserial, empty when pyserial is missing."""
    try:
        import serial.tools.list_ports

        return list(serial.tools.list_ports.comports())
    except ImportError:
        return []


def auto_detect_serial_path(
    ports: list[Any] | None = None,
    fallback: str = FALLBACK_SERIAL_PATH,
) -> str:
    """Choose a USB serial adapter path for a mount.

    Prefers ports whose device path contains "ttyUSB" (FTDI/CP210x adapters
    used by most mounts), then "ttyACM", then any port. Falls back to
    ``fallback`` when nothing is attached.

    Args:
        ports: Port info objects (``.device`` attribute). Enumerated when None.
        fallback: Path returned when no port is found.
    """
    if ports is None:
        ports = list_serial_ports()
    devices = [str(getattr(p, "device", p)) for p in ports]
    for marker in ("ttyUSB", "ttyACM"):
        for device in sorted(devices):
            if marker in device:
                return device
    if devices:
        return sorted(devices)[0]
    return fallback


__all__ = [
    "DEFAULT_BAUD_RATE",
    "FALLBACK_SERIAL_PATH",
    "SerialPort",
    "SerialTransport",
    "TcpTransport",
    "Transport",
    "auto_detect_serial_path",
    "list_serial_ports",
]
