"""Pytest configuration and shared fixtures for alpacapi tests.

Hardware is never touched: mounts are replaced by the in-process iOptron
simulator, other instruments by their digital twins, and serial/TCP links
by socket pairs or mocks injected through the transports' test
constructors.
"""

from __future__ import annotations

import socket
from collections.abc import Iterator

import pytest

from alpacapi.alpaca.response import reset_transaction_counter
from alpacapi.devices import DeviceRegistry
from alpacapi.drivers.twin import (
    IOptronMountSimulator,
    TwinFocuser,
    TwinSafetyMonitor,
    TwinSwitch,
    TwinTelescope,
)
from alpacapi.observability import reset_logging


@pytest.fixture(autouse=True)
def fresh_transaction_counter() -> None:
    """Restart ServerTransactionID numbering for every test."""
    reset_transaction_counter()


@pytest.fixture
def clean_logging() -> Iterator[None]:
    """Drop handlers installed by a test that reconfigures logging."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def socket_pair() -> Iterator[tuple[socket.socket, socket.socket]]:
    """Connected (transport side, instrument side) socket pair.

    The transport side is non-blocking like a socket opened by
    TcpTransport.open().
    """
    ours, theirs = socket.socketpair()
    ours.setblocking(False)
    theirs.settimeout(1.0)
    yield ours, theirs
    ours.close()
    theirs.close()


@pytest.fixture
def simulator() -> IOptronMountSimulator:
    """Mount simulator whose slews take long enough to observe."""
    return IOptronMountSimulator(slew_seconds=60.0)


@pytest.fixture
def twin_telescope(simulator: IOptronMountSimulator) -> TwinTelescope:
    return TwinTelescope("Test mount", simulator=simulator)


@pytest.fixture
def registry(twin_telescope: TwinTelescope) -> Iterator[DeviceRegistry]:
    """Registry with one device of each simulated type, not started.

    Tests drive polling explicitly with ``device.poll_once()``.
    """
    registry = DeviceRegistry()
    registry.register_device(twin_telescope)
    registry.register_device(TwinFocuser("Test focuser"))
    registry.register_device(TwinSwitch("Test switch"))
    registry.register_device(TwinSafetyMonitor("Test safety"))
    yield registry
    registry.shutdown()
