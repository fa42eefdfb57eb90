"""Command/response protocol engine for serial and TCP instruments."""

from alpacapi.protocol.command_queue import (
    CommandQueue,
    CommandResult,
    QueuedCommand,
)
from alpacapi.protocol.parsing import ResponseParseError
from alpacapi.protocol.transport import (
    SerialTransport,
    TcpTransport,
    Transport,
)

__all__ = [
    "CommandQueue",
    "CommandResult",
    "QueuedCommand",
    "ResponseParseError",
    "SerialTransport",
    "TcpTransport",
    "Transport",
]
