"""Queued command/response engine for serial and TCP instruments.

Handlers never talk to an instrument directly. They append commands to
the device's bounded FIFO and return; the device's polling loop drains the
queue with ``flush()`` on its next iteration. This keeps the transport
owned by exactly one thread and keeps request latency independent of
instrument latency.

Exchange rules:
- Write the command, then wait briefly (``write_delay``) for the
  controller to start answering.
- Read until the terminator (or a fixed reply length) or the command
  timeout, whichever comes first.
- On timeout the command is abandoned: no partial value is produced, the
  input is flushed, and the next command proceeds.
- Consecutive queued commands are separated by ``inter_command_delay``.
- Every exchange is recorded in ``CommStats``; any success resets the
  consecutive-failure streak.

Example:
    queue = CommandQueue(transport)
    queue.enqueue(QueuedCommand(":MS1#", expect_reply=True))
    ...
    results = queue.flush()          # from the polling loop
    position = queue.send(":GEP#", parser=parse_gep)
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from alpacapi.alpaca.errors import (
    AlpacaError,
    CommunicationTimeoutError,
    DeviceBusyError,
    DriverError,
    TransportError,
)
from alpacapi.observability import CommStats, get_logger
from alpacapi.protocol.parsing import DEFAULT_TERMINATOR, ResponseParseError, check_terminated
from alpacapi.protocol.transport import Transport

logger = get_logger(__name__)

#: Seconds to wait for a complete reply.
DEFAULT_COMMAND_TIMEOUT: float = 2.0

#: Seconds between consecutive queued commands.
DEFAULT_INTER_COMMAND_DELAY: float = 0.1

#: Seconds to let the controller start replying after a write.
DEFAULT_WRITE_DELAY: float = 0.01

#: Queued commands per device before DeviceBusyError.
DEFAULT_QUEUE_CAPACITY: int = 16


@dataclass
class QueuedCommand:
    """One command waiting to be sent.

    Attributes:
        command: Full command text including its own terminator.
        expect_reply: Whether to read a reply after writing.
        terminator: Reply terminator.
        reply_length: Read exactly this many bytes instead of scanning for
            ``terminator`` (iOptron answers set-commands with a bare "1").
        timeout: Seconds to wait for the reply.
        parser: Converts the raw reply (terminator included) to a value.
            Raising ``ResponseParseError`` rejects the reply.
        on_result: Called from the polling loop with the CommandResult.
    """

    command: str
    expect_reply: bool = True
    terminator: str = DEFAULT_TERMINATOR
    reply_length: int | None = None
    timeout: float = DEFAULT_COMMAND_TIMEOUT
    parser: Callable[[str], Any] | None = None
    on_result: Callable[[CommandResult], None] | None = None


@dataclass
class CommandResult:
    """Outcome of one exchange. ``error`` is None on success."""

    command: QueuedCommand
    reply: str | None = None
    value: Any = None
    error: AlpacaError | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class CommandQueue:
    """Bounded FIFO plus the exchange logic for one transport."""

    def __init__(
        self,
        transport: Transport,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
        inter_command_delay: float = DEFAULT_INTER_COMMAND_DELAY,
        write_delay: float = DEFAULT_WRITE_DELAY,
        stats: CommStats | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Create a queue bound to ``transport``.

        Args:
            transport: Open or not-yet-open link. Exchanges on a closed
                link fail with TransportError.
            capacity: Maximum number of pending commands.
            inter_command_delay: Pause between queued commands in flush().
            write_delay: Pause between write and first read.
            stats: Collector for exchange outcomes. A private one is
                created when omitted.
            sleep: Injected for tests.

        Raises:
            ValueError: If capacity is not positive.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.transport = transport
        self.capacity = capacity
        self.inter_command_delay = inter_command_delay
        self.write_delay = write_delay
        self.stats = stats if stats is not None else CommStats(transport.description)
        self._sleep = sleep
        self._items: deque[QueuedCommand] = deque()
        self._items_lock = threading.Lock()

    # -- queue -------------------------------------------------------------

    def enqueue(self, command: QueuedCommand | str) -> None:
        """Append a command for the next flush.

        Raises:
            DeviceBusyError: If ``capacity`` commands are already pending.
        """
        if isinstance(command, str):
            command = QueuedCommand(command)
        with self._items_lock:
            if len(self._items) >= self.capacity:
                logger.warning(
                    "Command queue full",
                    endpoint=self.transport.description,
                    command=command.command,
                    capacity=self.capacity,
                )
                raise DeviceBusyError(
                    f"Command queue full ({self.capacity} pending), try again later"
                )
            self._items.append(command)

    def enqueue_many(self, commands: list[QueuedCommand]) -> None:
        """Append a group of commands all-or-nothing.

        Raises:
            DeviceBusyError: If the whole group does not fit.
        """
        with self._items_lock:
            free = self.capacity - len(self._items)
            if len(commands) > free:
                logger.warning(
                    "Command queue full",
                    endpoint=self.transport.description,
                    commands=[c.command for c in commands],
                    free=free,
                )
                raise DeviceBusyError(
                    f"Command queue has room for {free} command(s), "
                    f"{len(commands)} requested"
                )
            self._items.extend(commands)

    @property
    def pending(self) -> int:
        with self._items_lock:
            return len(self._items)

    def clear(self) -> int:
        """Drop all pending commands, returning how many were dropped."""
        with self._items_lock:
            dropped = len(self._items)
            self._items.clear()
        if dropped:
            logger.debug("Command queue cleared", dropped=dropped)
        return dropped

    def flush(self) -> list[CommandResult]:
        """Send every command pending at call time, in order.

        Failures are captured per command and never stop the flush.
        Commands enqueued while flushing wait for the next flush.
        """
        with self._items_lock:
            batch = list(self._items)
            self._items.clear()

        results: list[CommandResult] = []
        for index, command in enumerate(batch):
            if index:
                self._sleep(self.inter_command_delay)
            result = self.execute(command)
            results.append(result)
            if command.on_result is not None:
                try:
                    command.on_result(result)
                except Exception as e:
                    logger.error(
                        "Command result callback failed",
                        command=command.command,
                        error=str(e),
                        exc_info=True,
                    )
        return results

    # -- exchanges ---------------------------------------------------------

    def execute(self, command: QueuedCommand) -> CommandResult:
        """Perform one exchange, capturing any failure in the result."""
        start = time.monotonic()
        result = CommandResult(command=command)
        error_type: str | None = None
        try:
            self.transport.write(command.command.encode("ascii"))
            self._sleep(self.write_delay)
            if command.expect_reply and command.reply_length:
                raw = self.transport.read_exact(
                    command.reply_length, command.timeout
                ).decode("ascii", errors="replace")
                result.reply = raw
            elif command.expect_reply:
                raw = self.transport.read_until(
                    command.terminator.encode("ascii"), command.timeout
                ).decode("ascii", errors="replace")
                result.reply = raw
                check_terminated(raw, command.terminator)
            if command.expect_reply:
                result.value = command.parser(raw) if command.parser else raw
        except CommunicationTimeoutError as e:
            error_type = "timeout"
            result.error = e
            self._discard_input()
        except ResponseParseError as e:
            error_type = "parse"
            result.error = e
        except TransportError as e:
            error_type = "transport"
            result.error = e
        except AlpacaError as e:
            error_type = "driver"
            result.error = e
        except (ValueError, IndexError) as e:
            error_type = "parse"
            result.error = ResponseParseError(f"Cannot parse {result.reply!r}: {e}")

        result.duration_ms = (time.monotonic() - start) * 1000.0
        streak = self.stats.record_exchange(
            result.duration_ms,
            success=result.ok,
            error_type=error_type,
            message=result.error.message if result.error else None,
        )
        if result.error is not None:
            logger.warning(
                "Command failed",
                endpoint=self.transport.description,
                command=command.command,
                error_type=error_type,
                error=result.error.message,
                consecutive_failures=streak,
            )
        else:
            logger.debug(
                "Command complete",
                command=command.command,
                reply=result.reply,
                duration_ms=round(result.duration_ms, 1),
            )
        return result

    def send(
        self,
        command: str,
        parser: Callable[[str], Any] | None = None,
        expect_reply: bool = True,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        terminator: str = DEFAULT_TERMINATOR,
        reply_length: int | None = None,
    ) -> Any:
        """Synchronous exchange, bypassing the FIFO.

        Only the thread owning the transport (the polling loop, or connect)
        may call this.

        Returns:
            Parsed value, or the raw reply when no parser is given, or None
            when no reply is expected.

        Raises:
            CommunicationTimeoutError: No complete reply in time.
            ResponseParseError: Reply malformed.
            TransportError: Link failure.
        """
        result = self.execute(
            QueuedCommand(
                command,
                expect_reply=expect_reply,
                terminator=terminator,
                reply_length=reply_length,
                timeout=timeout,
                parser=parser,
            )
        )
        if result.error is not None:
            raise result.error
        return result.value

    def _discard_input(self) -> None:
        try:
            self.transport.reset_input()
        except DriverError as e:
            logger.debug("Input flush failed", error=e.message)


__all__ = [
    "CommandQueue",
    "CommandResult",
    "DEFAULT_COMMAND_TIMEOUT",
    "DEFAULT_INTER_COMMAND_DELAY",
    "DEFAULT_QUEUE_CAPACITY",
    "DEFAULT_WRITE_DELAY",
    "QueuedCommand",
]
