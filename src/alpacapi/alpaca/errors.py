"""ASCOM Alpaca error numbers and the exceptions that carry them.

Every failure a device handler can report travels as an ``AlpacaError``
subclass. The registry catches them at the dispatch boundary and turns
them into (ErrorNumber, ErrorMessage) for the response envelope, so
handlers simply ``raise NotConnectedError()`` and never build replies.

ASCOM reserves 0x400-0x4FF for the standard codes; drivers are free to
use 0x500-0xFFF. The driver-range codes below are the ones this server
reports for transport and registry conditions.

Example:
    from alpacapi.alpaca.errors import InvalidValueError

    if not 0.0 <= ra < 24.0:
        raise InvalidValueError(f"RightAscension {ra} out of range 0..24")
"""

from __future__ import annotations

from enum import IntEnum


class AlpacaErrorCode(IntEnum):
    """ErrorNumber values placed in the response envelope."""

    OK = 0
    NOT_IMPLEMENTED = 0x400
    INVALID_VALUE = 0x401
    VALUE_NOT_SET = 0x402
    NOT_CONNECTED = 0x407
    INVALID_WHILE_PARKED = 0x408
    INVALID_WHILE_SLAVED = 0x409
    INVALID_OPERATION = 0x40B
    ACTION_NOT_IMPLEMENTED = 0x40C
    OPERATION_CANCELLED = 0x40E
    UNSPECIFIED = 0x4FF
    # Driver range
    DRIVER_ERROR = 0x500
    COMMUNICATION_TIMEOUT = 0x501
    DEVICE_NOT_FOUND = 0x502
    DEVICE_BUSY = 0x503


class AlpacaError(Exception):
    """Base class for errors reported through the Alpaca envelope."""

    code: AlpacaErrorCode = AlpacaErrorCode.UNSPECIFIED
    default_message: str = "Unspecified error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def error_number(self) -> int:
        return int(self.code)


class NotImplementedAlpacaError(AlpacaError):
    """Property or method not implemented by this device."""

    code = AlpacaErrorCode.NOT_IMPLEMENTED
    default_message = "Not implemented"


class InvalidValueError(AlpacaError):
    """Parameter missing, unparseable or out of range."""

    code = AlpacaErrorCode.INVALID_VALUE
    default_message = "Invalid value"


class ValueNotSetError(AlpacaError):
    """Property read before it was ever written (e.g. TargetRightAscension)."""

    code = AlpacaErrorCode.VALUE_NOT_SET
    default_message = "Value not set"


class NotConnectedError(AlpacaError):
    code = AlpacaErrorCode.NOT_CONNECTED
    default_message = "Device is not connected"


class InvalidWhileParkedError(AlpacaError):
    code = AlpacaErrorCode.INVALID_WHILE_PARKED
    default_message = "Invalid while parked"


class InvalidOperationError(AlpacaError):
    """Operation not valid in the device's current state."""

    code = AlpacaErrorCode.INVALID_OPERATION
    default_message = "Invalid operation"


class ActionNotImplementedError(AlpacaError):
    """Unknown action name for this device type."""

    code = AlpacaErrorCode.ACTION_NOT_IMPLEMENTED
    default_message = "Action not implemented"


class DriverError(AlpacaError):
    """Unexpected failure inside a driver."""

    code = AlpacaErrorCode.DRIVER_ERROR
    default_message = "Driver error"


class TransportError(DriverError):
    """Write/read on the instrument link failed (port closed, socket reset)."""

    default_message = "Transport error"


class CommunicationTimeoutError(DriverError):
    """Instrument did not complete a reply within the command timeout."""

    code = AlpacaErrorCode.COMMUNICATION_TIMEOUT
    default_message = "Communication timeout"


class DeviceNotFoundError(AlpacaError):
    """No device registered under the requested (type, number)."""

    code = AlpacaErrorCode.DEVICE_NOT_FOUND
    default_message = "Device not found"


class DeviceBusyError(AlpacaError):
    """Command queue is full."""

    code = AlpacaErrorCode.DEVICE_BUSY
    default_message = "Device busy"


__all__ = [
    "ActionNotImplementedError",
    "AlpacaError",
    "AlpacaErrorCode",
    "CommunicationTimeoutError",
    "DeviceBusyError",
    "DeviceNotFoundError",
    "DriverError",
    "InvalidOperationError",
    "InvalidValueError",
    "InvalidWhileParkedError",
    "NotConnectedError",
    "NotImplementedAlpacaError",
    "TransportError",
    "ValueNotSetError",
]
