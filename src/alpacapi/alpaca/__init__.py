"""Alpaca wire layer: error numbers, request parsing and response envelopes."""

from alpacapi.alpaca.errors import (
    ActionNotImplementedError,
    AlpacaError,
    AlpacaErrorCode,
    CommunicationTimeoutError,
    DeviceBusyError,
    DeviceNotFoundError,
    DriverError,
    InvalidOperationError,
    InvalidValueError,
    InvalidWhileParkedError,
    NotConnectedError,
    NotImplementedAlpacaError,
    TransportError,
    ValueNotSetError,
)
from alpacapi.alpaca.request import CaseInsensitiveParams, RequestContext
from alpacapi.alpaca.response import build_envelope, encode_response

__all__ = [
    "ActionNotImplementedError",
    "AlpacaError",
    "AlpacaErrorCode",
    "CaseInsensitiveParams",
    "CommunicationTimeoutError",
    "DeviceBusyError",
    "DeviceNotFoundError",
    "DriverError",
    "InvalidOperationError",
    "InvalidValueError",
    "InvalidWhileParkedError",
    "NotConnectedError",
    "NotImplementedAlpacaError",
    "RequestContext",
    "TransportError",
    "ValueNotSetError",
    "build_envelope",
    "encode_response",
]
