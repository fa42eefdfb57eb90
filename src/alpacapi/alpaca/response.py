"""Alpaca response envelope encoding.

Every reply on ``/api`` and ``/management`` is the same JSON envelope::

    {"Value": ..., "ClientTransactionID": 7, "ServerTransactionID": 1042,
     "ErrorNumber": 0, "ErrorMessage": ""}

ServerTransactionID comes from one process-wide counter that only ever
increases. Encoding never fails: values JSON cannot represent (NaN,
infinities, bytes, enums, datetimes, arbitrary objects) degrade to a
string form instead of raising inside a request handler.

Example:
    body = encode_response(client_transaction_id=7, value=12.5)
    # b'{"Value": 12.5, "ClientTransactionID": 7, "ServerTransactionID": 1, ...}'
"""

from __future__ import annotations

import json
import math
import threading
from datetime import date, datetime
from enum import Enum
from typing import Any

from alpacapi.alpaca.errors import AlpacaError, AlpacaErrorCode

__all__ = [
    "TransactionCounter",
    "build_envelope",
    "encode_response",
    "encode_error",
    "next_server_transaction_id",
    "reset_transaction_counter",
]


class TransactionCounter:
    """Lock-guarded, strictly increasing counter.

    Values start at 1. The counter does not wrap: a Python int cannot
    overflow, and reusing an ID would break the uniqueness clients rely on.
    """

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def current(self) -> int:
        with self._lock:
            return self._value


_counter = TransactionCounter()


def next_server_transaction_id() -> int:
    """Return the next process-wide ServerTransactionID."""
    return _counter.next()


def reset_transaction_counter() -> None:
    """Restart numbering at 1 (tests only)."""
    global _counter
    _counter = TransactionCounter()


def _to_jsonable(value: Any) -> Any:
    """Coerce ``value`` into something ``json.dumps`` accepts strictly.

    Floats that JSON cannot carry (NaN, +/-inf) become their ``str()``.
    Enums collapse to their value, datetimes to ISO 8601, bytes are
    decoded as latin-1, and anything unknown falls back to ``str()``.
    """
    if value is None or isinstance(value, bool | str):
        return value
    if isinstance(value, Enum):
        return _to_jsonable(value.value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value):
            return value
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, bytes | bytearray):
        return bytes(value).decode("latin-1")
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [_to_jsonable(v) for v in value]
    return str(value)


def build_envelope(
    client_transaction_id: int = 0,
    value: Any = None,
    error_number: int = 0,
    error_message: str = "",
    include_value: bool = True,
) -> dict[str, Any]:
    """Build the envelope dict and assign its ServerTransactionID.

    Args:
        client_transaction_id: Echoed from the request (0 when absent).
        value: Handler result. Omitted when ``include_value`` is False,
            which is what PUT methods returning nothing use.
        error_number: 0 on success, otherwise an ``AlpacaErrorCode``.
        error_message: Empty on success.
        include_value: Whether the "Value" key is present.

    Returns:
        Envelope dict with JSON-safe contents.
    """
    envelope: dict[str, Any] = {}
    if include_value:
        envelope["Value"] = _to_jsonable(value)
    envelope["ClientTransactionID"] = int(client_transaction_id)
    envelope["ServerTransactionID"] = next_server_transaction_id()
    envelope["ErrorNumber"] = int(error_number)
    envelope["ErrorMessage"] = str(error_message or "")
    return envelope


def encode_response(
    client_transaction_id: int = 0,
    value: Any = None,
    error_number: int = 0,
    error_message: str = "",
    include_value: bool = True,
) -> bytes:
    """Serialize an envelope to UTF-8 JSON bytes.

    Example:
        >>> body = encode_response(3, float("nan"))
        >>> b'"Value": "nan"' in body
        True
    """
    envelope = build_envelope(
        client_transaction_id, value, error_number, error_message, include_value
    )
    return json.dumps(envelope, allow_nan=False).encode("utf-8")


def encode_error(client_transaction_id: int, error: AlpacaError | Exception) -> bytes:
    """Encode an exception as an error envelope.

    Non-Alpaca exceptions report as DRIVER_ERROR with their text.
    """
    if isinstance(error, AlpacaError):
        number, message = error.error_number, error.message
    else:
        number, message = int(AlpacaErrorCode.DRIVER_ERROR), str(error) or type(error).__name__
    return encode_response(client_transaction_id, None, number, message)
