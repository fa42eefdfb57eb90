"""Request context and parameter parsing.

Alpaca parameter names are case-insensitive ("RightAscension",
"rightascension" and "RIGHTASCENSION" are the same key). GET requests
carry them in the query string, PUT requests in a form-encoded body.

Handlers read typed values through the ``get_*`` helpers, which raise
``InvalidValueError`` for missing or unparseable values so the client
receives ErrorNumber 0x401 rather than a server fault.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from urllib.parse import parse_qsl

from alpacapi.alpaca.errors import InvalidValueError

#: ClientID and ClientTransactionID are uint32 in the Alpaca API.
UINT32_MAX = 0xFFFFFFFF

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


class CaseInsensitiveParams(Mapping[str, str]):
    """Read-only mapping with case-insensitive keys.

    The first occurrence of a key wins, matching how Alpaca clients expect
    duplicate parameters to be treated.
    """

    def __init__(self, items: Iterable[tuple[str, str]] | Mapping[str, str] = ()) -> None:
        if isinstance(items, Mapping):
            items = items.items()
        self._data: dict[str, tuple[str, str]] = {}
        for key, value in items:
            folded = key.casefold()
            if folded not in self._data:
                self._data[folded] = (key, value)

    @classmethod
    def from_query(cls, *encoded: str | bytes) -> CaseInsensitiveParams:
        """Parse one or more url-encoded strings (query then body)."""
        pairs: list[tuple[str, str]] = []
        for chunk in encoded:
            if not chunk:
                continue
            if isinstance(chunk, bytes):
                chunk = chunk.decode("utf-8", errors="replace")
            pairs.extend(parse_qsl(chunk, keep_blank_values=True))
        return cls(pairs)

    def __getitem__(self, key: str) -> str:
        return self._data[key.casefold()][1]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.casefold() in self._data

    def __repr__(self) -> str:
        return f"CaseInsensitiveParams({dict(self.items())!r})"

    # -- typed accessors ---------------------------------------------------

    def require(self, key: str) -> str:
        try:
            return self[key]
        except KeyError:
            raise InvalidValueError(f"Missing parameter {key}") from None

    def get_float(self, key: str) -> float:
        raw = self.require(key)
        try:
            return float(raw)
        except ValueError:
            raise InvalidValueError(f"{key}={raw!r} is not a number") from None

    def get_int(self, key: str) -> int:
        raw = self.require(key)
        try:
            return int(raw.strip())
        except ValueError:
            raise InvalidValueError(f"{key}={raw!r} is not an integer") from None

    def get_bool(self, key: str) -> bool:
        raw = self.require(key).strip().lower()
        if raw in _TRUE_STRINGS:
            return True
        if raw in _FALSE_STRINGS:
            return False
        raise InvalidValueError(f"{key}={raw!r} is not a boolean")

    def get_str(self, key: str) -> str:
        return self.require(key)


def parse_uint32(raw: str | None) -> int:
    """Lenient ClientID/ClientTransactionID parse.

    Missing, non-numeric, negative or larger than uint32 all become 0.
    """
    if raw is None:
        return 0
    try:
        value = int(raw.strip())
    except ValueError:
        return 0
    if not 0 <= value <= UINT32_MAX:
        return 0
    return value


@dataclass
class RequestContext:
    """Everything a device handler needs to know about one request.

    Created by the dispatcher per request and never shared.
    """

    method: str
    device_type: str
    device_number: int
    action: str
    params: CaseInsensitiveParams = field(default_factory=CaseInsensitiveParams)
    client_id: int = 0
    client_transaction_id: int = 0

    @classmethod
    def build(
        cls,
        method: str,
        device_type: str,
        device_number: int,
        action: str,
        params: CaseInsensitiveParams,
    ) -> RequestContext:
        return cls(
            method=method.upper(),
            device_type=device_type.lower(),
            device_number=device_number,
            action=action.lower(),
            params=params,
            client_id=parse_uint32(params.get("ClientID")),
            client_transaction_id=parse_uint32(params.get("ClientTransactionID")),
        )

    @property
    def is_put(self) -> bool:
        return self.method == "PUT"


__all__ = [
    "CaseInsensitiveParams",
    "RequestContext",
    "UINT32_MAX",
    "parse_uint32",
]
