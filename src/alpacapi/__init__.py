"""alpacapi - ASCOM Alpaca device server for astronomy instruments."""

__version__ = "0.4.0"

#: Alpaca API versions served under /api/v{n}.
SUPPORTED_API_VERSIONS: list[int] = [1]

#: Default TCP port for the HTTP/REST server.
DEFAULT_ALPACA_PORT: int = 6800

__all__ = ["DEFAULT_ALPACA_PORT", "SUPPORTED_API_VERSIONS", "__version__"]
