"""Structured logging for alpacapi.

Builds on Python's standard logging module with:
- Keyword arguments that become structured key=value data
- JSON (NDJSON) formatting for log aggregation
- Per-request context binding (client id, transaction id, device)

Security Note:
    ClientID and action names arrive from the network. Log them as
    structured keyword arguments, never interpolated into the message:

    # SAFE
    logger.info("Request", action=ctx.action, client_id=ctx.client_id)

    # UNSAFE - a crafted action could inject fake log lines
    logger.info(f"Request {ctx.action}")

Example:
    logger = get_logger(__name__)
    logger.info("Server started", port=6800)

    with LogContext(device="telescope/0", client_transaction_id=17):
        logger.info("Dispatching", action="slewtocoordinates")

    configure_logging(level="DEBUG", json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

#: Name of the package root logger. All module loggers hang below it.
ROOT_LOGGER_NAME = "alpacapi"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


# =============================================================================
# Structured Log Record
# =============================================================================


class StructuredLogRecord(logging.LogRecord):
    """LogRecord carrying a ``structured_data`` dict for the formatters."""

    structured_data: dict[str, Any]

    def __init__(
        self,
        name: str,
        level: int,
        pathname: str,
        lineno: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None,
        exc_info: Any,
        func: str | None = None,
        sinfo: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            name, level, pathname, lineno, msg, args, exc_info, func, sinfo
        )
        self.structured_data = kwargs.get("structured_data", {})


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept arbitrary keyword fields.

    Usage:
        logger = get_logger("alpacapi.devices.registry")
        logger.warning("Poll failed", device="focuser/0", errors=3)
    """

    def debug(  # type: ignore[override]
        self, msg: object, *args: Any, exc_info: Any = None,
        stack_info: bool = False, stacklevel: int = 1,
        extra: dict[str, Any] | None = None, **kwargs: Any,
    ) -> None:
        """Log debug message with optional structured data kwargs."""
        if self.isEnabledFor(logging.DEBUG):
            self._log(
                logging.DEBUG, msg, args, exc_info=exc_info, extra=extra,
                stack_info=stack_info, stacklevel=stacklevel + 1, **kwargs,
            )

    def info(  # type: ignore[override]
        self, msg: object, *args: Any, exc_info: Any = None,
        stack_info: bool = False, stacklevel: int = 1,
        extra: dict[str, Any] | None = None, **kwargs: Any,
    ) -> None:
        """Log info message with optional structured data kwargs."""
        if self.isEnabledFor(logging.INFO):
            self._log(
                logging.INFO, msg, args, exc_info=exc_info, extra=extra,
                stack_info=stack_info, stacklevel=stacklevel + 1, **kwargs,
            )

    def warning(  # type: ignore[override]
        self, msg: object, *args: Any, exc_info: Any = None,
        stack_info: bool = False, stacklevel: int = 1,
        extra: dict[str, Any] | None = None, **kwargs: Any,
    ) -> None:
        """Log warning message with optional structured data kwargs."""
        if self.isEnabledFor(logging.WARNING):
            self._log(
                logging.WARNING, msg, args, exc_info=exc_info, extra=extra,
                stack_info=stack_info, stacklevel=stacklevel + 1, **kwargs,
            )

    def error(  # type: ignore[override]
        self, msg: object, *args: Any, exc_info: Any = None,
        stack_info: bool = False, stacklevel: int = 1,
        extra: dict[str, Any] | None = None, **kwargs: Any,
    ) -> None:
        """Log error message with optional structured data kwargs."""
        if self.isEnabledFor(logging.ERROR):
            self._log(
                logging.ERROR, msg, args, exc_info=exc_info, extra=extra,
                stack_info=stack_info, stacklevel=stacklevel + 1, **kwargs,
            )

    def critical(  # type: ignore[override]
        self, msg: object, *args: Any, exc_info: Any = None,
        stack_info: bool = False, stacklevel: int = 1,
        extra: dict[str, Any] | None = None, **kwargs: Any,
    ) -> None:
        """Log critical message with optional structured data kwargs."""
        if self.isEnabledFor(logging.CRITICAL):
            self._log(
                logging.CRITICAL, msg, args, exc_info=exc_info, extra=extra,
                stack_info=stack_info, stacklevel=stacklevel + 1, **kwargs,
            )

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Merge the active LogContext with kwargs and emit.

        Explicit keyword fields win over context fields of the same name,
        so a handler can override the device bound by the dispatcher.

        Args:
            level: Numeric log level.
            msg: Log message, may contain % placeholders.
            args: % formatting arguments.
            exc_info: Exception info, True, or None.
            extra: Extra dict for the record. ``structured_data`` is
                overwritten.
            stack_info: Include a stack trace.
            stacklevel: Frames to skip for caller attribution.
            **kwargs: Structured fields (device, action, errors, ...).
        """
        structured_data = {**_log_context.get(), **kwargs}

        if extra is None:
            extra = {}
        extra["structured_data"] = structured_data

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter.

    Format: timestamp - name - level - message | key=value key=value
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format the base message and append structured pairs.

        Args:
            record: Record to format. ``structured_data`` is optional.

        Returns:
            Formatted line, e.g.
            ``... - INFO - Device connected | device=telescope/0``.
        """
        base = super().format(record)
        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line (NDJSON) for log shippers.

    Keys: timestamp (UTC ISO 8601), level, logger, message, the structured
    fields at top level, and ``exception`` when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_dict.update(getattr(record, "structured_data", {}))

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Render a structured value for key=value output.

    None becomes ``null``; strings containing spaces are quoted; dicts and
    lists become JSON; anything else uses ``str()``.

    Example:
        >>> _format_value("Sidereal rate")
        '"Sidereal rate"'
        >>> _format_value({"AlpacaPort": 6800})
        '{"AlpacaPort": 6800}'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


@dataclass
class LogContext:
    """Bind key-value pairs to every log line emitted inside the block.

    Backed by contextvars, so each request handled in the thread pool sees
    only its own fields. Nested contexts merge, inner values win.

    Usage:
        with LogContext(client_id=3, client_transaction_id=42):
            with LogContext(device="focuser/0"):
                logger.info("Move")  # carries all three fields
    """

    _kwargs: dict[str, Any] = field(default_factory=dict, init=False, repr=True)
    _token: contextvars.Token[dict[str, Any]] | None = field(
        default=None, init=False, repr=False
    )

    def __init__(self, **kwargs: Any) -> None:
        self._kwargs = kwargs

    def __enter__(self) -> LogContext:
        current = _log_context.get()
        self._token = _log_context.set({**current, **self._kwargs})
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the ``alpacapi`` logger tree.

    Idempotent unless ``force`` is True. Called by the server entry point
    with the values from the ``logging`` section of the configuration file.

    Args:
        level: Minimum level as int or name ("DEBUG", "INFO", ...).
        json_format: Emit NDJSON via JSONFormatter instead of key=value text.
        stream: Output stream, default ``sys.stderr``.
        include_structured: Append structured pairs in text mode.
        force: Drop existing handlers and reconfigure.

    Example:
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(level="DEBUG", stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Internal implementation of configure_logging (assumes lock is held)."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    if stream is None:
        stream = sys.stderr
    handler = logging.StreamHandler(stream)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Internal implementation of reset_logging (assumes lock is held)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Remove alpacapi handlers and mark logging unconfigured (tests)."""
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger, configuring defaults on first use.

    Args:
        name: Usually ``__name__``, e.g. ``alpacapi.protocol.command_queue``.

    Returns:
        StructuredLogger accepting ``logger.info("msg", key=value)``.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Discovery reply", ip="192.168.1.20", port=6800)
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)
    return cast(StructuredLogger, logger)
