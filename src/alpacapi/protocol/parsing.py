"""Reply validation and coordinate encodings for command/response mounts.

Two coordinate representations appear on the wire:

Sexagesimal (LX200 family):
    RA  ``HH:MM:SS#``       e.g. ``12:30:00#``
    Dec ``sDD*MM:SS#``      e.g. ``+45*30:00#``

Fixed point (iOptron family), units of 0.01 arc-second:
    RA ticks  = hours * 15 * 3600 * 100     (0 .. 129,600,000)
    Dec ticks = degrees * 3600 * 100        (-32,400,000 .. +32,400,000)

A reply is only accepted when it carries the expected terminator and
matches the expected shape exactly; anything else raises
``ResponseParseError`` so a garbled byte can never become a position.

Example:
    >>> parse_sexagesimal_ra("12:30:00#")
    12.5
    >>> hours_to_ra_ticks(12.5)
    67500000
    >>> format_ra_target(12.5)
    ':SRA067500000#'
"""

from __future__ import annotations

import re

from alpacapi.alpaca.errors import DriverError

DEFAULT_TERMINATOR = "#"

RA_TICKS_PER_HOUR: int = 15 * 3600 * 100
RA_TICKS_MAX: int = 24 * RA_TICKS_PER_HOUR
DEC_TICKS_PER_DEGREE: int = 3600 * 100
DEC_TICKS_MAX: int = 90 * DEC_TICKS_PER_DEGREE

_RA_PATTERN = re.compile(r"^(\d{2}):(\d{2}):(\d{2}(?:\.\d+)?)$")
_DEC_PATTERN = re.compile(r"^([+-])(\d{2})[*:\xdf](\d{2}):(\d{2}(?:\.\d+)?)$")


class ResponseParseError(DriverError, ValueError):
    """Reply was unterminated or did not match the expected format."""

    default_message = "Malformed reply"


def check_terminated(raw: str, terminator: str = DEFAULT_TERMINATOR) -> str:
    """Strip the terminator from a reply, rejecting unterminated input.

    Returns:
        The reply body without its terminator.

    Raises:
        ResponseParseError: If ``raw`` does not end with ``terminator``.
    """
    if not raw.endswith(terminator):
        raise ResponseParseError(f"Reply {raw!r} is not terminated by {terminator!r}")
    return raw[: -len(terminator)]


def parse_sexagesimal_ra(raw: str, terminator: str = DEFAULT_TERMINATOR) -> float:
    """Parse ``HH:MM:SS#`` into decimal hours.

    Raises:
        ResponseParseError: On wrong shape, hours >= 24, or minutes/seconds >= 60.
    """
    match = _RA_PATTERN.match(check_terminated(raw, terminator))
    if match is None:
        raise ResponseParseError(f"Malformed right ascension {raw!r}")
    hours, minutes, seconds = int(match[1]), int(match[2]), float(match[3])
    if hours >= 24 or minutes >= 60 or seconds >= 60:
        raise ResponseParseError(f"Right ascension {raw!r} out of range")
    return hours + minutes / 60.0 + seconds / 3600.0


def parse_sexagesimal_dec(raw: str, terminator: str = DEFAULT_TERMINATOR) -> float:
    """Parse ``sDD*MM:SS#`` into decimal degrees.

    The degree separator may be ``*``, ``:`` or the 0xDF glyph some
    controllers send.

    Raises:
        ResponseParseError: On wrong shape or values beyond +/-90 degrees.
    """
    match = _DEC_PATTERN.match(check_terminated(raw, terminator))
    if match is None:
        raise ResponseParseError(f"Malformed declination {raw!r}")
    degrees, minutes, seconds = int(match[2]), int(match[3]), float(match[4])
    if minutes >= 60 or seconds >= 60:
        raise ResponseParseError(f"Declination {raw!r} out of range")
    value = degrees + minutes / 60.0 + seconds / 3600.0
    if value > 90.0:
        raise ResponseParseError(f"Declination {raw!r} out of range")
    return -value if match[1] == "-" else value


def format_sexagesimal_ra(hours: float) -> str:
    """Format decimal hours as ``HH:MM:SS`` (no terminator)."""
    total = round((hours % 24.0) * 3600)
    total %= 24 * 3600
    return f"{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"


def format_sexagesimal_dec(degrees: float) -> str:
    """Format decimal degrees as ``sDD*MM:SS`` (no terminator)."""
    sign = "-" if degrees < 0 else "+"
    total = min(round(abs(degrees) * 3600), 90 * 3600)
    return f"{sign}{total // 3600:02d}*{total % 3600 // 60:02d}:{total % 60:02d}"


# =============================================================================
# Fixed point
# =============================================================================


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def hours_to_ra_ticks(hours: float) -> int:
    """Decimal hours to RA ticks, clamped to 0..RA_TICKS_MAX."""
    return _clamp(round(hours * RA_TICKS_PER_HOUR), 0, RA_TICKS_MAX)


def ra_ticks_to_hours(ticks: int) -> float:
    return ticks / RA_TICKS_PER_HOUR


def degrees_to_dec_ticks(degrees: float) -> int:
    """Decimal degrees to Dec ticks, clamped to +/-DEC_TICKS_MAX."""
    return _clamp(round(degrees * DEC_TICKS_PER_DEGREE), -DEC_TICKS_MAX, DEC_TICKS_MAX)


def dec_ticks_to_degrees(ticks: int) -> float:
    return ticks / DEC_TICKS_PER_DEGREE


def format_ra_target(hours: float) -> str:
    """Build the set-target-RA command ``:SRAnnnnnnnnn#``."""
    return f":SRA{hours_to_ra_ticks(hours):09d}#"


def format_dec_target(degrees: float) -> str:
    """Build the set-target-Dec command ``:Sds+nnnnnnnn#``."""
    ticks = degrees_to_dec_ticks(degrees)
    sign = "-" if ticks < 0 else "+"
    return f":Sds{sign}{abs(ticks):08d}#"


def parse_signed_ticks(field: str, digits: int) -> int:
    """Parse a sign character followed by exactly ``digits`` digits."""
    if len(field) != digits + 1 or field[0] not in "+-" or not field[1:].isdigit():
        raise ResponseParseError(f"Malformed signed field {field!r}")
    value = int(field[1:])
    return -value if field[0] == "-" else value


def parse_unsigned_ticks(field: str, digits: int) -> int:
    """Parse exactly ``digits`` digits."""
    if len(field) != digits or not field.isdigit():
        raise ResponseParseError(f"Malformed numeric field {field!r}")
    return int(field)


__all__ = [
    "DEC_TICKS_MAX",
    "DEC_TICKS_PER_DEGREE",
    "DEFAULT_TERMINATOR",
    "RA_TICKS_MAX",
    "RA_TICKS_PER_HOUR",
    "ResponseParseError",
    "check_terminated",
    "dec_ticks_to_degrees",
    "degrees_to_dec_ticks",
    "format_dec_target",
    "format_ra_target",
    "format_sexagesimal_dec",
    "format_sexagesimal_ra",
    "hours_to_ra_ticks",
    "parse_sexagesimal_dec",
    "parse_sexagesimal_ra",
    "parse_signed_ticks",
    "parse_unsigned_ticks",
    "ra_ticks_to_hours",
]
