"""In-process iOptron mount simulator.

Implements the ``Transport`` protocol and answers the subset of the
iOptron command language the driver uses, so ``IOptronTelescope`` runs
unchanged against it. Replies are produced synchronously at write time
and queued for the next read.

Motion model:
    Goto, park and home slews take ``slew_seconds`` and move linearly from
    the start to the destination. Manual motion (``:mw#`` and friends)
    reports slewing until the matching stop command. Unknown commands get
    no reply at all, like the real controller.

Example:
    simulator = IOptronMountSimulator(slew_seconds=0.5)
    mount = IOptronTelescope("Twin", transport_factory=lambda _: simulator)
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from alpacapi.alpaca.errors import CommunicationTimeoutError, TransportError
from alpacapi.observability import get_logger
from alpacapi.protocol.parsing import (
    DEC_TICKS_PER_DEGREE,
    RA_TICKS_PER_HOUR,
    degrees_to_dec_ticks,
    hours_to_ra_ticks,
)

logger = get_logger(__name__)

DEFAULT_SLEW_SECONDS = 3.0

_SET_RA = re.compile(r"^:SRA(\d{9})#$")
_SET_DEC = re.compile(r"^:Sds([+-])(\d{8})#$")
_SET_RATE = re.compile(r"^:RT([0-4])#$")

# System status digits reported in :GLS#
_STOPPED, _TRACKING, _SLEWING, _PARKED, _HOME = "0", "1", "2", "6", "7"


@dataclass
class SimulatedSite:
    """Observer location reported through :GLS#."""

    latitude: float = 52.0
    longitude: float = 4.5


@dataclass
class _Slew:
    start_ra: float
    start_dec: float
    end_ra: float
    end_dec: float
    started: float
    final_status: str


class IOptronMountSimulator:
    """Simulated iOptron controller behind the Transport interface."""

    def __init__(
        self,
        slew_seconds: float = DEFAULT_SLEW_SECONDS,
        site: SimulatedSite | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.slew_seconds = slew_seconds
        self.site = site or SimulatedSite()
        self._clock = clock

        self.reachable = True
        self.responsive = True
        self.commands: list[str] = []

        self.right_ascension = 0.0
        self.declination = 90.0
        self.tracking = False
        self.tracking_rate = 0
        self.status = _HOME
        self.park_position = (0.0, 90.0)

        self._target_ra = 0.0
        self._target_dec = 0.0
        self._slew: _Slew | None = None
        self._manual_axes: set[str] = set()
        self._output = b""
        self._open = False

    # -- Transport ---------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def description(self) -> str:
        return "twin:ioptron"

    def open(self) -> None:
        if not self.reachable:
            raise TransportError("Simulated mount is unreachable")
        self._open = True
        self._output = b""

    def close(self) -> None:
        self._open = False
        self._output = b""

    def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("Simulated mount link is closed")
        command = data.decode("ascii")
        self.commands.append(command)
        if not self.responsive:
            return
        reply = self.handle_command(command)
        if reply is not None:
            self._output += reply.encode("ascii")

    def read_until(self, terminator: bytes, timeout: float) -> bytes:
        index = self._output.find(terminator)
        if index < 0:
            self._output = b""
            raise CommunicationTimeoutError(
                f"No reply terminated by {terminator!r} within {timeout:.2f}s"
            )
        end = index + len(terminator)
        reply, self._output = self._output[:end], self._output[end:]
        return reply

    def read_exact(self, count: int, timeout: float) -> bytes:
        if len(self._output) < count:
            self._output = b""
            raise CommunicationTimeoutError(
                f"Expected {count} byte(s) within {timeout:.2f}s"
            )
        reply, self._output = self._output[:count], self._output[count:]
        return reply

    def reset_input(self) -> None:
        self._output = b""

    # -- controller --------------------------------------------------------

    @property
    def parked(self) -> bool:
        return self.status == _PARKED

    def handle_command(self, command: str) -> str | None:
        """Apply one command and return its reply, or None for silence."""
        self._advance()

        if command == ":GEP#":
            return self._gep()
        if command == ":GLS#":
            return self._gls()

        if match := _SET_RA.match(command):
            self._target_ra = int(match.group(1)) / RA_TICKS_PER_HOUR
            return "1"
        if match := _SET_DEC.match(command):
            ticks = int(match.group(2))
            self._target_dec = (-ticks if match.group(1) == "-" else ticks) / DEC_TICKS_PER_DEGREE
            return "1"
        if match := _SET_RATE.match(command):
            self.tracking_rate = int(match.group(1))
            return "1"

        if command == ":MS1#":
            if self.parked:
                return "0"
            self._start_slew(self._target_ra, self._target_dec, _TRACKING)
            return "1"
        if command == ":CM#":
            if self.parked:
                return "0"
            self.right_ascension, self.declination = self._target_ra, self._target_dec
            return "1"
        if command == ":Q#":
            self._slew = None
            self._manual_axes.clear()
            self.status = _TRACKING if self.tracking else _STOPPED
            return "1"
        if command == ":MH#":
            if self.parked:
                return "0"
            self._start_slew(0.0, 90.0, _HOME)
            return "1"
        if command == ":MP1#":
            if not self.parked:
                self._start_slew(*self.park_position, _PARKED)
            return "1"
        if command == ":MP0#":
            if self.parked:
                self.status = _STOPPED
            return "1"
        if command == ":SZP#":
            self.park_position = (self.right_ascension, self.declination)
            return "1"
        if command in (":ST1#", ":ST0#"):
            if self.parked:
                return "0"
            self.tracking = command == ":ST1#"
            if self._slew is None and not self._manual_axes:
                self.status = _TRACKING if self.tracking else _STOPPED
            return "1"
        if command in (":mw#", ":me#", ":ms#", ":mn#"):
            if not self.parked:
                self._manual_axes.add("ra" if command in (":mw#", ":me#") else "dec")
                self.status = _SLEWING
            return None
        if command in (":qR#", ":qD#"):
            self._manual_axes.discard("ra" if command == ":qR#" else "dec")
            if not self._manual_axes and self._slew is None:
                self.status = _TRACKING if self.tracking else _STOPPED
            return "1"

        logger.debug("Simulated mount ignoring command", command=command)
        return None

    def _start_slew(self, ra: float, dec: float, final_status: str) -> None:
        self._slew = _Slew(
            start_ra=self.right_ascension,
            start_dec=self.declination,
            end_ra=ra,
            end_dec=dec,
            started=self._clock(),
            final_status=final_status,
        )
        self.status = _SLEWING

    def _advance(self) -> None:
        slew = self._slew
        if slew is None:
            return
        elapsed = self._clock() - slew.started
        if self.slew_seconds <= 0 or elapsed >= self.slew_seconds:
            self.right_ascension, self.declination = slew.end_ra, slew.end_dec
            self._slew = None
            if slew.final_status == _TRACKING:
                self.tracking = True
            elif slew.final_status in (_PARKED, _HOME):
                self.tracking = False
            self.status = slew.final_status
            return
        fraction = elapsed / self.slew_seconds
        self.right_ascension = slew.start_ra + (slew.end_ra - slew.start_ra) * fraction
        self.declination = slew.start_dec + (slew.end_dec - slew.start_dec) * fraction

    def _gep(self) -> str:
        dec_ticks = degrees_to_dec_ticks(self.declination)
        ra_ticks = hours_to_ra_ticks(self.right_ascension) % (24 * RA_TICKS_PER_HOUR)
        sign = "-" if dec_ticks < 0 else "+"
        pier = "1" if self.right_ascension < 12.0 else "0"
        return f"{sign}{abs(dec_ticks):08d}{ra_ticks:09d}{pier}1#"

    def _gls(self) -> str:
        longitude = round(self.site.longitude * DEC_TICKS_PER_DEGREE)
        sign = "-" if longitude < 0 else "+"
        latitude = round((self.site.latitude + 90.0) * DEC_TICKS_PER_DEGREE)
        hemisphere = "1" if self.site.latitude >= 0 else "0"
        return (
            f"{sign}{abs(longitude):08d}{latitude:08d}"
            f"2{self.status}{self.tracking_rate}91{hemisphere}#"
        )


__all__ = ["IOptronMountSimulator", "SimulatedSite"]
