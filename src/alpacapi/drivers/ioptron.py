"""iOptron equatorial mount driver (serial or Ethernet).

Talks the iOptron RS-232 command language, either over a USB serial
adapter or over the mount's Wi-Fi/Ethernet bridge (TCP). Status is
refreshed from two fixed-width replies every polling iteration:

    :GEP#  sDDDDDDDDRRRRRRRRRPS#
           s         sign of Dec
           D (8)     Dec in 0.01 arc-seconds
           R (9)     RA in 0.01 arc-seconds (15" per time-second)
           P         pier side (0 east, 1 west, 2 indeterminate)
           S         pointing state (0 counterweight up, 1 normal)

    :GLS#  sLLLLLLLLAAAAAAAAGSTVZH#
           s+L (9)   longitude in 0.01 arc-seconds
           A (8)     latitude + 90 degrees in 0.01 arc-seconds
           G         GPS state
           S         system status (see _STATUS_ACTIVITY)
           T         tracking rate (0 sidereal, 1 lunar, 2 solar, 3 King)
           V         slew speed 1-9
           Z         time source
           H         hemisphere (0 south, 1 north)

Set-commands answer with a single unterminated "1" (accepted) or "0"
(rejected). Manual motion commands (``:mw#`` and friends) answer nothing.

Example:
    settings = IOptronSettings(kind=IOptronConnectionKind.ETHERNET,
                               host="192.168.1.104")
    mount = IOptronTelescope("CEM60", settings)
    mount.connect()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, ClassVar

from alpacapi.alpaca.errors import AlpacaError, NotConnectedError
from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.devices.base import SetupField
from alpacapi.devices.telescope import (
    DriveRate,
    MountActivity,
    PierSide,
    Telescope,
    TelescopeAxis,
)
from alpacapi.devices.types import ConnectionState
from alpacapi.observability import get_logger
from alpacapi.protocol.command_queue import CommandQueue, CommandResult, QueuedCommand
from alpacapi.protocol.parsing import (
    DEC_TICKS_PER_DEGREE,
    ResponseParseError,
    check_terminated,
    dec_ticks_to_degrees,
    format_dec_target,
    format_ra_target,
    parse_signed_ticks,
    parse_unsigned_ticks,
    ra_ticks_to_hours,
)
from alpacapi.protocol.transport import (
    DEFAULT_BAUD_RATE,
    SerialTransport,
    TcpTransport,
    Transport,
    auto_detect_serial_path,
)

logger = get_logger(__name__)

#: TCP port of the iOptron network bridge on most mounts (HEM27 uses 8899).
DEFAULT_IOPTRON_PORT: int = 4030

#: Manual-motion rate limit reported through AxisRates, degrees/second.
IOPTRON_MAX_AXIS_RATE: float = 3.0

_GEP_BODY_LENGTH = 20
_GLS_BODY_LENGTH = 23


# =============================================================================
# Settings
# =============================================================================


class IOptronConnectionKind(Enum):
    SERIAL = "serial"
    ETHERNET = "ethernet"


@dataclass
class IOptronSettings:
    """How to reach the mount.

    Attributes:
        kind: SERIAL or ETHERNET.
        serial_path: Device node. Auto-detected at connect when None.
        baud_rate: Serial speed.
        host: Mount IP address for ETHERNET.
        port: Mount TCP port for ETHERNET.
    """

    kind: IOptronConnectionKind = IOptronConnectionKind.SERIAL
    serial_path: str | None = None
    baud_rate: int = DEFAULT_BAUD_RATE
    host: str = ""
    port: int = DEFAULT_IOPTRON_PORT

    def describe(self) -> str:
        if self.kind is IOptronConnectionKind.ETHERNET:
            return f"ethernet {self.host}:{self.port}"
        return f"serial {self.serial_path or 'auto'} @ {self.baud_rate}"


def default_transport(settings: IOptronSettings) -> Transport:
    """Build the real transport for ``settings``."""
    if settings.kind is IOptronConnectionKind.ETHERNET:
        return TcpTransport(settings.host, settings.port)
    path = settings.serial_path or auto_detect_serial_path()
    return SerialTransport(path, settings.baud_rate)


def is_valid_ipv4_text(text: str) -> bool:
    """Loose dotted-quad check used by the setup form."""
    return len(text) >= 7 and text.count(".") == 3


# =============================================================================
# Reply parsing
# =============================================================================


_STATUS_ACTIVITY: dict[str, MountActivity] = {
    "0": MountActivity.STOPPED,
    "1": MountActivity.TRACKING,
    "2": MountActivity.SLEWING,
    "3": MountActivity.GUIDING,
    "4": MountActivity.MERIDIAN_FLIP,
    "5": MountActivity.TRACKING_PEC,
    "6": MountActivity.PARKED,
    "7": MountActivity.HOME,
}

_PIER_SIDE: dict[str, PierSide] = {
    "0": PierSide.EAST,
    "1": PierSide.WEST,
    "2": PierSide.UNKNOWN,
}

_TRACKING_RATE: dict[str, DriveRate] = {
    "0": DriveRate.SIDEREAL,
    "1": DriveRate.LUNAR,
    "2": DriveRate.SOLAR,
    "3": DriveRate.KING,
}


@dataclass(frozen=True)
class GepReply:
    right_ascension: float
    declination: float
    side_of_pier: PierSide
    pointing_state: int


@dataclass(frozen=True)
class GlsReply:
    longitude: float
    latitude: float
    gps_state: int
    activity: MountActivity
    tracking_rate: DriveRate
    slew_speed: int
    time_source: int
    northern_hemisphere: bool


def _digit(body: str, index: int, what: str) -> str:
    char = body[index]
    if not char.isdigit():
        raise ResponseParseError(f"Non-digit {what} {char!r} in {body!r}")
    return char


def parse_gep(raw: str) -> GepReply:
    """Parse a ``:GEP#`` position reply.

    Raises:
        ResponseParseError: Wrong length, bad digits, or out-of-range values.
    """
    body = check_terminated(raw)
    if len(body) < _GEP_BODY_LENGTH:
        raise ResponseParseError(f"GEP reply too short: {raw!r}")
    declination = dec_ticks_to_degrees(parse_signed_ticks(body[0:9], 8))
    right_ascension = ra_ticks_to_hours(parse_unsigned_ticks(body[9:18], 9))
    if not -90.0 <= declination <= 90.0:
        raise ResponseParseError(f"Declination {declination} out of range in {raw!r}")
    if not 0.0 <= right_ascension < 24.0:
        raise ResponseParseError(f"Right ascension {right_ascension} out of range in {raw!r}")
    side = _PIER_SIDE.get(_digit(body, 18, "pier side"), PierSide.UNKNOWN)
    return GepReply(
        right_ascension=right_ascension,
        declination=declination,
        side_of_pier=side,
        pointing_state=int(_digit(body, 19, "pointing state")),
    )


def parse_gls(raw: str) -> GlsReply:
    """Parse a ``:GLS#`` location and status reply.

    Unknown tracking-rate digits (custom rates) read as sidereal.

    Raises:
        ResponseParseError: Wrong length, bad digits, or unknown status.
    """
    body = check_terminated(raw)
    if len(body) < _GLS_BODY_LENGTH:
        raise ResponseParseError(f"GLS reply too short: {raw!r}")
    longitude = parse_signed_ticks(body[0:9], 8) / DEC_TICKS_PER_DEGREE
    latitude = parse_unsigned_ticks(body[9:17], 8) / DEC_TICKS_PER_DEGREE - 90.0
    status = _digit(body, 18, "system status")
    if status not in _STATUS_ACTIVITY:
        raise ResponseParseError(f"Unknown system status {status!r} in {raw!r}")
    return GlsReply(
        longitude=longitude,
        latitude=latitude,
        gps_state=int(_digit(body, 17, "GPS state")),
        activity=_STATUS_ACTIVITY[status],
        tracking_rate=_TRACKING_RATE.get(
            _digit(body, 19, "tracking rate"), DriveRate.SIDEREAL
        ),
        slew_speed=int(_digit(body, 20, "slew speed")),
        time_source=int(_digit(body, 21, "time source")),
        northern_hemisphere=_digit(body, 22, "hemisphere") == "1",
    )


def parse_ack(raw: str) -> bool:
    """Parse the single-character answer to a set-command."""
    if raw == "1":
        return True
    if raw == "0":
        return False
    raise ResponseParseError(f"Expected '1' or '0', got {raw!r}")


# =============================================================================
# Driver
# =============================================================================


_MOVE_COMMANDS: dict[TelescopeAxis, tuple[str, str, str]] = {
    # (positive rate, negative rate, stop)
    TelescopeAxis.PRIMARY: (":mw#", ":me#", ":qR#"),
    TelescopeAxis.SECONDARY: (":ms#", ":mn#", ":qD#"),
}


class IOptronTelescope(Telescope):
    """Telescope members for iOptron CEM/GEM/HEM mounts."""

    can_slew: ClassVar[bool] = True
    can_slew_async: ClassVar[bool] = True
    can_sync: ClassVar[bool] = True
    can_park: ClassVar[bool] = True
    can_unpark: ClassVar[bool] = True
    can_set_park: ClassVar[bool] = True
    can_find_home: ClassVar[bool] = True
    can_set_tracking: ClassVar[bool] = True
    can_move_axes: ClassVar[tuple[TelescopeAxis, ...]] = (
        TelescopeAxis.PRIMARY,
        TelescopeAxis.SECONDARY,
    )
    max_axis_rate: ClassVar[float] = IOPTRON_MAX_AXIS_RATE
    tracking_rates: ClassVar[tuple[DriveRate, ...]] = (
        DriveRate.SIDEREAL,
        DriveRate.LUNAR,
        DriveRate.SOLAR,
        DriveRate.KING,
    )

    def __init__(
        self,
        name: str,
        settings: IOptronSettings | None = None,
        transport_factory: Callable[[IOptronSettings], Transport] = default_transport,
        on_settings_changed: Callable[[IOptronTelescope], None] | None = None,
        **kwargs: Any,
    ) -> None:
        """Create a disconnected mount driver.

        Args:
            name: Device name.
            settings: Link settings. Serial with auto-detected path when None.
            transport_factory: Builds the transport at connect time. The
                digital twin swaps in a simulator here.
            on_settings_changed: Called after the setup page changed the
                link settings, for persisting them.
            **kwargs: Passed to AlpacaDevice.
        """
        kwargs.setdefault("description", "iOptron equatorial mount")
        kwargs.setdefault("driver_info", "alpacapi iOptron driver")
        super().__init__(name, **kwargs)
        self.settings = settings or IOptronSettings()
        self.transport_factory = transport_factory
        self.on_settings_changed = on_settings_changed
        self.pointing_state: int | None = None
        self.slew_speed: int | None = None
        self._transport: Transport | None = None
        self._queue: CommandQueue | None = None

    @property
    def queue(self) -> CommandQueue:
        if self._queue is None:
            raise NotConnectedError(f"{self.name} is not connected")
        return self._queue

    # -- link --------------------------------------------------------------

    def open_transport(self) -> None:
        transport = self.transport_factory(self.settings)
        self._transport = transport
        transport.open()
        self._queue = CommandQueue(transport, stats=self.comm_stats)
        logger.info(
            "iOptron link open",
            device=self.label,
            endpoint=transport.description,
        )
        self._refresh()

    def close_transport(self) -> None:
        if self._queue is not None:
            self._queue.clear()
            self._queue = None
        if self._transport is not None:
            transport, self._transport = self._transport, None
            transport.close()

    def poll(self) -> None:
        self.queue.flush()
        self._refresh()

    def _refresh(self) -> None:
        position: GepReply = self.queue.send(":GEP#", parser=parse_gep)
        state: GlsReply = self.queue.send(":GLS#", parser=parse_gls)
        status = self.status
        status.right_ascension = position.right_ascension
        status.declination = position.declination
        status.side_of_pier = position.side_of_pier
        activity = state.activity
        if status.activity is MountActivity.HOMING and activity.is_slewing:
            # The mount reports a plain slew while seeking home.
            activity = MountActivity.HOMING
        self._set_activity(activity)
        status.tracking_rate = state.tracking_rate
        status.site_longitude = state.longitude
        status.site_latitude = state.latitude
        self.pointing_state = position.pointing_state
        self.slew_speed = state.slew_speed

    # -- command helpers -----------------------------------------------------

    def _on_ack(self, result: CommandResult) -> None:
        if result.ok and result.value is False:
            self.last_error = f"Mount rejected {result.command.command}"
            logger.warning(
                "Mount rejected command",
                device=self.label,
                command=result.command.command,
            )

    def _ack(self, command: str) -> QueuedCommand:
        return QueuedCommand(
            command, reply_length=1, parser=parse_ack, on_result=self._on_ack
        )

    def _send_later(self, *commands: str) -> None:
        self.queue.enqueue_many([self._ack(command) for command in commands])

    # -- Telescope hooks ---------------------------------------------------

    def _do_slew(self, ra_hours: float, dec_degrees: float) -> None:
        self._send_later(
            format_ra_target(ra_hours), format_dec_target(dec_degrees), ":MS1#"
        )

    def _do_sync(self, ra_hours: float, dec_degrees: float) -> None:
        self._send_later(
            format_ra_target(ra_hours), format_dec_target(dec_degrees), ":CM#"
        )

    def _do_abort(self) -> None:
        dropped = self.queue.clear()
        logger.info("Abort requested", device=self.label, dropped_commands=dropped)
        self._send_later(":Q#")

    def _do_park(self) -> None:
        self._send_later(":MP1#")

    def _do_unpark(self) -> None:
        self._send_later(":MP0#")

    def _do_set_park(self) -> None:
        self._send_later(":SZP#")

    def _do_find_home(self) -> None:
        self._send_later(":MH#")

    def _do_move_axis(self, axis: TelescopeAxis, rate: float) -> None:
        forward, backward, stop = _MOVE_COMMANDS[axis]
        if rate == 0.0:
            self._send_later(stop)
        else:
            self.queue.enqueue(
                QueuedCommand(forward if rate > 0 else backward, expect_reply=False)
            )

    def _do_set_tracking(self, enabled: bool) -> None:
        self._send_later(":ST1#" if enabled else ":ST0#")

    def _do_set_tracking_rate(self, rate: DriveRate) -> None:
        self._send_later(f":RT{int(rate)}#")

    # -- setup page --------------------------------------------------------

    def setup_fields(self) -> list[SetupField]:
        settings = self.settings
        return [
            SetupField(
                "conntype",
                "Connection",
                settings.kind.value,
                kind="radio",
                choices=[("serial", "USB serial"), ("ethernet", "Ethernet / Wi-Fi")],
            ),
            SetupField("devpath", "Serial device", settings.serial_path or ""),
            SetupField("ipaddr", "IP address", settings.host),
            SetupField("port", "TCP port", settings.port, kind="number"),
        ]

    def apply_setup(self, form: CaseInsensitiveParams) -> list[str]:
        """Validate the submitted form and reconnect on change.

        Valid fields are applied even when others are rejected.
        """
        messages: list[str] = []
        updated = replace(self.settings)

        kind = form.get("conntype")
        if kind is not None:
            try:
                updated.kind = IOptronConnectionKind(kind.strip().lower())
            except ValueError:
                messages.append(f"Unknown connection type {kind!r}")

        path = form.get("devpath")
        if path is not None and path.strip():
            updated.serial_path = path.strip()

        address = form.get("ipaddr")
        if address is not None and address.strip():
            if is_valid_ipv4_text(address.strip()):
                updated.host = address.strip()
            else:
                messages.append(f"Invalid IP address {address!r}")

        port = form.get("port")
        if port is not None and port.strip():
            try:
                number = int(port)
            except ValueError:
                number = 0
            if 1 <= number <= 65535:
                updated.port = number
            else:
                messages.append(f"Invalid port {port!r}, expected 1..65535")

        if updated.kind is IOptronConnectionKind.ETHERNET and not updated.host:
            messages.append("Ethernet connection needs an IP address")
            return messages

        if updated == self.settings:
            return messages or ["No changes"]

        logger.info(
            "iOptron settings changed",
            device=self.label,
            old=self.settings.describe(),
            new=updated.describe(),
        )
        was_connected = self.connected
        if was_connected:
            self._release_transport()
            self._set_state(ConnectionState.DISCONNECTED)
        self.settings = updated
        messages.append(f"Settings saved: {updated.describe()}")

        if was_connected:
            try:
                self.connect()
                messages.append("Reconnected")
            except AlpacaError as e:
                messages.append(f"Reconnect failed: {e.message}")

        if self.on_settings_changed is not None:
            self.on_settings_changed(self)
        return messages


__all__ = [
    "DEFAULT_IOPTRON_PORT",
    "GepReply",
    "GlsReply",
    "IOptronConnectionKind",
    "IOptronSettings",
    "IOptronTelescope",
    "default_transport",
    "parse_ack",
    "parse_gep",
    "parse_gls",
]
