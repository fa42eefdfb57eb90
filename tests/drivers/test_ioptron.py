"""Tests for the iOptron mount driver.

Reply parsers are tested on literal wire strings. Driver behavior is
tested against the in-process mount simulator, injected through
``transport_factory`` so the real command queue and parsers run.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from alpacapi.alpaca.errors import (
    AlpacaErrorCode,
    DeviceBusyError,
    InvalidValueError,
    InvalidWhileParkedError,
    NotImplementedAlpacaError,
)
from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.devices import DeviceRegistry
from alpacapi.devices.telescope import DriveRate, MountActivity, PierSide
from alpacapi.devices.types import ConnectionState
from alpacapi.drivers.ioptron import (
    IOptronConnectionKind,
    IOptronSettings,
    IOptronTelescope,
    default_transport,
    is_valid_ipv4_text,
    parse_ack,
    parse_gep,
    parse_gls,
)
from alpacapi.drivers.twin import IOptronMountSimulator
from alpacapi.protocol.parsing import ResponseParseError
from alpacapi.protocol.transport import SerialTransport, TcpTransport

# =============================================================================
# Fixtures
# =============================================================================


def put(mount: IOptronTelescope, action: str, **params: object) -> object:
    return mount.handle(
        "PUT", action, CaseInsensitiveParams({k: str(v) for k, v in params.items()})
    )


@pytest.fixture
def instant_sim() -> IOptronMountSimulator:
    """Simulator whose slews complete on the next status query."""
    return IOptronMountSimulator(slew_seconds=0.0)


@pytest.fixture
def mount(instant_sim: IOptronMountSimulator) -> IOptronTelescope:
    mount = IOptronTelescope("CEM60", transport_factory=lambda settings: instant_sim)
    mount.connect()
    return mount


@pytest.fixture
def slow_mount(simulator: IOptronMountSimulator) -> IOptronTelescope:
    mount = IOptronTelescope("CEM60", transport_factory=lambda settings: simulator)
    mount.connect()
    return mount


def sent(sim: IOptronMountSimulator) -> list[str]:
    """Commands the simulator received, status queries removed."""
    return [c for c in sim.commands if c not in (":GEP#", ":GLS#")]


# =============================================================================
# Reply parsing
# =============================================================================


class TestParseGep:
    def test_position(self) -> None:
        reply = parse_gep("+16200000067500000" + "11#")

        assert reply.declination == pytest.approx(45.0)
        assert reply.right_ascension == pytest.approx(12.5)
        assert reply.side_of_pier is PierSide.WEST
        assert reply.pointing_state == 1

    def test_negative_declination(self) -> None:
        reply = parse_gep("-04500000000000000" + "00#")

        assert reply.declination == pytest.approx(-12.5)
        assert reply.side_of_pier is PierSide.EAST

    def test_indeterminate_pier_side(self) -> None:
        assert parse_gep("+00000000000000000" + "21#").side_of_pier is PierSide.UNKNOWN

    @pytest.mark.parametrize(
        "raw",
        [
            "+1620000006750000011",  # unterminated
            "+162000000675000001#",  # short
            "+16200000067500000x1#",  # pier side not a digit
            "?16200000067500000" + "11#",  # bad sign
            "+16200000129600000" + "11#",  # RA of 24h
            "+32500000067500000" + "11#",  # Dec beyond 90
        ],
    )
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(ResponseParseError):
            parse_gep(raw)


class TestParseGls:
    def test_location_and_status(self) -> None:
        reply = parse_gls("+01620000" + "51120000" + "211911#")

        assert reply.longitude == pytest.approx(4.5)
        assert reply.latitude == pytest.approx(52.0)
        assert reply.gps_state == 2
        assert reply.activity is MountActivity.TRACKING
        assert reply.tracking_rate is DriveRate.LUNAR
        assert reply.slew_speed == 9
        assert reply.time_source == 1
        assert reply.northern_hemisphere

    @pytest.mark.parametrize(
        ("digit", "activity"),
        [
            ("0", MountActivity.STOPPED),
            ("2", MountActivity.SLEWING),
            ("3", MountActivity.GUIDING),
            ("4", MountActivity.MERIDIAN_FLIP),
            ("5", MountActivity.TRACKING_PEC),
            ("6", MountActivity.PARKED),
            ("7", MountActivity.HOME),
        ],
    )
    def test_status_digits(self, digit: str, activity: MountActivity) -> None:
        raw = "-07400000" + "14400000" + f"1{digit}0510#"

        assert parse_gls(raw).activity is activity

    def test_southern_site(self) -> None:
        reply = parse_gls("-07400000" + "14400000" + "1000510#")

        assert reply.longitude == pytest.approx(-20.5555, abs=1e-4)
        assert reply.latitude == pytest.approx(-50.0)
        assert not reply.northern_hemisphere

    def test_custom_tracking_rate_reads_sidereal(self) -> None:
        reply = parse_gls("+01620000" + "51120000" + "214911#")

        assert reply.tracking_rate is DriveRate.SIDEREAL

    @pytest.mark.parametrize(
        "raw",
        [
            "+01620000" + "51120000" + "211911",  # unterminated
            "+01620000" + "51120000" + "21191#",  # short
            "+01620000" + "51120000" + "281911#",  # unknown status
            "+01620000" + "5112000x" + "211911#",  # bad latitude
        ],
    )
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(ResponseParseError):
            parse_gls(raw)


class TestParseAck:
    def test_values(self) -> None:
        assert parse_ack("1") is True
        assert parse_ack("0") is False

    @pytest.mark.parametrize("raw", ["", "2", "1#", "11"])
    def test_rejects(self, raw: str) -> None:
        with pytest.raises(ResponseParseError):
            parse_ack(raw)


# =============================================================================
# Driver against the simulator
# =============================================================================


class TestConnect:
    def test_connect_reads_status(self, mount: IOptronTelescope) -> None:
        assert mount.state is ConnectionState.CONNECTED
        assert mount.status.declination == pytest.approx(90.0)
        assert mount.status.activity is MountActivity.HOME
        assert mount.status.site_latitude == pytest.approx(52.0)
        assert mount.status.site_longitude == pytest.approx(4.5)
        assert mount.handle("GET", "athome") is True
        assert mount.pointing_state == 1
        assert mount.slew_speed == 9

    def test_unreachable_mount(self, instant_sim: IOptronMountSimulator) -> None:
        instant_sim.reachable = False
        registry = DeviceRegistry()
        registry.register_device(
            IOptronTelescope("CEM60", transport_factory=lambda settings: instant_sim)
        )

        result = registry.dispatch(
            "telescope", 0, "connected", CaseInsensitiveParams({"Connected": "true"}), "PUT"
        )

        assert result.error_number == int(AlpacaErrorCode.DRIVER_ERROR)
        assert registry.get("telescope", 0).state is ConnectionState.DISCONNECTED

    def test_silent_mount_drops_link(
        self, mount: IOptronTelescope, instant_sim: IOptronMountSimulator
    ) -> None:
        instant_sim.responsive = False

        for _ in range(mount.max_consecutive_failures):
            mount.poll_once()

        assert mount.state is ConnectionState.DISCONNECTED
        assert mount.comm_stats.get_summary().error_counts["timeout"] >= 5
        assert not instant_sim.is_open

    def test_queue_requires_connection(self) -> None:
        mount = IOptronTelescope("CEM60", transport_factory=MagicMock())

        with pytest.raises(Exception, match="not connected"):
            mount.queue  # noqa: B018


class TestSlew:
    def test_slew_is_queued_then_reported(
        self, slow_mount: IOptronTelescope, simulator: IOptronMountSimulator
    ) -> None:
        put(slow_mount, "slewtocoordinatesasync", RightAscension=10.0, Declination=45.0)

        assert slow_mount.handle("GET", "slewing") is True
        assert sent(simulator) == []

        slow_mount.poll_once()

        assert sent(simulator) == [":SRA054000000#", ":Sds+16200000#", ":MS1#"]
        assert slow_mount.handle("GET", "slewing") is True
        assert slow_mount.handle("GET", "targetrightascension") == 10.0

    def test_slew_completes(self, mount: IOptronTelescope) -> None:
        put(mount, "slewtocoordinates", RightAscension=10.0, Declination=45.0)

        mount.poll_once()

        assert mount.handle("GET", "slewing") is False
        assert mount.handle("GET", "tracking") is True
        assert mount.handle("GET", "rightascension") == pytest.approx(10.0)
        assert mount.handle("GET", "declination") == pytest.approx(45.0)
        assert mount.handle("GET", "sideofpier") == int(PierSide.WEST)

    def test_invalid_coordinates(self, mount: IOptronTelescope) -> None:
        with pytest.raises(InvalidValueError):
            put(mount, "slewtocoordinates", RightAscension=24.0, Declination=0.0)
        with pytest.raises(InvalidValueError):
            put(mount, "slewtocoordinates", RightAscension=1.0, Declination=-91.0)

    def test_abort_drops_pending_commands(
        self, slow_mount: IOptronTelescope, simulator: IOptronMountSimulator
    ) -> None:
        put(slow_mount, "slewtocoordinatesasync", RightAscension=10.0, Declination=45.0)
        put(slow_mount, "abortslew")

        slow_mount.poll_once()

        assert sent(simulator) == [":Q#"]
        assert slow_mount.handle("GET", "slewing") is False

    def test_abort_keeps_tracking(
        self, slow_mount: IOptronTelescope, simulator: IOptronMountSimulator
    ) -> None:
        put(slow_mount, "tracking", Tracking=True)
        slow_mount.poll_once()
        assert slow_mount.status.activity is MountActivity.TRACKING

        put(slow_mount, "slewtocoordinatesasync", RightAscension=10.0, Declination=45.0)
        slow_mount.poll_once()
        assert slow_mount.handle("GET", "slewing") is True

        put(slow_mount, "abortslew")

        assert slow_mount.handle("GET", "slewing") is False
        assert slow_mount.handle("GET", "tracking") is True
        slow_mount.poll_once()
        assert slow_mount.status.activity is MountActivity.TRACKING

    def test_abort_when_idle_changes_nothing(self, slow_mount: IOptronTelescope) -> None:
        put(slow_mount, "tracking", Tracking=True)

        put(slow_mount, "abortslew")

        assert slow_mount.status.activity is MountActivity.TRACKING

    def test_sync(self, mount: IOptronTelescope, instant_sim: IOptronMountSimulator) -> None:
        put(mount, "synctocoordinates", RightAscension=6.0, Declination=-20.0)

        mount.poll_once()

        assert sent(instant_sim)[-1] == ":CM#"
        assert mount.status.right_ascension == pytest.approx(6.0)
        assert mount.status.declination == pytest.approx(-20.0)

    def test_rejected_command_is_recorded(
        self, mount: IOptronTelescope, instant_sim: IOptronMountSimulator
    ) -> None:
        instant_sim.status = "6"
        put(mount, "synctocoordinates", RightAscension=6.0, Declination=-20.0)

        mount.poll_once()

        assert mount.last_error == "Mount rejected :CM#"
        assert mount.connected
        assert mount.handle("GET", "atpark") is True

    def test_queue_full_is_busy(self, slow_mount: IOptronTelescope) -> None:
        for _ in range(5):
            put(slow_mount, "slewtocoordinatesasync", RightAscension=1.0, Declination=1.0)

        with pytest.raises(DeviceBusyError):
            put(slow_mount, "slewtocoordinatesasync", RightAscension=1.0, Declination=1.0)

        assert slow_mount.queue.pending == 15

    def test_altaz_not_supported(self, mount: IOptronTelescope) -> None:
        with pytest.raises(NotImplementedAlpacaError):
            put(mount, "slewtoaltaz", Azimuth=10.0, Altitude=45.0)
        assert mount.handle("GET", "canslewaltaz") is False


class TestParkAndMotion:
    def test_park_unpark(
        self, mount: IOptronTelescope, instant_sim: IOptronMountSimulator
    ) -> None:
        put(mount, "park")
        mount.poll_once()

        assert mount.handle("GET", "atpark") is True
        with pytest.raises(InvalidWhileParkedError) as exc_info:
            put(mount, "slewtocoordinates", RightAscension=1.0, Declination=1.0)
        assert exc_info.value.error_number == int(AlpacaErrorCode.INVALID_WHILE_PARKED)

        put(mount, "unpark")
        mount.poll_once()

        assert mount.handle("GET", "atpark") is False
        assert sent(instant_sim) == [":MP1#", ":MP0#"]

    def test_set_park_and_find_home(
        self, mount: IOptronTelescope, instant_sim: IOptronMountSimulator
    ) -> None:
        put(mount, "setpark")
        put(mount, "findhome")
        mount.poll_once()

        assert sent(instant_sim) == [":SZP#", ":MH#"]
        assert mount.handle("GET", "athome") is True

    def test_homing_is_reported_until_home(
        self, slow_mount: IOptronTelescope, simulator: IOptronMountSimulator
    ) -> None:
        put(slow_mount, "findhome")
        assert slow_mount.status.activity is MountActivity.HOMING

        slow_mount.poll_once()

        assert slow_mount.status.activity is MountActivity.HOMING
        assert slow_mount.handle("GET", "slewing") is True
        assert slow_mount.handle("GET", "athome") is False

        simulator.slew_seconds = 0.0
        slow_mount.poll_once()

        assert slow_mount.status.activity is MountActivity.HOME
        assert slow_mount.handle("GET", "slewing") is False

    @pytest.mark.parametrize(
        ("axis", "rate", "command"),
        [(0, 1.5, ":mw#"), (0, -1.5, ":me#"), (1, 2.0, ":ms#"), (1, -0.5, ":mn#")],
    )
    def test_move_axis(
        self,
        mount: IOptronTelescope,
        instant_sim: IOptronMountSimulator,
        axis: int,
        rate: float,
        command: str,
    ) -> None:
        put(mount, "moveaxis", Axis=axis, Rate=rate)
        mount.poll_once()

        assert sent(instant_sim) == [command]
        assert mount.handle("GET", "slewing") is True

    def test_stop_axis(self, mount: IOptronTelescope, instant_sim: IOptronMountSimulator) -> None:
        put(mount, "moveaxis", Axis=0, Rate=1.0)
        put(mount, "moveaxis", Axis=0, Rate=0.0)
        mount.poll_once()

        assert sent(instant_sim) == [":mw#", ":qR#"]
        assert mount.handle("GET", "slewing") is False

    def test_move_axis_limits(self, mount: IOptronTelescope) -> None:
        with pytest.raises(InvalidValueError):
            put(mount, "moveaxis", Axis=0, Rate=3.5)
        with pytest.raises(NotImplementedAlpacaError):
            put(mount, "moveaxis", Axis=2, Rate=1.0)
        with pytest.raises(InvalidValueError):
            put(mount, "moveaxis", Axis=7, Rate=1.0)

    def test_axis_rates(self, mount: IOptronTelescope) -> None:
        rates = mount.handle("GET", "axisrates", CaseInsensitiveParams({"Axis": "1"}))

        assert rates == [{"Minimum": 0.0, "Maximum": 3.0}]

    def test_tracking(self, mount: IOptronTelescope, instant_sim: IOptronMountSimulator) -> None:
        put(mount, "tracking", Tracking="true")
        put(mount, "trackingrate", TrackingRate=int(DriveRate.SOLAR))
        mount.poll_once()

        assert sent(instant_sim) == [":ST1#", ":RT2#"]
        assert mount.handle("GET", "tracking") is True
        assert mount.handle("GET", "trackingrate") == int(DriveRate.SOLAR)

    def test_unknown_tracking_rate(self, mount: IOptronTelescope) -> None:
        with pytest.raises(InvalidValueError):
            put(mount, "trackingrate", TrackingRate=9)


# =============================================================================
# Settings and setup form
# =============================================================================


class TestTransportSelection:
    def test_ethernet(self) -> None:
        transport = default_transport(
            IOptronSettings(kind=IOptronConnectionKind.ETHERNET, host="10.0.0.5", port=8899)
        )

        assert isinstance(transport, TcpTransport)
        assert transport.description == "10.0.0.5:8899"

    def test_serial_path(self) -> None:
        transport = default_transport(IOptronSettings(serial_path="/dev/ttyUSB3"))

        assert isinstance(transport, SerialTransport)
        assert transport.description == "/dev/ttyUSB3"

    def test_serial_auto_detect(self) -> None:
        with patch(
            "alpacapi.drivers.ioptron.auto_detect_serial_path", return_value="/dev/ttyACM1"
        ):
            transport = default_transport(IOptronSettings())

        assert transport.description == "/dev/ttyACM1"

    @pytest.mark.parametrize(
        ("text", "valid"),
        [("192.168.1.104", True), ("10.0.0.1", True), ("10.0.0", False), ("1.2.3", False)],
    )
    def test_ip_text(self, text: str, valid: bool) -> None:
        assert is_valid_ipv4_text(text) is valid


class TestSetup:
    @pytest.fixture
    def factory(self, instant_sim: IOptronMountSimulator) -> MagicMock:
        return MagicMock(return_value=instant_sim)

    @pytest.fixture
    def listener(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def configurable(self, factory: MagicMock, listener: MagicMock) -> IOptronTelescope:
        return IOptronTelescope(
            "CEM60",
            settings=IOptronSettings(serial_path="/dev/ttyUSB0"),
            transport_factory=factory,
            on_settings_changed=listener,
        )

    def test_fields(self, configurable: IOptronTelescope) -> None:
        fields = {field.name: field for field in configurable.setup_fields()}

        assert list(fields) == ["conntype", "devpath", "ipaddr", "port"]
        assert fields["conntype"].value == "serial"
        assert fields["conntype"].kind == "radio"
        assert fields["devpath"].value == "/dev/ttyUSB0"
        assert fields["port"].value == 4030

    def test_switch_to_ethernet_reconnects(
        self, configurable: IOptronTelescope, factory: MagicMock, listener: MagicMock
    ) -> None:
        configurable.connect()

        messages = configurable.apply_setup(
            CaseInsensitiveParams(
                {"conntype": "ethernet", "ipaddr": "192.168.1.104", "port": "8899"}
            )
        )

        assert messages == ["Settings saved: ethernet 192.168.1.104:8899", "Reconnected"]
        assert configurable.connected
        assert factory.call_count == 2
        assert factory.call_args.args[0].kind is IOptronConnectionKind.ETHERNET
        listener.assert_called_once_with(configurable)

    def test_change_while_disconnected_does_not_connect(
        self, configurable: IOptronTelescope, factory: MagicMock, listener: MagicMock
    ) -> None:
        messages = configurable.apply_setup(CaseInsensitiveParams({"devpath": "/dev/ttyUSB1"}))

        assert messages == ["Settings saved: serial /dev/ttyUSB1 @ 115200"]
        assert not configurable.connected
        factory.assert_not_called()
        listener.assert_called_once()

    def test_invalid_values_rejected(
        self, configurable: IOptronTelescope, listener: MagicMock
    ) -> None:
        messages = configurable.apply_setup(
            CaseInsensitiveParams({"ipaddr": "10.0.0", "port": "70000"})
        )

        assert messages == [
            "Invalid IP address '10.0.0'",
            "Invalid port '70000', expected 1..65535",
        ]
        assert configurable.settings.host == ""
        assert configurable.settings.port == 4030
        listener.assert_not_called()

    def test_ethernet_needs_address(
        self, configurable: IOptronTelescope, listener: MagicMock
    ) -> None:
        messages = configurable.apply_setup(CaseInsensitiveParams({"conntype": "ethernet"}))

        assert "Ethernet connection needs an IP address" in messages
        assert configurable.settings.kind is IOptronConnectionKind.SERIAL
        listener.assert_not_called()

    def test_unknown_connection_type(self, configurable: IOptronTelescope) -> None:
        messages = configurable.apply_setup(CaseInsensitiveParams({"conntype": "bluetooth"}))

        assert messages[0] == "Unknown connection type 'bluetooth'"

    def test_no_changes(self, configurable: IOptronTelescope, listener: MagicMock) -> None:
        messages = configurable.apply_setup(CaseInsensitiveParams({"conntype": "serial"}))

        assert messages == ["No changes"]
        listener.assert_not_called()

    def test_failed_reconnect_is_reported(
        self,
        configurable: IOptronTelescope,
        factory: MagicMock,
        instant_sim: IOptronMountSimulator,
    ) -> None:
        configurable.connect()
        instant_sim.reachable = False

        messages = configurable.apply_setup(
            CaseInsensitiveParams({"conntype": "ethernet", "ipaddr": "192.168.1.104"})
        )

        assert messages[-1] == "Reconnect failed: Simulated mount is unreachable"
        assert configurable.state is ConnectionState.DISCONNECTED

