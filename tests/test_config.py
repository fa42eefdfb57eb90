"""Tests for configuration loading, validation, persistence and the driver factory."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.config import (
    CONFIG_ENV_VAR,
    ConfigError,
    DriverMode,
    ServerConfig,
    build_devices,
    default_config,
    load_config,
    parse_config,
    sample_config,
    save_config,
    strip_jsonc_comments,
)
from alpacapi.devices.types import DeviceType
from alpacapi.drivers.ioptron import IOptronConnectionKind, IOptronTelescope
from alpacapi.drivers.twin import TwinFocuser, TwinTelescope

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    path = tmp_path / "alpacapi.jsonc"
    path.write_text(sample_config(), encoding="utf-8")
    return path


@pytest.fixture
def sample_data() -> dict[str, Any]:
    return json.loads(strip_jsonc_comments(sample_config()))


# =============================================================================
# JSONC
# =============================================================================


class TestJsonc:
    def test_comments_removed(self) -> None:
        text = '{\n  // port\n  "port": 6800 // inline\n}'

        assert json.loads(strip_jsonc_comments(text)) == {"port": 6800}

    def test_strings_untouched(self) -> None:
        text = '{"url": "http://example.org//path", "quote": "a \\" // b"}'

        assert json.loads(strip_jsonc_comments(text)) == {
            "url": "http://example.org//path",
            "quote": 'a " // b',
        }

    def test_trailing_commas(self) -> None:
        assert json.loads(strip_jsonc_comments('{"a": [1, 2,], "b": 3,\n}')) == {
            "a": [1, 2],
            "b": 3,
        }


# =============================================================================
# Loading
# =============================================================================


class TestLoadConfig:
    def test_sample_file(self, sample_file: Path) -> None:
        config = load_config(sample_file)

        assert config.source == sample_file
        assert config.port == 6800
        assert config.mode is DriverMode.DIGITAL_TWIN
        assert [d.type for d in config.devices] == [
            DeviceType.TELESCOPE,
            DeviceType.FOCUSER,
            DeviceType.SWITCH,
            DeviceType.SAFETY_MONITOR,
        ]
        mount = config.devices[0]
        assert mount.driver == "ioptron"
        assert mount.connection is not None
        assert mount.connection.path == "/dev/ttyUSB0"
        assert config.server.location == "Backyard"

    def test_no_path_uses_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

        config = load_config()

        assert config == default_config()
        assert all(d.auto_connect for d in config.devices)

    def test_environment_variable(
        self, monkeypatch: pytest.MonkeyPatch, sample_file: Path
    ) -> None:
        monkeypatch.setenv(CONFIG_ENV_VAR, str(sample_file))

        assert load_config().source == sample_file

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Cannot read"):
            load_config(tmp_path / "absent.jsonc")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.jsonc"
        path.write_text("{ port: 6800 }", encoding="utf-8")

        with pytest.raises(ConfigError, match="not valid JSON"):
            load_config(path)


class TestValidation:
    def test_defaults_for_empty_document(self) -> None:
        config = parse_config({})

        assert config.port == 6800
        assert config.discovery.enabled
        assert config.discovery.port == 32227
        assert config.devices == []

    def test_device_name_defaults(self) -> None:
        config = parse_config({"devices": [{"type": "Focuser"}]})

        assert config.devices[0].name == "Focuser 0"
        assert config.devices[0].driver == "twin"

    @pytest.mark.parametrize(
        ("data", "message"),
        [
            ([], "Top level"),
            ({"mode": "cloud"}, "mode"),
            ({"port": "abc"}, "port must be an integer"),
            ({"port": 0}, "outside"),
            ({"devices": {}}, "must be a list"),
            ({"discovery": []}, "must be an object"),
            ({"server": {"colour": "red"}}, "Invalid server"),
            ({"bogus": 1}, "Unknown top-level keys: bogus"),
            ({"devices": ["focuser"]}, "must be an object"),
            ({"devices": [{"driver": "twin"}]}, "missing 'type'"),
            ({"devices": [{"type": "toaster"}]}, "Unknown device type"),
            ({"devices": [{"type": "focuser", "driver": "ioptron"}]}, "no driver"),
            ({"devices": [{"type": "camera"}]}, "no driver"),
            ({"devices": [{"type": "focuser", "colour": "red"}]}, "Invalid devices"),
            ({"devices": [{"type": "focuser", "poll_interval": 0}]}, "poll_interval"),
            (
                {"devices": [{"type": "focuser", "poll_interval": "fast"}]},
                r"devices\[0\].poll_interval must be a number",
            ),
            (
                {"devices": [{"type": "focuser", "poll_interval": None}]},
                r"devices\[0\].poll_interval must be a number",
            ),
            (
                {
                    "devices": [
                        {
                            "type": "telescope",
                            "connection": {"kind": "tcp", "host": "10.0.0.5", "port": "abc"},
                        }
                    ]
                },
                r"devices\[0\].connection.port must be an integer",
            ),
            (
                {"devices": [{"type": "telescope", "connection": {"baud_rate": [9600]}}]},
                r"devices\[0\].connection.baud_rate must be an integer",
            ),
            (
                {"devices": [{"type": "telescope", "connection": {"kind": "usb"}}]},
                "connection.kind",
            ),
            (
                {"devices": [{"type": "telescope", "connection": {"kind": "tcp"}}]},
                "needs a host",
            ),
            (
                {
                    "devices": [
                        {
                            "type": "telescope",
                            "connection": {"kind": "tcp", "host": "10.0.0.5", "port": 0},
                        }
                    ]
                },
                "outside 1..65535",
            ),
        ],
    )
    def test_rejected(self, data: Any, message: str) -> None:
        with pytest.raises(ConfigError, match=message):
            parse_config(data)

    def test_round_trip(self, sample_data: dict[str, Any]) -> None:
        config = parse_config(sample_data)

        assert parse_config(config.to_dict()) == config


# =============================================================================
# Driver factory
# =============================================================================


class TestBuildDevices:
    def test_digital_twin_mode(self, sample_data: dict[str, Any]) -> None:
        built = build_devices(parse_config(sample_data))

        entry, mount = built[0]
        assert isinstance(mount, TwinTelescope)
        assert mount.settings.serial_path == "/dev/ttyUSB0"
        assert mount.poll_interval == entry.poll_interval == 1.0
        assert mount.want_connected
        assert [device.name for _, device in built] == [
            "CEM60",
            "Focuser",
            "Power box",
            "Weather",
        ]

    def test_hardware_mode(self, sample_data: dict[str, Any]) -> None:
        sample_data["mode"] = "hardware"

        _, mount = build_devices(parse_config(sample_data))[0]

        assert type(mount) is IOptronTelescope
        assert mount.settings.kind is IOptronConnectionKind.SERIAL

    def test_tcp_connection(self) -> None:
        config = parse_config(
            {
                "mode": "hardware",
                "devices": [
                    {
                        "type": "telescope",
                        "driver": "ioptron",
                        "connection": {"kind": "tcp", "host": "192.168.1.104", "port": 8899},
                    }
                ],
            }
        )

        _, mount = build_devices(config)[0]

        assert mount.settings.kind is IOptronConnectionKind.ETHERNET
        assert (mount.settings.host, mount.settings.port) == ("192.168.1.104", 8899)

    def test_options_are_passed(self) -> None:
        config = parse_config(
            {"devices": [{"type": "focuser", "options": {"max_step": 1000}}]}
        )

        _, focuser = build_devices(config)[0]

        assert isinstance(focuser, TwinFocuser)
        assert focuser.max_step == 1000

    def test_bad_options(self) -> None:
        config = parse_config(
            {"devices": [{"type": "focuser", "options": {"warp": 9}}]}
        )

        with pytest.raises(ConfigError, match="Cannot create Focuser"):
            build_devices(config)


class TestPersistence:
    def test_setup_change_rewrites_file(self, sample_file: Path) -> None:
        _, mount = build_devices(load_config(sample_file))[0]

        mount.apply_setup(
            CaseInsensitiveParams({"conntype": "ethernet", "ipaddr": "192.168.1.104"})
        )

        reloaded = load_config(sample_file)
        connection = reloaded.devices[0].connection
        assert connection is not None
        assert (connection.kind, connection.host) == ("tcp", "192.168.1.104")
        assert "//" not in sample_file.read_text(encoding="utf-8")

    def test_save_needs_a_path(self) -> None:
        with pytest.raises(ConfigError, match="no file"):
            save_config(ServerConfig())

    def test_save_explicit_path(self, tmp_path: Path) -> None:
        target = save_config(default_config(), tmp_path / "out.json")

        assert parse_config(json.loads(target.read_text(encoding="utf-8"))) == default_config()
