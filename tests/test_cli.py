"""Tests for the alpacapi command line.

The server itself is never started: ``alpacapi.server.serve`` is patched
and the resulting ServerConfig is inspected instead.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from alpacapi import __version__
from alpacapi.cli import main
from alpacapi.config import CONFIG_ENV_VAR, ConfigError, DriverMode, ServerConfig, sample_config
from alpacapi.discovery.client import DiscoveryRecord

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def serve(monkeypatch: pytest.MonkeyPatch) -> Iterator[MagicMock]:
    """Patched server entry point; no config file in the environment."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    with patch("alpacapi.server.serve") as mock_serve:
        yield mock_serve


@pytest.fixture
def output() -> Iterator[list[str]]:
    """Lines the CLI printed."""
    lines: list[str] = []
    with patch("alpacapi.cli._log", side_effect=lines.append):
        yield lines


def served_config(serve: MagicMock) -> ServerConfig:
    serve.assert_called_once()
    return serve.call_args.args[0]


# =============================================================================
# serve
# =============================================================================


class TestServe:
    def test_no_arguments_serves_defaults(self, serve: MagicMock) -> None:
        assert main([]) == 0

        config = served_config(serve)
        assert config.mode is DriverMode.DIGITAL_TWIN
        assert len(config.devices) == 4

    def test_options_without_subcommand(self, serve: MagicMock) -> None:
        assert main(["--port", "7000"]) == 0

        assert served_config(serve).port == 7000

    def test_overrides(self, serve: MagicMock, tmp_path: Path) -> None:
        path = tmp_path / "alpacapi.jsonc"
        path.write_text(sample_config().replace('"digital_twin"', '"hardware"'))

        main(
            [
                "serve",
                "--config",
                str(path),
                "--host",
                "127.0.0.1",
                "--digital-twin",
                "--log-level",
                "debug",
                "--json-logs",
            ]
        )

        config = served_config(serve)
        assert config.source == path
        assert config.host == "127.0.0.1"
        assert config.mode is DriverMode.DIGITAL_TWIN
        assert config.logging.level == "DEBUG"
        assert config.logging.json is True

    def test_bad_config_file(
        self, serve: MagicMock, output: list[str], tmp_path: Path
    ) -> None:
        assert main(["serve", "--config", str(tmp_path / "missing.jsonc")]) == 2

        serve.assert_not_called()
        assert output[0].startswith("Config error:")

    def test_bad_value_in_config_file(
        self, serve: MagicMock, output: list[str], tmp_path: Path
    ) -> None:
        path = tmp_path / "alpacapi.jsonc"
        path.write_text(
            '{"devices": [{"type": "focuser", "poll_interval": "fast"}]}',
            encoding="utf-8",
        )

        assert main(["serve", "--config", str(path)]) == 2

        serve.assert_not_called()
        assert output == [
            "Config error: devices[0].poll_interval must be a number, got 'fast'"
        ]

    def test_config_error_at_startup(self, serve: MagicMock, output: list[str]) -> None:
        serve.side_effect = ConfigError("device number 0 used twice")

        assert main(["serve"]) == 2
        assert output == ["Config error: device number 0 used twice"]

    def test_interrupt_exits_cleanly(self, serve: MagicMock) -> None:
        serve.side_effect = KeyboardInterrupt

        assert main(["serve"]) == 0


# =============================================================================
# discover
# =============================================================================


class TestDiscover:
    def test_nothing_found(self, output: list[str]) -> None:
        with patch("alpacapi.cli.discover", return_value=[]) as discover:
            assert main(["discover", "--timeout", "0.5"]) == 1

        discover.assert_called_once_with(timeout=0.5, port=32227)
        assert output == ["No Alpaca servers found"]

    def test_lists_servers(self, output: list[str]) -> None:
        records = [DiscoveryRecord("10.0.0.2", 6800, 0.0), DiscoveryRecord("10.0.0.3", 11111, 0.0)]

        with patch("alpacapi.cli.discover", return_value=records):
            assert main(["discover"]) == 0

        assert output == ["http://10.0.0.2:6800", "http://10.0.0.3:11111"]

    def test_details(self, output: list[str]) -> None:
        records = [DiscoveryRecord("10.0.0.2", 6800, 0.0), DiscoveryRecord("10.0.0.3", 6800, 0.0)]
        devices = [{"DeviceType": "Telescope", "DeviceNumber": 0, "DeviceName": "CEM60"}]

        with (
            patch("alpacapi.cli.discover", return_value=records),
            patch(
                "alpacapi.cli.describe_server",
                side_effect=[devices, requests.ConnectionError("refused")],
            ),
        ):
            assert main(["discover", "--details"]) == 0

        assert output == [
            "http://10.0.0.2:6800",
            "    Telescope 0: CEM60",
            "http://10.0.0.3:6800",
            "    (could not list devices: refused)",
        ]


# =============================================================================
# init-config and --version
# =============================================================================


class TestInitConfig:
    def test_writes_sample(self, tmp_path: Path, output: list[str]) -> None:
        path = tmp_path / "conf" / "alpacapi.jsonc"

        assert main(["init-config", str(path)]) == 0

        assert path.read_text(encoding="utf-8") == sample_config()
        assert output[0] == f"Wrote {path}"

    def test_refuses_to_overwrite(self, tmp_path: Path, output: list[str]) -> None:
        path = tmp_path / "alpacapi.jsonc"
        path.write_text("{}", encoding="utf-8")

        assert main(["init-config", str(path)]) == 1
        assert path.read_text(encoding="utf-8") == "{}"

        assert main(["init-config", str(path), "--force"]) == 0
        assert path.read_text(encoding="utf-8") == sample_config()


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])

    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out
