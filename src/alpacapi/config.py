"""Server configuration: JSONC file loading and the driver factory.

The server is described by one JSON file. ``//`` comments and trailing
commas are accepted so the sample written by ``alpacapi init-config`` can
stay annotated. The file path comes from ``--config``, else from the
``ALPACAPI_CONFIG`` environment variable; with neither, a digital twin
setup with one device of each simulated type is used.

Driver modes:
    HARDWARE       real transports (serial ports, TCP sockets)
    DIGITAL_TWIN   every device backed by an in-process simulator

Example:
    config = load_config("/etc/alpacapi.jsonc")
    for entry, device in build_devices(config):
        registry.register_device(device, entry.number)
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from alpacapi import DEFAULT_ALPACA_PORT
from alpacapi.devices.base import DEFAULT_POLL_INTERVAL, AlpacaDevice
from alpacapi.devices.types import DeviceType
from alpacapi.discovery.server import DISCOVERY_PORT
from alpacapi.drivers.ioptron import (
    DEFAULT_IOPTRON_PORT,
    IOptronConnectionKind,
    IOptronSettings,
    IOptronTelescope,
)
from alpacapi.drivers.twin import (
    TwinFocuser,
    TwinSafetyMonitor,
    TwinSwitch,
    TwinTelescope,
)
from alpacapi.observability import get_logger
from alpacapi.protocol.transport import DEFAULT_BAUD_RATE

logger = get_logger(__name__)

#: Environment variable naming the default config file.
CONFIG_ENV_VAR = "ALPACAPI_CONFIG"

SERIAL = "serial"
TCP = "tcp"
_CONNECTION_KINDS = (SERIAL, TCP)


class ConfigError(ValueError):
    """The configuration file is unreadable or describes an invalid setup."""


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # Real transports
    DIGITAL_TWIN = "digital_twin"  # Simulated instruments


# =============================================================================
# Dataclasses
# =============================================================================


@dataclass
class ConnectionConfig:
    """How a comm-style driver reaches its instrument.

    Attributes:
        kind: "serial" or "tcp".
        path: Serial device node, auto-detected when None.
        baud_rate: Serial speed.
        host: TCP host.
        port: TCP port.
    """

    kind: str = SERIAL
    path: str | None = None
    baud_rate: int = DEFAULT_BAUD_RATE
    host: str = ""
    port: int = DEFAULT_IOPTRON_PORT


@dataclass
class DeviceConfig:
    """One device entry.

    Attributes:
        type: ASCOM device type.
        driver: Driver key, see DRIVERS.
        name: Name reported to clients.
        number: Explicit device number, next free one when None.
        connection: Link settings for comm-style drivers.
        poll_interval: Seconds between polling iterations.
        auto_connect: Connect when the server starts.
        options: Extra driver keyword arguments.
    """

    type: DeviceType
    driver: str
    name: str
    number: int | None = None
    connection: ConnectionConfig | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    auto_connect: bool = False
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscoveryConfig:
    enabled: bool = True
    port: int = DISCOVERY_PORT


@dataclass
class ServerDescription:
    """Values for /management/v1/description."""

    name: str = "AlpacaPi"
    manufacturer: str = "alpacapi"
    location: str = ""


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass
class ServerConfig:
    """Everything the server needs at startup."""

    port: int = DEFAULT_ALPACA_PORT
    host: str = "0.0.0.0"
    mode: DriverMode = DriverMode.DIGITAL_TWIN
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    server: ServerDescription = field(default_factory=ServerDescription)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    devices: list[DeviceConfig] = field(default_factory=list)
    source: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready form, the inverse of parse_config()."""
        data = asdict(self)
        data.pop("source")
        data["mode"] = self.mode.value
        for entry in data["devices"]:
            entry["type"] = entry["type"].value
            if entry["connection"] is None:
                del entry["connection"]
            if entry["number"] is None:
                del entry["number"]
            if not entry["options"]:
                del entry["options"]
        return data


# =============================================================================
# Loading
# =============================================================================


_TOP_LEVEL_KEYS = frozenset(
    {"port", "host", "mode", "discovery", "server", "logging", "devices"}
)

_JSONC_TOKENS = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*')


def strip_jsonc_comments(text: str) -> str:
    """Strip ``//`` comments and trailing commas from JSONC text.

    String literals are left alone, so values such as URLs survive.
    Block comments are not supported.
    """
    text = _JSONC_TOKENS.sub(lambda m: m.group(1) or "", text)
    # Trailing commas before ] or } are invalid JSON
    return re.sub(r",(\s*[}\]])", r"\1", text)


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be an object")
    return value


def _build(cls: type, values: dict[str, Any], where: str) -> Any:
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid {where}: {e}") from None


def _integer(value: Any, where: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where} must be an integer, got {value!r}") from None


def _positive(value: Any, where: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where} must be a number, got {value!r}") from None
    if not number > 0:
        raise ConfigError(f"{where} must be positive, got {value!r}")
    return number


def _parse_connection(raw: Any, where: str) -> ConnectionConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}.connection must be an object")
    connection = _build(ConnectionConfig, raw, f"{where}.connection")
    connection.kind = str(connection.kind).lower()
    if connection.kind not in _CONNECTION_KINDS:
        raise ConfigError(
            f"{where}.connection.kind must be one of {_CONNECTION_KINDS}, "
            f"got {connection.kind!r}"
        )
    if connection.kind == TCP and not connection.host:
        raise ConfigError(f"{where}.connection needs a host for tcp")
    connection.port = _integer(connection.port, f"{where}.connection.port")
    connection.baud_rate = _integer(
        connection.baud_rate, f"{where}.connection.baud_rate"
    )
    if not 1 <= connection.port <= 65535:
        raise ConfigError(f"{where}.connection.port {connection.port} outside 1..65535")
    return connection


def _parse_device(raw: Any, index: int) -> DeviceConfig:
    where = f"devices[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be an object")
    values = dict(raw)
    try:
        device_type = DeviceType.parse(str(values.pop("type")))
    except KeyError:
        raise ConfigError(f"{where} is missing 'type'") from None
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from None

    driver = str(values.pop("driver", "twin")).lower()
    if (device_type, driver) not in DRIVERS:
        known = sorted(d for t, d in DRIVERS if t is device_type)
        raise ConfigError(
            f"{where}: no driver {driver!r} for {device_type.display_name}"
            + (f" (available: {', '.join(known)})" if known else "")
        )

    connection = values.pop("connection", None)
    device = _build(
        DeviceConfig,
        {
            "type": device_type,
            "driver": driver,
            "name": values.pop("name", f"{device_type.display_name} {index}"),
            **values,
        },
        where,
    )
    if connection is not None:
        device.connection = _parse_connection(connection, where)
    device.poll_interval = _positive(device.poll_interval, f"{where}.poll_interval")
    return device


def parse_config(data: Any, source: Path | None = None) -> ServerConfig:
    """Validate a decoded config document.

    Raises:
        ConfigError: On unknown keys, types, drivers or connection kinds.
    """
    if not isinstance(data, dict):
        raise ConfigError("Top level must be an object")
    try:
        mode = DriverMode(data.get("mode", DriverMode.DIGITAL_TWIN.value))
    except ValueError:
        raise ConfigError(
            f"mode must be 'hardware' or 'digital_twin', got {data.get('mode')!r}"
        ) from None

    devices_raw = data.get("devices", [])
    if not isinstance(devices_raw, list):
        raise ConfigError("'devices' must be a list")

    port = _integer(data.get("port", DEFAULT_ALPACA_PORT), "port")

    config = ServerConfig(
        port=port,
        host=str(data.get("host", "0.0.0.0")),
        mode=mode,
        discovery=_build(DiscoveryConfig, _section(data, "discovery"), "discovery"),
        server=_build(ServerDescription, _section(data, "server"), "server"),
        logging=_build(LoggingConfig, _section(data, "logging"), "logging"),
        devices=[_parse_device(raw, i) for i, raw in enumerate(devices_raw)],
        source=source,
    )
    if not 1 <= config.port <= 65535:
        raise ConfigError(f"port {config.port} outside 1..65535")
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ConfigError(f"Unknown top-level keys: {', '.join(sorted(unknown))}")
    return config


def default_config() -> ServerConfig:
    """One simulated device of each supported type."""
    return ServerConfig(
        mode=DriverMode.DIGITAL_TWIN,
        devices=[
            DeviceConfig(DeviceType.TELESCOPE, "twin", "Simulated mount", auto_connect=True),
            DeviceConfig(DeviceType.FOCUSER, "twin", "Simulated focuser", auto_connect=True),
            DeviceConfig(DeviceType.SWITCH, "twin", "Simulated switch", auto_connect=True),
            DeviceConfig(
                DeviceType.SAFETY_MONITOR,
                "twin",
                "Simulated safety monitor",
                auto_connect=True,
            ),
        ],
    )


def resolve_config_path(path: str | Path | None = None) -> Path | None:
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_path).expanduser() if env_path else None


def load_config(path: str | Path | None = None) -> ServerConfig:
    """Load and validate the server configuration.

    Args:
        path: Config file. Falls back to $ALPACAPI_CONFIG, then to
            default_config().

    Raises:
        ConfigError: If the file is missing, not JSONC, or invalid.
    """
    resolved = resolve_config_path(path)
    if resolved is None:
        logger.info("No config file given, using digital twin defaults")
        return default_config()
    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config {resolved}: {e}") from e
    try:
        data = json.loads(strip_jsonc_comments(text))
    except json.JSONDecodeError as e:
        raise ConfigError(f"{resolved}: not valid JSON ({e})") from e
    config = parse_config(data, source=resolved)
    logger.info(
        "Config loaded",
        path=str(resolved),
        mode=config.mode.value,
        devices=len(config.devices),
    )
    return config


def save_config(config: ServerConfig, path: Path | None = None) -> Path:
    """Write the configuration back as plain JSON.

    Comments in the original file are not preserved.

    Raises:
        ConfigError: If there is no target path or it cannot be written.
    """
    target = path or config.source
    if target is None:
        raise ConfigError("Config has no file to save to")
    try:
        target.write_text(json.dumps(config.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot write config {target}: {e}") from e
    logger.info("Config saved", path=str(target))
    return target


# =============================================================================
# Driver factory
# =============================================================================


def ioptron_settings(connection: ConnectionConfig | None) -> IOptronSettings:
    if connection is None:
        return IOptronSettings()
    return IOptronSettings(
        kind=(
            IOptronConnectionKind.ETHERNET
            if connection.kind == TCP
            else IOptronConnectionKind.SERIAL
        ),
        serial_path=connection.path,
        baud_rate=connection.baud_rate,
        host=connection.host,
        port=connection.port,
    )


def connection_from_ioptron(settings: IOptronSettings) -> ConnectionConfig:
    return ConnectionConfig(
        kind=TCP if settings.kind is IOptronConnectionKind.ETHERNET else SERIAL,
        path=settings.serial_path,
        baud_rate=settings.baud_rate,
        host=settings.host,
        port=settings.port,
    )


def _ioptron(entry: DeviceConfig, mode: DriverMode, **kwargs: Any) -> AlpacaDevice:
    settings = ioptron_settings(entry.connection)
    if mode is DriverMode.DIGITAL_TWIN:
        return TwinTelescope(entry.name, settings=settings, **kwargs)
    return IOptronTelescope(entry.name, settings=settings, **kwargs)


def _twin(cls: type[AlpacaDevice]) -> Callable[..., AlpacaDevice]:
    def create(entry: DeviceConfig, mode: DriverMode, **kwargs: Any) -> AlpacaDevice:
        kwargs.pop("on_settings_changed", None)
        return cls(entry.name, **kwargs)

    return create


#: (device type, driver key) -> factory(entry, mode, **device kwargs)
DRIVERS: dict[tuple[DeviceType, str], Callable[..., AlpacaDevice]] = {
    (DeviceType.TELESCOPE, "ioptron"): _ioptron,
    (DeviceType.TELESCOPE, "twin"): _twin(TwinTelescope),
    (DeviceType.FOCUSER, "twin"): _twin(TwinFocuser),
    (DeviceType.SWITCH, "twin"): _twin(TwinSwitch),
    (DeviceType.SAFETY_MONITOR, "twin"): _twin(TwinSafetyMonitor),
}


def build_device(
    entry: DeviceConfig,
    mode: DriverMode,
    on_settings_changed: Callable[[Any], None] | None = None,
) -> AlpacaDevice:
    """Instantiate the driver for one config entry.

    Raises:
        ConfigError: If the driver rejects the entry's options.
    """
    factory = DRIVERS.get((entry.type, entry.driver))
    if factory is None:
        raise ConfigError(f"No driver {entry.driver!r} for {entry.type.display_name}")
    kwargs: dict[str, Any] = {
        "poll_interval": entry.poll_interval,
        "auto_connect": entry.auto_connect,
        **entry.options,
    }
    if on_settings_changed is not None:
        kwargs["on_settings_changed"] = on_settings_changed
    try:
        return factory(entry, mode, **kwargs)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Cannot create {entry.type.display_name} {entry.name!r}: {e}") from e


def build_devices(config: ServerConfig) -> list[tuple[DeviceConfig, AlpacaDevice]]:
    """Instantiate every configured device, paired with its entry.

    Settings changed on a device's setup page are written back to the
    config file when the config was loaded from one.
    """
    built = []
    for entry in config.devices:
        listener = _settings_listener(config, entry) if config.source else None
        built.append((entry, build_device(entry, config.mode, listener)))
    return built


def _settings_listener(config: ServerConfig, entry: DeviceConfig) -> Callable[[Any], None]:
    def persist(device: Any) -> None:
        settings = getattr(device, "settings", None)
        if isinstance(settings, IOptronSettings):
            entry.connection = connection_from_ioptron(settings)
        try:
            save_config(config)
        except ConfigError as e:
            logger.error("Could not persist setup change", device=device.label, error=str(e))

    return persist


# =============================================================================
# Sample file
# =============================================================================


SAMPLE_CONFIG = """\
// alpacapi configuration (JSON with // comments)
{
  // HTTP port for the Alpaca REST API and setup pages
  "port": 6800,
  "host": "0.0.0.0",

  // "hardware" talks to real instruments, "digital_twin" simulates them
  "mode": "digital_twin",

  "discovery": {"enabled": true, "port": 32227},

  // Reported by /management/v1/description
  "server": {"name": "AlpacaPi", "manufacturer": "alpacapi", "location": "Backyard"},

  "logging": {"level": "INFO", "json": false},

  "devices": [
    {
      "type": "telescope",
      "driver": "ioptron",
      "name": "CEM60",
      // serial: "path" (auto-detected when omitted) and "baud_rate"
      // tcp: "host" and "port" (4030 on most mounts, 8899 on the HEM27)
      "connection": {"kind": "serial", "path": "/dev/ttyUSB0", "baud_rate": 115200},
      "poll_interval": 1.0,
      "auto_connect": true
    },
    {"type": "focuser", "driver": "twin", "name": "Focuser", "auto_connect": true},
    {"type": "switch", "driver": "twin", "name": "Power box", "auto_connect": true},
    {"type": "safetymonitor", "driver": "twin", "name": "Weather", "auto_connect": true},
  ]
}
"""


def sample_config() -> str:
    return SAMPLE_CONFIG


__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigError",
    "ConnectionConfig",
    "DRIVERS",
    "DeviceConfig",
    "DiscoveryConfig",
    "DriverMode",
    "LoggingConfig",
    "ServerConfig",
    "ServerDescription",
    "build_device",
    "build_devices",
    "default_config",
    "load_config",
    "parse_config",
    "sample_config",
    "save_config",
    "strip_jsonc_comments",
]
