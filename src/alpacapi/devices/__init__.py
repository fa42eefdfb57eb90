"""Device layer: base device, capability layers per type, and the registry.

Example:
    from alpacapi.devices import DeviceRegistry
    from alpacapi.drivers.twin import TwinFocuser

    with DeviceRegistry() as registry:
        registry.register_device(TwinFocuser("Focuser"))
        registry.start()
        result = registry.dispatch("focuser", 0, "position")
"""

from alpacapi.devices.base import AlpacaDevice, SetupField, alpaca_get, alpaca_put
from alpacapi.devices.focuser import Focuser, FocuserActivity
from alpacapi.devices.registry import (
    DeviceAlreadyRegisteredError,
    DeviceRegistry,
    DispatchResult,
    get_registry,
    init_registry,
    shutdown_registry,
)
from alpacapi.devices.safety_monitor import SafetyMonitor
from alpacapi.devices.switch import Switch, SwitchChannel
from alpacapi.devices.telescope import (
    DriveRate,
    MountActivity,
    MountStatus,
    PierSide,
    Telescope,
    TelescopeAxis,
)
from alpacapi.devices.types import ConnectionState, DeviceType

__all__ = [
    "AlpacaDevice",
    "ConnectionState",
    "DeviceAlreadyRegisteredError",
    "DeviceRegistry",
    "DeviceType",
    "DispatchResult",
    "DriveRate",
    "Focuser",
    "FocuserActivity",
    "MountActivity",
    "MountStatus",
    "PierSide",
    "SafetyMonitor",
    "SetupField",
    "Switch",
    "SwitchChannel",
    "Telescope",
    "TelescopeAxis",
    "alpaca_get",
    "alpaca_put",
    "get_registry",
    "init_registry",
    "shutdown_registry",
]
