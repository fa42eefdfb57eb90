"""Digital twin drivers for running the server without hardware."""

from alpacapi.drivers.twin.focuser import TwinFocuser
from alpacapi.drivers.twin.ioptron_mount import IOptronMountSimulator, SimulatedSite
from alpacapi.drivers.twin.safety_monitor import TwinSafetyMonitor
from alpacapi.drivers.twin.switch import TwinSwitch, default_channels
from alpacapi.drivers.twin.telescope import TwinTelescope

__all__ = [
    "IOptronMountSimulator",
    "SimulatedSite",
    "TwinFocuser",
    "TwinSafetyMonitor",
    "TwinSwitch",
    "TwinTelescope",
    "default_channels",
]
