"""Instrument drivers.

Hardware:
    IOptronTelescope   iOptron CEM/GEM/HEM mounts over serial or Ethernet

Digital twins (``alpacapi.drivers.twin``):
    TwinTelescope, TwinFocuser, TwinSwitch, TwinSafetyMonitor
"""

from alpacapi.drivers.ioptron import (
    IOptronConnectionKind,
    IOptronSettings,
    IOptronTelescope,
)

__all__ = [
    "IOptronConnectionKind",
    "IOptronSettings",
    "IOptronTelescope",
]
