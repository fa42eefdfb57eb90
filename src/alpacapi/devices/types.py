"""Device type and connection state enumerations."""

from __future__ import annotations

from enum import Enum


class DeviceType(Enum):
    """The closed set of ASCOM device types.

    Values are the lowercase names used in URL paths. ``display_name`` is
    the casing used in management responses ("FilterWheel").
    """

    CAMERA = "camera"
    COVER_CALIBRATOR = "covercalibrator"
    DOME = "dome"
    FILTER_WHEEL = "filterwheel"
    FOCUSER = "focuser"
    OBSERVING_CONDITIONS = "observingconditions"
    ROTATOR = "rotator"
    SAFETY_MONITOR = "safetymonitor"
    SWITCH = "switch"
    TELESCOPE = "telescope"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, name: str) -> DeviceType:
        """Case-insensitive lookup by path or display name.

        Raises:
            ValueError: If ``name`` is not a known device type.
        """
        folded = name.strip().replace("_", "").replace("-", "").lower()
        try:
            return cls(folded)
        except ValueError:
            raise ValueError(f"Unknown device type {name!r}") from None


_DISPLAY_NAMES = {
    DeviceType.CAMERA: "Camera",
    DeviceType.COVER_CALIBRATOR: "CoverCalibrator",
    DeviceType.DOME: "Dome",
    DeviceType.FILTER_WHEEL: "FilterWheel",
    DeviceType.FOCUSER: "Focuser",
    DeviceType.OBSERVING_CONDITIONS: "ObservingConditions",
    DeviceType.ROTATOR: "Rotator",
    DeviceType.SAFETY_MONITOR: "SafetyMonitor",
    DeviceType.SWITCH: "Switch",
    DeviceType.TELESCOPE: "Telescope",
}


class ConnectionState(Enum):
    """Link state of a device instance.

    DISCONNECTED -> CONNECTING -> CONNECTED; a failed attempt returns to
    DISCONNECTED. ``disconnect()`` ends in DISCONNECTED from any state.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


__all__ = ["ConnectionState", "DeviceType"]
