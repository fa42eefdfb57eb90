"""Safety monitor capability layer (ASCOM ISafetyMonitor)."""

from __future__ import annotations

from typing import Any, ClassVar

from alpacapi.devices.base import AlpacaDevice, alpaca_get
from alpacapi.devices.types import DeviceType


class SafetyMonitor(AlpacaDevice):
    device_type: ClassVar[DeviceType] = DeviceType.SAFETY_MONITOR
    interface_version: ClassVar[int] = 3

    def __init__(self, name: str, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.is_safe = False

    def device_state(self) -> dict[str, Any]:
        return {"IsSafe": self.is_safe}

    @alpaca_get("issafe", requires_connection=False)
    def get_issafe(self) -> bool:
        # A disconnected monitor must report unsafe rather than fail.
        return self.connected and self.is_safe


__all__ = ["SafetyMonitor"]
