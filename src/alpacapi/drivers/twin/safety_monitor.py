"""Digital twin safety monitor. Reports safe unless told otherwise."""

from __future__ import annotations

from typing import Any

from alpacapi.devices.safety_monitor import SafetyMonitor
from alpacapi.observability import get_logger

logger = get_logger(__name__)


class TwinSafetyMonitor(SafetyMonitor):
    supported_actions = ("setsafe",)

    def __init__(self, name: str, **kwargs: Any) -> None:
        kwargs.setdefault("description", "Simulated weather safety monitor")
        kwargs.setdefault("driver_info", "alpacapi digital twin safety monitor")
        super().__init__(name, **kwargs)
        self.is_safe = True

    def run_action(self, action_name: str, parameters: str) -> str:
        # Lets clients script unsafe conditions: Action=setsafe Parameters=false
        if action_name.lower() != "setsafe":
            return super().run_action(action_name, parameters)
        self.is_safe = parameters.strip().lower() in ("1", "true", "yes", "on")
        logger.info("Simulated safety changed", device=self.label, safe=self.is_safe)
        return str(self.is_safe)


__all__ = ["TwinSafetyMonitor"]
