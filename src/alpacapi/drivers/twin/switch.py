"""Digital twin switch bank: three relays and one dew heater PWM channel."""

from __future__ import annotations

from typing import Any

from alpacapi.devices.switch import Switch, SwitchChannel
from alpacapi.observability import get_logger

logger = get_logger(__name__)


def default_channels() -> list[SwitchChannel]:
    return [
        SwitchChannel("Mount power", "12V supply to the mount"),
        SwitchChannel("Camera power", "12V supply to the camera"),
        SwitchChannel("Flat panel", "Flat field light box"),
        SwitchChannel(
            "Dew heater", "Dew strap duty cycle in percent", maximum=100.0, step=1.0
        ),
        SwitchChannel(
            "Supply voltage",
            "Measured input voltage",
            value=12.6,
            maximum=15.0,
            step=0.1,
            writable=False,
        ),
    ]


class TwinSwitch(Switch):
    def __init__(
        self,
        name: str,
        channels: list[SwitchChannel] | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("description", "Simulated power switch")
        kwargs.setdefault("driver_info", "alpacapi digital twin switch")
        super().__init__(name, channels or default_channels(), **kwargs)

    def _do_write(self, index: int, value: float) -> None:
        logger.info(
            "Switch set",
            device=self.label,
            channel=self.channels[index].name,
            value=value,
        )


__all__ = ["TwinSwitch", "default_channels"]
