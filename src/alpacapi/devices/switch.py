"""Switch capability layer (ASCOM ISwitch).

A switch device exposes ``MaxSwitch`` channels addressed by Id 0..n-1.
Boolean channels have range 0..1 step 1; analogue channels (dew heater
PWM, for example) carry their own min/max/step.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from alpacapi.alpaca.errors import InvalidValueError, NotImplementedAlpacaError
from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.devices.base import AlpacaDevice, alpaca_get, alpaca_put
from alpacapi.devices.types import DeviceType


@dataclass
class SwitchChannel:
    """One switch channel.

    Attributes:
        name: Channel name (writable via SetSwitchName).
        description: Longer text for clients.
        value: Current value within minimum..maximum.
        minimum: Lowest value.
        maximum: Highest value.
        step: Value granularity.
        writable: False for read-only sensors.
    """

    name: str
    description: str = ""
    value: float = 0.0
    minimum: float = 0.0
    maximum: float = 1.0
    step: float = 1.0
    writable: bool = True

    @property
    def state(self) -> bool:
        return self.value > self.minimum


class Switch(AlpacaDevice):
    """ASCOM Switch members over a list of channels."""

    device_type: ClassVar[DeviceType] = DeviceType.SWITCH
    interface_version: ClassVar[int] = 2

    def __init__(self, name: str, channels: list[SwitchChannel], **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        if not channels:
            raise ValueError("A switch device needs at least one channel")
        self.channels = channels

    # -- driver hooks ------------------------------------------------------

    def _do_write(self, index: int, value: float) -> None:
        """Drive the output. Called before the cached value is updated."""

    def device_state(self) -> dict[str, Any]:
        return {
            f"GetSwitchValue{index}": channel.value
            for index, channel in enumerate(self.channels)
        }

    # -- helpers -----------------------------------------------------------

    def _channel(self, params: CaseInsensitiveParams) -> tuple[int, SwitchChannel]:
        index = params.get_int("Id")
        if not 0 <= index < len(self.channels):
            raise InvalidValueError(f"Id {index} outside 0..{len(self.channels) - 1}")
        return index, self.channels[index]

    def _write(self, index: int, channel: SwitchChannel, value: float) -> None:
        if not channel.writable:
            raise NotImplementedAlpacaError(f"Switch {index} is read-only")
        if not channel.minimum <= value <= channel.maximum:
            raise InvalidValueError(
                f"Value {value} outside {channel.minimum}..{channel.maximum}"
            )
        self._do_write(index, value)
        channel.value = value

    # =========================================================================
    # Members
    # =========================================================================

    @alpaca_get("maxswitch")
    def get_maxswitch(self) -> int:
        return len(self.channels)

    @alpaca_get("canwrite")
    def get_canwrite(self, params: CaseInsensitiveParams) -> bool:
        return self._channel(params)[1].writable

    @alpaca_get("getswitch")
    def get_getswitch(self, params: CaseInsensitiveParams) -> bool:
        return self._channel(params)[1].state

    @alpaca_get("getswitchvalue")
    def get_getswitchvalue(self, params: CaseInsensitiveParams) -> float:
        return self._channel(params)[1].value

    @alpaca_get("getswitchname")
    def get_getswitchname(self, params: CaseInsensitiveParams) -> str:
        return self._channel(params)[1].name

    @alpaca_get("getswitchdescription")
    def get_getswitchdescription(self, params: CaseInsensitiveParams) -> str:
        return self._channel(params)[1].description

    @alpaca_get("minswitchvalue")
    def get_minswitchvalue(self, params: CaseInsensitiveParams) -> float:
        return self._channel(params)[1].minimum

    @alpaca_get("maxswitchvalue")
    def get_maxswitchvalue(self, params: CaseInsensitiveParams) -> float:
        return self._channel(params)[1].maximum

    @alpaca_get("switchstep")
    def get_switchstep(self, params: CaseInsensitiveParams) -> float:
        return self._channel(params)[1].step

    @alpaca_put("setswitch")
    def put_setswitch(self, params: CaseInsensitiveParams) -> None:
        index, channel = self._channel(params)
        on = params.get_bool("State")
        self._write(index, channel, channel.maximum if on else channel.minimum)

    @alpaca_put("setswitchvalue")
    def put_setswitchvalue(self, params: CaseInsensitiveParams) -> None:
        index, channel = self._channel(params)
        self._write(index, channel, params.get_float("Value"))

    @alpaca_put("setswitchname")
    def put_setswitchname(self, params: CaseInsensitiveParams) -> None:
        _, channel = self._channel(params)
        name = params.get_str("Name").strip()
        if not name:
            raise InvalidValueError("Name must not be empty")
        channel.name = name


__all__ = ["Switch", "SwitchChannel"]
