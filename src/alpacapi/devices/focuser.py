"""Focuser capability layer (ASCOM IFocuser)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from alpacapi.alpaca.errors import (
    InvalidOperationError,
    InvalidValueError,
    NotImplementedAlpacaError,
)
from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.devices.base import AlpacaDevice, alpaca_get, alpaca_put
from alpacapi.devices.types import DeviceType


class FocuserActivity(Enum):
    IDLE = "idle"
    MOVING = "moving"


@dataclass
class FocuserStatus:
    position: int = 0
    target: int = 0
    activity: FocuserActivity = FocuserActivity.IDLE
    temperature: float | None = None
    temp_comp: bool = False


class Focuser(AlpacaDevice):
    """ASCOM Focuser members.

    Absolute focusers accept Move(Position) in 0..MaxStep. Relative
    focusers accept a signed step count no larger than MaxIncrement.
    """

    device_type: ClassVar[DeviceType] = DeviceType.FOCUSER
    interface_version: ClassVar[int] = 3

    absolute: ClassVar[bool] = True
    temp_comp_available: ClassVar[bool] = False

    def __init__(
        self,
        name: str,
        max_step: int = 50000,
        max_increment: int | None = None,
        step_size: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        if max_step < 1:
            raise ValueError(f"max_step must be positive, got {max_step}")
        self.max_step = max_step
        self.max_increment = max_increment if max_increment is not None else max_step
        self.step_size = step_size
        self.status = FocuserStatus()

    # -- driver hooks ------------------------------------------------------

    def _do_move(self, target: int) -> None:
        raise NotImplementedAlpacaError("Move is not supported")

    def _do_halt(self) -> None:
        raise NotImplementedAlpacaError("Halt is not supported")

    def device_state(self) -> dict[str, Any]:
        return {
            "IsMoving": self.status.activity is FocuserActivity.MOVING,
            "Position": self.status.position,
            "Temperature": self.status.temperature,
        }

    # =========================================================================
    # Members
    # =========================================================================

    @alpaca_get("absolute")
    def get_absolute(self) -> bool:
        return self.absolute

    @alpaca_get("ismoving")
    def get_ismoving(self) -> bool:
        return self.status.activity is FocuserActivity.MOVING

    @alpaca_get("maxstep")
    def get_maxstep(self) -> int:
        return self.max_step

    @alpaca_get("maxincrement")
    def get_maxincrement(self) -> int:
        return self.max_increment

    @alpaca_get("position")
    def get_position(self) -> int:
        if not self.absolute:
            raise NotImplementedAlpacaError("Position is not available on a relative focuser")
        return self.status.position

    @alpaca_get("stepsize")
    def get_stepsize(self) -> float:
        if self.step_size is None:
            raise NotImplementedAlpacaError("StepSize is not known")
        return self.step_size

    @alpaca_get("temperature")
    def get_temperature(self) -> float:
        if self.status.temperature is None:
            raise NotImplementedAlpacaError("No temperature sensor")
        return self.status.temperature

    @alpaca_get("tempcompavailable")
    def get_tempcompavailable(self) -> bool:
        return self.temp_comp_available

    @alpaca_get("tempcomp")
    def get_tempcomp(self) -> bool:
        return self.status.temp_comp

    @alpaca_put("tempcomp")
    def put_tempcomp(self, params: CaseInsensitiveParams) -> None:
        enabled = params.get_bool("TempComp")
        if enabled and not self.temp_comp_available:
            raise NotImplementedAlpacaError("Temperature compensation is not available")
        self.status.temp_comp = enabled

    @alpaca_put("move")
    def put_move(self, params: CaseInsensitiveParams) -> None:
        if self.status.temp_comp:
            raise InvalidOperationError("Move is invalid while TempComp is on")
        requested = params.get_int("Position")
        if self.absolute:
            if not 0 <= requested <= self.max_step:
                raise InvalidValueError(
                    f"Position {requested} outside 0..{self.max_step}"
                )
            target = requested
        else:
            if abs(requested) > self.max_increment:
                raise InvalidValueError(
                    f"Step count {requested} exceeds MaxIncrement {self.max_increment}"
                )
            target = self.status.position + requested
        self._do_move(target)
        self.status.target = target
        if target != self.status.position:
            self.status.activity = FocuserActivity.MOVING

    @alpaca_put("halt")
    def put_halt(self) -> None:
        self._do_halt()
        self.status.target = self.status.position
        self.status.activity = FocuserActivity.IDLE


__all__ = ["Focuser", "FocuserActivity", "FocuserStatus"]
