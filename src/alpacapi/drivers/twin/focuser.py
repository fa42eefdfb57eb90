"""Digital twin focuser.

Moves toward its target by ``steps_per_poll`` on every polling
iteration, so IsMoving stays true for a realistic number of polls.
"""

from __future__ import annotations

from typing import Any

from alpacapi.alpaca.errors import TransportError
from alpacapi.devices.focuser import Focuser, FocuserActivity
from alpacapi.observability import get_logger

logger = get_logger(__name__)

DEFAULT_STEPS_PER_POLL = 500


class TwinFocuser(Focuser):
    temp_comp_available = True

    def __init__(
        self,
        name: str,
        steps_per_poll: int = DEFAULT_STEPS_PER_POLL,
        temperature: float = 12.5,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("description", "Simulated absolute focuser")
        kwargs.setdefault("driver_info", "alpacapi digital twin focuser")
        kwargs.setdefault("step_size", 4.0)
        super().__init__(name, **kwargs)
        self.steps_per_poll = steps_per_poll
        self.reachable = True
        self.status.temperature = temperature
        self.status.position = self.max_step // 2
        self.status.target = self.status.position

    def open_transport(self) -> None:
        if not self.reachable:
            raise TransportError("Simulated focuser is unreachable")

    def poll(self) -> None:
        status = self.status
        if status.activity is not FocuserActivity.MOVING:
            return
        remaining = status.target - status.position
        step = max(-self.steps_per_poll, min(self.steps_per_poll, remaining))
        status.position += step
        if status.position == status.target:
            status.activity = FocuserActivity.IDLE
            logger.debug("Focuser arrived", device=self.label, position=status.position)

    def _do_move(self, target: int) -> None:
        logger.debug("Focuser move", device=self.label, target=target)

    def _do_halt(self) -> None:
        logger.debug("Focuser halt", device=self.label, position=self.status.position)


__all__ = ["TwinFocuser"]
