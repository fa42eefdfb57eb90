"""Digital twin telescope: the iOptron driver wired to the simulator."""

from __future__ import annotations

from typing import Any

from alpacapi.drivers.ioptron import IOptronSettings, IOptronTelescope
from alpacapi.drivers.twin.ioptron_mount import (
    DEFAULT_SLEW_SECONDS,
    IOptronMountSimulator,
)
from alpacapi.protocol.transport import Transport


class TwinTelescope(IOptronTelescope):
    """IOptronTelescope whose transport is an in-process simulator.

    The simulator survives reconnects so mount state persists across a
    disconnect, like a real mount that stays powered.
    """

    def __init__(
        self,
        name: str,
        slew_seconds: float = DEFAULT_SLEW_SECONDS,
        simulator: IOptronMountSimulator | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("description", "Simulated iOptron mount")
        kwargs.setdefault("driver_info", "alpacapi digital twin telescope")
        self.simulator = simulator or IOptronMountSimulator(slew_seconds=slew_seconds)
        super().__init__(
            name,
            settings=kwargs.pop("settings", None) or IOptronSettings(),
            transport_factory=self._simulator_transport,
            **kwargs,
        )

    def _simulator_transport(self, settings: IOptronSettings) -> Transport:
        return self.simulator


__all__ = ["TwinTelescope"]
