"""Device registry: lookup, dispatch and polling-thread lifecycle.

The registry maps (DeviceType, device number) to device instances. It is
the only path from the HTTP layer to a device: ``dispatch()`` locates the
instance, takes its lock, invokes the handler, and converts whatever
happens into (value, ErrorNumber, ErrorMessage). It never raises.

Lifecycle:
    registry = DeviceRegistry()
    registry.register_device(telescope)          # number 0
    registry.register_device(IOptronTelescope(...))  # number 1
    registry.start()      # one polling thread per device
    ...
    registry.shutdown()   # stop loops, join, then release transports

Example:
    with DeviceRegistry() as registry:
        registry.register_device(TwinFocuser("Focuser"))
        result = registry.dispatch("focuser", 0, "position")
        print(result.value, result.error_number)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from alpacapi.alpaca.errors import (
    AlpacaError,
    AlpacaErrorCode,
    DeviceNotFoundError,
)
from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.devices.base import AlpacaDevice
from alpacapi.devices.types import DeviceType
from alpacapi.observability import get_logger

logger = get_logger(__name__)

#: Seconds to wait for each polling thread at shutdown.
THREAD_JOIN_TIMEOUT: float = 5.0


class DeviceAlreadyRegisteredError(ValueError):
    """Raised when (type, number) is already taken."""


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one dispatch, ready for the response encoder."""

    value: Any = None
    error_number: int = 0
    error_message: str = ""

    @property
    def ok(self) -> bool:
        return self.error_number == 0


class DeviceRegistry:
    """Owns all device instances and their polling threads.

    Thread Safety:
        Registration and lookup are guarded by an internal lock. Device
        state is guarded by each device's own lock, taken in dispatch().
    """

    def __init__(self) -> None:
        self._devices: dict[tuple[DeviceType, int], AlpacaDevice] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._started = False

    # -- registration ------------------------------------------------------

    def register_device(
        self, device: AlpacaDevice, device_number: int | None = None
    ) -> AlpacaDevice:
        """Add a device under its type.

        Args:
            device: Instance to register.
            device_number: Explicit number. The next free number for the
                device's type is used when None.

        Returns:
            The registered device, with ``device_number`` set.

        Raises:
            DeviceAlreadyRegisteredError: If (type, number) is taken.
            ValueError: If device_number is negative.
        """
        device_type = device.device_type
        with self._lock:
            if device_number is None:
                taken = {n for t, n in self._devices if t is device_type}
                device_number = 0
                while device_number in taken:
                    device_number += 1
            if device_number < 0:
                raise ValueError(f"Device number must be >= 0, got {device_number}")
            key = (device_type, device_number)
            if key in self._devices:
                raise DeviceAlreadyRegisteredError(
                    f"{device_type.display_name} {device_number} is already registered"
                )
            device.device_number = device_number
            self._devices[key] = device
            if self._started:
                self._start_thread(device)

        logger.info(
            "Device registered",
            device=device.label,
            name=device.name,
            driver=type(device).__name__,
        )
        return device

    def get(self, device_type: DeviceType | str, device_number: int) -> AlpacaDevice:
        """Look up a device.

        Raises:
            DeviceNotFoundError: For unknown types or unregistered numbers.
        """
        if isinstance(device_type, str):
            try:
                device_type = DeviceType.parse(device_type)
            except ValueError:
                raise DeviceNotFoundError(f"Unknown device type {device_type!r}") from None
        with self._lock:
            device = self._devices.get((device_type, device_number))
        if device is None:
            raise DeviceNotFoundError(
                f"No {device_type.display_name} with number {device_number}"
            )
        return device

    def has(self, device_type: DeviceType | str, device_number: int) -> bool:
        try:
            self.get(device_type, device_number)
        except DeviceNotFoundError:
            return False
        return True

    def devices(self) -> list[AlpacaDevice]:
        """All devices ordered by type then number."""
        with self._lock:
            items = sorted(self._devices.items(), key=lambda kv: (kv[0][0].value, kv[0][1]))
        return [device for _, device in items]

    def configured_devices(self) -> list[dict[str, Any]]:
        """Entries for /management/v1/configureddevices."""
        return [device.info() for device in self.devices()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    # -- dispatch ----------------------------------------------------------

    def dispatch(
        self,
        device_type: DeviceType | str,
        device_number: int,
        action: str,
        params: CaseInsensitiveParams | None = None,
        method: str = "GET",
    ) -> DispatchResult:
        """Run one request against one device. Never raises.

        Returns:
            DispatchResult with ErrorNumber 0 on success; DEVICE_NOT_FOUND
            for unknown targets; the handler's AlpacaError code otherwise;
            DRIVER_ERROR for unexpected exceptions.
        """
        try:
            device = self.get(device_type, device_number)
        except DeviceNotFoundError as e:
            return DispatchResult(None, e.error_number, e.message)

        try:
            with device.lock:
                value = device.handle(method, action, params)
        except AlpacaError as e:
            logger.info(
                "Request failed",
                device=device.label,
                method=method,
                action=action,
                error_number=e.error_number,
                error=e.message,
            )
            return DispatchResult(None, e.error_number, e.message)
        except Exception as e:
            logger.error(
                "Unhandled driver exception",
                device=device.label,
                method=method,
                action=action,
                exc_info=True,
            )
            return DispatchResult(
                None,
                int(AlpacaErrorCode.DRIVER_ERROR),
                f"{type(e).__name__}: {e}",
            )
        return DispatchResult(value)

    # -- lifecycle ---------------------------------------------------------

    def _start_thread(self, device: AlpacaDevice) -> None:
        thread = threading.Thread(
            target=device.run_poll_loop,
            args=(self._stop_event,),
            name=f"poll-{device.label}",
            daemon=True,
        )
        self._threads.append(thread)
        thread.start()

    def start(self) -> None:
        """Spawn one polling thread per registered device."""
        with self._lock:
            if self._started:
                return
            # Threads left over from a timed-out shutdown keep the old event.
            self._stop_event = threading.Event()
            self._started = True
            for device in self._devices.values():
                self._start_thread(device)
        logger.info("Registry started", devices=len(self._threads))

    @property
    def running(self) -> bool:
        return self._started

    def shutdown(self) -> None:
        """Stop every loop, join them, then release every transport."""
        with self._lock:
            threads, self._threads = self._threads, []
            self._started = False
            devices = list(self._devices.values())
        self._stop_event.set()

        for thread in threads:
            thread.join(timeout=THREAD_JOIN_TIMEOUT)
            if thread.is_alive():
                logger.warning("Polling thread did not stop", thread=thread.name)

        for device in devices:
            device.disconnect()
        logger.info("Registry shut down", devices=len(devices))

    def __enter__(self) -> DeviceRegistry:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"<DeviceRegistry(devices={len(self)}, running={self._started})>"


# =============================================================================
# Module-level convenience (optional singleton pattern)
# =============================================================================

_default_registry: DeviceRegistry | None = None


def init_registry() -> DeviceRegistry:
    """Create the process-wide registry used by the server entry point."""
    global _default_registry
    _default_registry = DeviceRegistry()
    return _default_registry


def get_registry() -> DeviceRegistry:
    """Return the registry created by init_registry().

    Raises:
        RuntimeError: If init_registry() has not been called.
    """
    if _default_registry is None:
        raise RuntimeError("Registry not initialized. Call init_registry() first.")
    return _default_registry


def shutdown_registry() -> None:
    """Shut down and forget the process-wide registry. No-op when unset."""
    global _default_registry
    if _default_registry is not None:
        _default_registry.shutdown()
        _default_registry = None


__all__ = [
    "DeviceAlreadyRegisteredError",
    "DeviceRegistry",
    "DispatchResult",
    "get_registry",
    "init_registry",
    "shutdown_registry",
]
