"""Base class for every Alpaca device instance.

An ``AlpacaDevice`` owns:
- identity (type, number, name, unique id, driver info)
- one re-entrant lock shared by request handlers and the polling loop
- the connection state machine (DISCONNECTED -> CONNECTING -> CONNECTED)
- a capability table mapping (HTTP method, action) to handler methods

Capability table:
    Handlers are ordinary methods marked with ``@alpaca_get`` or
    ``@alpaca_put``. The table is built per class when it is defined, so a
    subclass inherits every route of its parents and may override the
    method behind a route without re-decorating it.

        class Focuser(AlpacaDevice):
            @alpaca_get("position")
            def get_position(self) -> int:
                return self._position

            @alpaca_put("move")
            def put_move(self, params: CaseInsensitiveParams) -> None:
                self._start_move(params.get_int("Position"))

    Handlers that declare a ``params`` argument receive the request's
    case-insensitive parameter map. Routes require a connected device
    unless declared with ``requires_connection=False``.

Polling:
    ``run_poll_loop`` is the body of the per-device thread the registry
    starts. Each iteration runs under the device lock: when connected it
    calls the driver's ``poll()`` hook; when the device should be connected
    but is not, it retries with exponential back-off. Repeated failures
    drop the link instead of killing the thread.

Driver hooks:
    open_transport / close_transport   link management
    poll                               status refresh and queued commands
    device_state                       values for the DeviceState member
    setup_fields / apply_setup         the driver's setup form
"""

from __future__ import annotations

import inspect
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar, TypeVar

from alpacapi import __version__
from alpacapi.alpaca.errors import (
    ActionNotImplementedError,
    AlpacaError,
    DriverError,
    NotConnectedError,
    NotImplementedAlpacaError,
)
from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.devices.types import ConnectionState, DeviceType
from alpacapi.observability import CommStats, get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

#: Default seconds between polling iterations.
DEFAULT_POLL_INTERVAL: float = 1.0

#: Consecutive failures tolerated before the link is dropped.
DEFAULT_MAX_CONSECUTIVE_FAILURES: int = 5

INITIAL_RECONNECT_DELAY: float = 1.0
MAX_RECONNECT_DELAY: float = 30.0

_UNIQUE_ID_NAMESPACE = uuid.UUID("8f1d6c52-4a43-4e55-9c1a-5f3b9d2e7a10")


# =============================================================================
# Capability table
# =============================================================================


@dataclass(frozen=True)
class _Route:
    method_name: str
    requires_connection: bool
    takes_params: bool


def _mark(method: str, action: str, requires_connection: bool) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        routes = func.__dict__.setdefault("_alpaca_routes", [])
        routes.append((method, action.lower(), requires_connection))
        return func

    return decorator


def alpaca_get(action: str, requires_connection: bool = True) -> Callable[[F], F]:
    """Expose a method as ``GET /api/v1/{type}/{n}/{action}``."""
    return _mark("GET", action, requires_connection)


def alpaca_put(action: str, requires_connection: bool = True) -> Callable[[F], F]:
    """Expose a method as ``PUT /api/v1/{type}/{n}/{action}``."""
    return _mark("PUT", action, requires_connection)


def _takes_params(func: Callable[..., Any]) -> bool:
    return len(inspect.signature(func).parameters) > 1


# =============================================================================
# Setup form description
# =============================================================================


@dataclass
class SetupField:
    """One input on a driver's setup page.

    Attributes:
        name: Form keyword submitted back to ``apply_setup``.
        label: Text shown next to the input.
        value: Current value.
        kind: "text", "number" or "radio".
        choices: (value, label) pairs for radio inputs.
    """

    name: str
    label: str
    value: Any
    kind: str = "text"
    choices: list[tuple[str, str]] = field(default_factory=list)


# =============================================================================
# Device base
# =============================================================================


class AlpacaDevice:
    """Common identity, connection state machine, and ASCOM members."""

    device_type: ClassVar[DeviceType]
    interface_version: ClassVar[int] = 1
    driver_version: ClassVar[str] = __version__
    supported_actions: ClassVar[tuple[str, ...]] = ()
    _routes: ClassVar[dict[tuple[str, str], _Route]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        routes: dict[tuple[str, str], _Route] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, attr in vars(klass).items():
                for method, action, requires in getattr(attr, "_alpaca_routes", ()):
                    routes[(method, action)] = _Route(
                        attr_name, requires, _takes_params(attr)
                    )
        cls._routes = routes

    def __init__(
        self,
        name: str,
        description: str = "",
        driver_info: str = "",
        unique_id: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        auto_connect: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a disconnected device.

        Args:
            name: Name reported by the Name member.
            description: Description member text.
            driver_info: DriverInfo member text.
            unique_id: Stable id for management listings. Derived from
                type, number and name when omitted.
            poll_interval: Seconds between polling iterations.
            max_consecutive_failures: Failures before the link is dropped.
            auto_connect: Connect from the polling loop once started.
            clock: Monotonic clock, injected for back-off tests.
        """
        self.name = name
        self.description = description or name
        self.driver_info = driver_info or f"alpacapi {type(self).__name__}"
        self._unique_id = unique_id
        self.device_number = 0
        self.poll_interval = poll_interval
        self.max_consecutive_failures = max_consecutive_failures

        self.lock = threading.RLock()
        self.comm_stats = CommStats(device=name)
        self.last_error: str | None = None

        self._state = ConnectionState.DISCONNECTED
        self._want_connected = auto_connect
        self._poll_failures = 0
        self._clock = clock
        self._reconnect_delay = INITIAL_RECONNECT_DELAY
        self._next_attempt = 0.0

    # -- identity ----------------------------------------------------------

    @property
    def label(self) -> str:
        return f"{self.device_type.value}/{self.device_number}"

    @property
    def unique_id(self) -> str:
        if self._unique_id:
            return self._unique_id
        return str(uuid.uuid5(_UNIQUE_ID_NAMESPACE, f"{self.label}/{self.name}"))

    def info(self) -> dict[str, Any]:
        """Entry for /management/v1/configureddevices."""
        return {
            "DeviceName": self.name,
            "DeviceType": self.device_type.display_name,
            "DeviceNumber": self.device_number,
            "UniqueID": self.unique_id,
        }

    # -- connection state machine -----------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def want_connected(self) -> bool:
        return self._want_connected

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(
                "Connection state change",
                device=self.label,
                old=self._state.value,
                new=state.value,
            )
            self._state = state

    def connect(self) -> None:
        """Open the link synchronously.

        Raises:
            AlpacaError: If the link could not be opened. The device is
                left DISCONNECTED and the polling loop will retry.
        """
        with self.lock:
            self._want_connected = True
            if self._state is ConnectionState.CONNECTED:
                return
            self._set_state(ConnectionState.CONNECTING)
            try:
                self.open_transport()
            except AlpacaError as e:
                self._fail_connect(e)
                raise
            except Exception as e:
                error = DriverError(f"Connect failed: {e}")
                self._fail_connect(error)
                raise error from e

            self._poll_failures = 0
            self.comm_stats.reset_consecutive()
            self._reconnect_delay = INITIAL_RECONNECT_DELAY
            self._next_attempt = 0.0
            self.last_error = None
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Device connected", device=self.label, name=self.name)

    def request_connect(self) -> None:
        """Ask the polling loop to connect on its next iteration."""
        with self.lock:
            self._want_connected = True
            self._next_attempt = 0.0
            if self._state is ConnectionState.DISCONNECTED:
                self._set_state(ConnectionState.CONNECTING)

    def disconnect(self) -> None:
        """Close the link. Valid in any state, always ends DISCONNECTED."""
        with self.lock:
            self._want_connected = False
            was = self._state
            self._release_transport()
            self._set_state(ConnectionState.DISCONNECTED)
            if was is not ConnectionState.DISCONNECTED:
                logger.info("Device disconnected", device=self.label)

    def _fail_connect(self, error: AlpacaError) -> None:
        self._release_transport()
        self.last_error = error.message
        self._set_state(ConnectionState.DISCONNECTED)
        self._next_attempt = self._clock() + self._reconnect_delay
        logger.warning(
            "Connect failed",
            device=self.label,
            error=error.message,
            retry_in_s=self._reconnect_delay,
        )
        self._reconnect_delay = min(self._reconnect_delay * 2, MAX_RECONNECT_DELAY)

    def _drop_connection(self) -> None:
        """Link considered dead: release it, let the loop reconnect."""
        logger.error(
            "Too many consecutive failures, dropping connection",
            device=self.label,
            failures=self._failure_streak(),
            last_error=self.last_error,
        )
        self._release_transport()
        self._set_state(ConnectionState.DISCONNECTED)
        self._next_attempt = self._clock() + self._reconnect_delay

    def _release_transport(self) -> None:
        try:
            self.close_transport()
        except Exception as e:
            logger.warning("Error releasing transport", device=self.label, error=str(e))

    # -- polling -----------------------------------------------------------

    def _failure_streak(self) -> int:
        return max(self._poll_failures, self.comm_stats.consecutive_failures)

    def poll_once(self) -> None:
        """One polling iteration, under the device lock."""
        with self.lock:
            if self._state is ConnectionState.CONNECTED:
                try:
                    self.poll()
                    self._poll_failures = 0
                except AlpacaError as e:
                    self._poll_failures += 1
                    self.last_error = e.message
                    logger.warning(
                        "Poll failed",
                        device=self.label,
                        error=e.message,
                        failures=self._poll_failures,
                    )
                except Exception as e:
                    self._poll_failures += 1
                    self.last_error = str(e)
                    logger.error(
                        "Unexpected poll error", device=self.label, exc_info=True
                    )
                if self._failure_streak() >= self.max_consecutive_failures:
                    self._drop_connection()
            elif self._want_connected and self._clock() >= self._next_attempt:
                try:
                    self.connect()
                except AlpacaError:
                    # Already logged and scheduled by _fail_connect.
                    pass

    def run_poll_loop(self, stop_event: threading.Event) -> None:
        """Thread body: poll until ``stop_event`` is set."""
        logger.debug("Polling loop started", device=self.label)
        while not stop_event.is_set():
            self.poll_once()
            stop_event.wait(self.poll_interval)
        logger.debug("Polling loop stopped", device=self.label)

    # -- dispatch ----------------------------------------------------------

    def handle(
        self,
        method: str,
        action: str,
        params: CaseInsensitiveParams | None = None,
    ) -> Any:
        """Invoke the handler for (method, action).

        The caller holds ``self.lock``.

        Raises:
            ActionNotImplementedError: No route with this action name.
            NotImplementedAlpacaError: Action exists for the other method.
            NotConnectedError: Route needs a connection and there is none.
            AlpacaError: Whatever the handler raises.
        """
        method = method.upper()
        action = action.lower()
        route = self._routes.get((method, action))
        if route is None:
            if any(known == action for _, known in self._routes):
                raise NotImplementedAlpacaError(
                    f"{method} is not supported for {action}"
                )
            raise ActionNotImplementedError(
                f"{action} is not implemented by {self.device_type.display_name}"
            )
        if route.requires_connection and not self.connected:
            raise NotConnectedError(f"{self.name} is not connected")
        handler = getattr(self, route.method_name)
        if route.takes_params:
            return handler(params if params is not None else CaseInsensitiveParams())
        return handler()

    def has_route(self, method: str, action: str) -> bool:
        return (method.upper(), action.lower()) in self._routes

    # -- driver hooks ------------------------------------------------------

    def open_transport(self) -> None:
        """Open the instrument link. Raise an AlpacaError on failure."""

    def close_transport(self) -> None:
        """Release the instrument link. Called in any state."""

    def poll(self) -> None:
        """Refresh cached status and send queued commands."""

    def device_state(self) -> dict[str, Any]:
        """Operational values for the DeviceState member."""
        return {}

    def setup_fields(self) -> list[SetupField]:
        return []

    def apply_setup(self, form: CaseInsensitiveParams) -> list[str]:
        """Apply submitted setup values, returning messages for the page."""
        return []

    def run_action(self, action_name: str, parameters: str) -> str:
        raise ActionNotImplementedError(f"Action {action_name!r} is not supported")

    # =========================================================================
    # Common ASCOM members
    # =========================================================================

    @alpaca_get("connected", requires_connection=False)
    def get_connected(self) -> bool:
        return self.connected

    @alpaca_put("connected", requires_connection=False)
    def put_connected(self, params: CaseInsensitiveParams) -> None:
        if params.get_bool("Connected"):
            self.connect()
        else:
            self.disconnect()

    @alpaca_get("connecting", requires_connection=False)
    def get_connecting(self) -> bool:
        return self._state is ConnectionState.CONNECTING

    @alpaca_put("connect", requires_connection=False)
    def put_connect(self) -> None:
        self.request_connect()

    @alpaca_put("disconnect", requires_connection=False)
    def put_disconnect(self) -> None:
        self.disconnect()

    @alpaca_get("name", requires_connection=False)
    def get_name(self) -> str:
        return self.name

    @alpaca_get("description", requires_connection=False)
    def get_description(self) -> str:
        return self.description

    @alpaca_get("driverinfo", requires_connection=False)
    def get_driverinfo(self) -> str:
        return self.driver_info

    @alpaca_get("driverversion", requires_connection=False)
    def get_driverversion(self) -> str:
        return self.driver_version

    @alpaca_get("interfaceversion", requires_connection=False)
    def get_interfaceversion(self) -> int:
        return self.interface_version

    @alpaca_get("supportedactions", requires_connection=False)
    def get_supportedactions(self) -> list[str]:
        return list(self.supported_actions)

    @alpaca_get("devicestate")
    def get_devicestate(self) -> list[dict[str, Any]]:
        values = dict(self.device_state())
        values["TimeStamp"] = datetime.now(UTC).isoformat()
        return [{"Name": key, "Value": value} for key, value in values.items()]

    @alpaca_put("action")
    def put_action(self, params: CaseInsensitiveParams) -> str:
        return self.run_action(
            params.get_str("Action"), params.get("Parameters", "")
        )

    @alpaca_put("commandblind")
    def put_commandblind(self) -> None:
        raise NotImplementedAlpacaError("CommandBlind is not supported")

    @alpaca_put("commandbool")
    def put_commandbool(self) -> bool:
        raise NotImplementedAlpacaError("CommandBool is not supported")

    @alpaca_put("commandstring")
    def put_commandstring(self) -> str:
        raise NotImplementedAlpacaError("CommandString is not supported")


__all__ = [
    "AlpacaDevice",
    "DEFAULT_MAX_CONSECUTIVE_FAILURES",
    "DEFAULT_POLL_INTERVAL",
    "SetupField",
    "alpaca_get",
    "alpaca_put",
]
