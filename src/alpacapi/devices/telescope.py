"""Telescope capability layer.

Implements the ASCOM ITelescope members on top of ``AlpacaDevice``.
Handlers validate parameters, check capabilities and park state, then
call a small set of driver hooks (``_do_slew``, ``_do_park``, ...). Drivers
override only the hooks their mount supports and set the matching
``can_*`` class attributes.

Mount state lives in a ``MountStatus`` snapshot refreshed by the driver's
``poll()``. ``Slewing``, ``Tracking`` and ``AtPark`` are all derived from
one ``MountActivity`` value so they can never contradict each other.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any, ClassVar

from alpacapi.alpaca.errors import (
    InvalidValueError,
    InvalidWhileParkedError,
    NotImplementedAlpacaError,
    ValueNotSetError,
)
from alpacapi.alpaca.request import CaseInsensitiveParams
from alpacapi.devices.base import AlpacaDevice, alpaca_get, alpaca_put
from alpacapi.devices.types import DeviceType


class MountActivity(Enum):
    """What the mount is doing right now."""

    STOPPED = "stopped"
    TRACKING = "tracking"
    SLEWING = "slewing"
    GUIDING = "guiding"
    MERIDIAN_FLIP = "meridian_flip"
    TRACKING_PEC = "tracking_pec"
    PARKED = "parked"
    HOME = "home"
    HOMING = "homing"

    @property
    def is_slewing(self) -> bool:
        return self in (
            MountActivity.SLEWING,
            MountActivity.MERIDIAN_FLIP,
            MountActivity.HOMING,
        )

    @property
    def is_tracking(self) -> bool:
        return self in (
            MountActivity.TRACKING,
            MountActivity.GUIDING,
            MountActivity.TRACKING_PEC,
        )


class DriveRate(IntEnum):
    SIDEREAL = 0
    LUNAR = 1
    SOLAR = 2
    KING = 3


class PierSide(IntEnum):
    EAST = 0
    WEST = 1
    UNKNOWN = -1


class TelescopeAxis(IntEnum):
    PRIMARY = 0
    SECONDARY = 1
    TERTIARY = 2


class AlignmentMode(IntEnum):
    ALT_AZ = 0
    POLAR = 1
    GERMAN_POLAR = 2


class EquatorialSystem(IntEnum):
    OTHER = 0
    TOPOCENTRIC = 1
    J2000 = 2
    J2050 = 3
    B1950 = 4


@dataclass
class MountStatus:
    """Snapshot refreshed by the driver's poll()."""

    right_ascension: float = 0.0
    declination: float = 0.0
    activity: MountActivity = MountActivity.STOPPED
    tracking_rate: DriveRate = DriveRate.SIDEREAL
    side_of_pier: PierSide = PierSide.UNKNOWN
    site_latitude: float | None = None
    site_longitude: float | None = None
    site_elevation: float | None = None


class Telescope(AlpacaDevice):
    """ASCOM Telescope members with driver hooks."""

    device_type: ClassVar[DeviceType] = DeviceType.TELESCOPE
    interface_version: ClassVar[int] = 3

    alignment_mode: ClassVar[AlignmentMode] = AlignmentMode.GERMAN_POLAR
    equatorial_system: ClassVar[EquatorialSystem] = EquatorialSystem.TOPOCENTRIC
    can_slew: ClassVar[bool] = False
    can_slew_async: ClassVar[bool] = False
    can_sync: ClassVar[bool] = False
    can_park: ClassVar[bool] = False
    can_unpark: ClassVar[bool] = False
    can_set_park: ClassVar[bool] = False
    can_find_home: ClassVar[bool] = False
    can_set_tracking: ClassVar[bool] = False
    can_move_axes: ClassVar[tuple[TelescopeAxis, ...]] = ()
    max_axis_rate: ClassVar[float] = 0.0
    tracking_rates: ClassVar[tuple[DriveRate, ...]] = (DriveRate.SIDEREAL,)

    def __init__(self, name: str, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.status = MountStatus()
        self._target_ra: float | None = None
        self._target_dec: float | None = None
        self._resume_activity = MountActivity.STOPPED

    # -- activity ----------------------------------------------------------

    def _set_activity(self, activity: MountActivity) -> None:
        """Change activity, remembering what a motion interrupted."""
        current = self.status.activity
        if activity.is_slewing and not current.is_slewing:
            self._resume_activity = (
                current if current.is_tracking else MountActivity.STOPPED
            )
        self.status.activity = activity

    def _end_motion(self) -> None:
        if self.status.activity.is_slewing:
            self.status.activity = self._resume_activity

    # -- driver hooks ------------------------------------------------------

    def _do_slew(self, ra_hours: float, dec_degrees: float) -> None:
        raise NotImplementedAlpacaError("Slewing is not supported")

    def _do_sync(self, ra_hours: float, dec_degrees: float) -> None:
        raise NotImplementedAlpacaError("Sync is not supported")

    def _do_abort(self) -> None:
        raise NotImplementedAlpacaError("AbortSlew is not supported")

    def _do_park(self) -> None:
        raise NotImplementedAlpacaError("Park is not supported")

    def _do_unpark(self) -> None:
        raise NotImplementedAlpacaError("Unpark is not supported")

    def _do_set_park(self) -> None:
        raise NotImplementedAlpacaError("SetPark is not supported")

    def _do_find_home(self) -> None:
        raise NotImplementedAlpacaError("FindHome is not supported")

    def _do_move_axis(self, axis: TelescopeAxis, rate: float) -> None:
        raise NotImplementedAlpacaError("MoveAxis is not supported")

    def _do_set_tracking(self, enabled: bool) -> None:
        raise NotImplementedAlpacaError("Tracking cannot be changed")

    def _do_set_tracking_rate(self, rate: DriveRate) -> None:
        raise NotImplementedAlpacaError("TrackingRate cannot be changed")

    # -- helpers -----------------------------------------------------------

    @property
    def at_park(self) -> bool:
        return self.status.activity is MountActivity.PARKED

    def _ensure_not_parked(self, operation: str) -> None:
        if self.at_park:
            raise InvalidWhileParkedError(f"{operation} is invalid while parked")

    @staticmethod
    def _validate_ra(value: float) -> float:
        if not 0.0 <= value < 24.0:
            raise InvalidValueError(f"RightAscension {value} outside 0..24 hours")
        return value

    @staticmethod
    def _validate_dec(value: float) -> float:
        if not -90.0 <= value <= 90.0:
            raise InvalidValueError(f"Declination {value} outside -90..90 degrees")
        return value

    @staticmethod
    def _parse_axis(params: CaseInsensitiveParams) -> TelescopeAxis:
        raw = params.get_int("Axis")
        try:
            return TelescopeAxis(raw)
        except ValueError:
            raise InvalidValueError(f"Axis {raw} is not 0, 1 or 2") from None

    def _coordinates(self, params: CaseInsensitiveParams) -> tuple[float, float]:
        return (
            self._validate_ra(params.get_float("RightAscension")),
            self._validate_dec(params.get_float("Declination")),
        )

    def _target(self) -> tuple[float, float]:
        if self._target_ra is None or self._target_dec is None:
            raise ValueNotSetError("Target coordinates have not been set")
        return self._target_ra, self._target_dec

    def _slew(self, ra: float, dec: float, asynchronous: bool) -> None:
        if not (self.can_slew_async if asynchronous else self.can_slew):
            raise NotImplementedAlpacaError("Slewing is not supported")
        self._ensure_not_parked("Slew")
        self._target_ra, self._target_dec = ra, dec
        self._do_slew(ra, dec)
        self._set_activity(MountActivity.SLEWING)

    def _sync(self, ra: float, dec: float) -> None:
        if not self.can_sync:
            raise NotImplementedAlpacaError("Sync is not supported")
        self._ensure_not_parked("Sync")
        self._target_ra, self._target_dec = ra, dec
        self._do_sync(ra, dec)
        self.status.right_ascension, self.status.declination = ra, dec

    def device_state(self) -> dict[str, Any]:
        return {
            "AtHome": self.status.activity is MountActivity.HOME,
            "AtPark": self.at_park,
            "Declination": self.status.declination,
            "RightAscension": self.status.right_ascension,
            "SideOfPier": int(self.status.side_of_pier),
            "Slewing": self.status.activity.is_slewing,
            "Tracking": self.status.activity.is_tracking,
        }

    # =========================================================================
    # Position and state
    # =========================================================================

    @alpaca_get("rightascension")
    def get_rightascension(self) -> float:
        return self.status.right_ascension

    @alpaca_get("declination")
    def get_declination(self) -> float:
        return self.status.declination

    @alpaca_get("slewing")
    def get_slewing(self) -> bool:
        return self.status.activity.is_slewing

    @alpaca_get("tracking")
    def get_tracking(self) -> bool:
        return self.status.activity.is_tracking

    @alpaca_put("tracking")
    def put_tracking(self, params: CaseInsensitiveParams) -> None:
        if not self.can_set_tracking:
            raise NotImplementedAlpacaError("Tracking cannot be changed")
        enabled = params.get_bool("Tracking")
        self._ensure_not_parked("Tracking change")
        self._do_set_tracking(enabled)
        if not self.status.activity.is_slewing:
            self.status.activity = (
                MountActivity.TRACKING if enabled else MountActivity.STOPPED
            )

    @alpaca_get("trackingrate")
    def get_trackingrate(self) -> int:
        return int(self.status.tracking_rate)

    @alpaca_put("trackingrate")
    def put_trackingrate(self, params: CaseInsensitiveParams) -> None:
        raw = params.get_int("TrackingRate")
        try:
            rate = DriveRate(raw)
        except ValueError:
            raise InvalidValueError(f"TrackingRate {raw} is not a drive rate") from None
        if rate not in self.tracking_rates:
            raise InvalidValueError(f"TrackingRate {rate.name} is not supported")
        self._do_set_tracking_rate(rate)
        self.status.tracking_rate = rate

    @alpaca_get("trackingrates")
    def get_trackingrates(self) -> list[int]:
        return [int(rate) for rate in self.tracking_rates]

    @alpaca_get("atpark")
    def get_atpark(self) -> bool:
        return self.at_park

    @alpaca_get("athome")
    def get_athome(self) -> bool:
        return self.status.activity is MountActivity.HOME

    @alpaca_get("sideofpier")
    def get_sideofpier(self) -> int:
        return int(self.status.side_of_pier)

    @alpaca_get("alignmentmode")
    def get_alignmentmode(self) -> int:
        return int(self.alignment_mode)

    @alpaca_get("equatorialsystem")
    def get_equatorialsystem(self) -> int:
        return int(self.equatorial_system)

    @alpaca_get("rightascensionrate")
    def get_rightascensionrate(self) -> float:
        return 0.0

    @alpaca_get("declinationrate")
    def get_declinationrate(self) -> float:
        return 0.0

    @alpaca_get("doesrefraction")
    def get_doesrefraction(self) -> bool:
        return False

    @alpaca_get("ispulseguiding")
    def get_ispulseguiding(self) -> bool:
        return False

    @alpaca_get("slewsettletime")
    def get_slewsettletime(self) -> int:
        return 0

    @alpaca_get("utcdate")
    def get_utcdate(self) -> str:
        return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    @alpaca_get("altitude")
    def get_altitude(self) -> float:
        raise NotImplementedAlpacaError("Altitude is not available")

    @alpaca_get("azimuth")
    def get_azimuth(self) -> float:
        raise NotImplementedAlpacaError("Azimuth is not available")

    @alpaca_get("siderealtime")
    def get_siderealtime(self) -> float:
        raise NotImplementedAlpacaError("SiderealTime is not available")

    # -- site ----------------------------------------------------------------

    def _site_value(self, value: float | None, name: str) -> float:
        if value is None:
            raise ValueNotSetError(f"{name} has not been set")
        return value

    @alpaca_get("sitelatitude")
    def get_sitelatitude(self) -> float:
        return self._site_value(self.status.site_latitude, "SiteLatitude")

    @alpaca_put("sitelatitude")
    def put_sitelatitude(self, params: CaseInsensitiveParams) -> None:
        value = params.get_float("SiteLatitude")
        if not -90.0 <= value <= 90.0:
            raise InvalidValueError(f"SiteLatitude {value} outside -90..90")
        self.status.site_latitude = value

    @alpaca_get("sitelongitude")
    def get_sitelongitude(self) -> float:
        return self._site_value(self.status.site_longitude, "SiteLongitude")

    @alpaca_put("sitelongitude")
    def put_sitelongitude(self, params: CaseInsensitiveParams) -> None:
        value = params.get_float("SiteLongitude")
        if not -180.0 <= value <= 180.0:
            raise InvalidValueError(f"SiteLongitude {value} outside -180..180")
        self.status.site_longitude = value

    @alpaca_get("siteelevation")
    def get_siteelevation(self) -> float:
        return self._site_value(self.status.site_elevation, "SiteElevation")

    @alpaca_put("siteelevation")
    def put_siteelevation(self, params: CaseInsensitiveParams) -> None:
        value = params.get_float("SiteElevation")
        if not -300.0 <= value <= 10000.0:
            raise InvalidValueError(f"SiteElevation {value} outside -300..10000")
        self.status.site_elevation = value

    # =========================================================================
    # Targets, slews and syncs
    # =========================================================================

    @alpaca_get("targetrightascension")
    def get_targetrightascension(self) -> float:
        if self._target_ra is None:
            raise ValueNotSetError("TargetRightAscension has not been set")
        return self._target_ra

    @alpaca_put("targetrightascension")
    def put_targetrightascension(self, params: CaseInsensitiveParams) -> None:
        self._target_ra = self._validate_ra(params.get_float("TargetRightAscension"))

    @alpaca_get("targetdeclination")
    def get_targetdeclination(self) -> float:
        if self._target_dec is None:
            raise ValueNotSetError("TargetDeclination has not been set")
        return self._target_dec

    @alpaca_put("targetdeclination")
    def put_targetdeclination(self, params: CaseInsensitiveParams) -> None:
        self._target_dec = self._validate_dec(params.get_float("TargetDeclination"))

    @alpaca_put("slewtocoordinates")
    def put_slewtocoordinates(self, params: CaseInsensitiveParams) -> None:
        self._slew(*self._coordinates(params), asynchronous=False)

    @alpaca_put("slewtocoordinatesasync")
    def put_slewtocoordinatesasync(self, params: CaseInsensitiveParams) -> None:
        self._slew(*self._coordinates(params), asynchronous=True)

    @alpaca_put("slewtotarget")
    def put_slewtotarget(self) -> None:
        self._slew(*self._target(), asynchronous=False)

    @alpaca_put("slewtotargetasync")
    def put_slewtotargetasync(self) -> None:
        self._slew(*self._target(), asynchronous=True)

    @alpaca_put("synctocoordinates")
    def put_synctocoordinates(self, params: CaseInsensitiveParams) -> None:
        self._sync(*self._coordinates(params))

    @alpaca_put("synctotarget")
    def put_synctotarget(self) -> None:
        self._sync(*self._target())

    @alpaca_put("abortslew")
    def put_abortslew(self) -> None:
        self._ensure_not_parked("AbortSlew")
        self._do_abort()
        self._end_motion()

    @alpaca_put("slewtoaltaz")
    def put_slewtoaltaz(self) -> None:
        raise NotImplementedAlpacaError("SlewToAltAz is not supported")

    @alpaca_put("slewtoaltazasync")
    def put_slewtoaltazasync(self) -> None:
        raise NotImplementedAlpacaError("SlewToAltAzAsync is not supported")

    @alpaca_put("synctoaltaz")
    def put_synctoaltaz(self) -> None:
        raise NotImplementedAlpacaError("SyncToAltAz is not supported")

    @alpaca_put("pulseguide")
    def put_pulseguide(self) -> None:
        raise NotImplementedAlpacaError("PulseGuide is not supported")

    # =========================================================================
    # Park, home, manual motion
    # =========================================================================

    @alpaca_put("park")
    def put_park(self) -> None:
        if not self.can_park:
            raise NotImplementedAlpacaError("Park is not supported")
        if self.at_park:
            return
        self._do_park()
        self._set_activity(MountActivity.SLEWING)

    @alpaca_put("unpark")
    def put_unpark(self) -> None:
        if not self.can_unpark:
            raise NotImplementedAlpacaError("Unpark is not supported")
        if not self.at_park:
            return
        self._do_unpark()
        self.status.activity = MountActivity.STOPPED

    @alpaca_put("setpark")
    def put_setpark(self) -> None:
        if not self.can_set_park:
            raise NotImplementedAlpacaError("SetPark is not supported")
        self._do_set_park()

    @alpaca_put("findhome")
    def put_findhome(self) -> None:
        if not self.can_find_home:
            raise NotImplementedAlpacaError("FindHome is not supported")
        self._ensure_not_parked("FindHome")
        self._do_find_home()
        self._set_activity(MountActivity.HOMING)

    @alpaca_put("moveaxis")
    def put_moveaxis(self, params: CaseInsensitiveParams) -> None:
        axis = self._parse_axis(params)
        if axis not in self.can_move_axes:
            raise NotImplementedAlpacaError(f"MoveAxis is not supported on {axis.name}")
        rate = params.get_float("Rate")
        if abs(rate) > self.max_axis_rate:
            raise InvalidValueError(
                f"Rate {rate} exceeds maximum {self.max_axis_rate} deg/s"
            )
        self._ensure_not_parked("MoveAxis")
        self._do_move_axis(axis, rate)
        if rate != 0.0:
            self._set_activity(MountActivity.SLEWING)
        else:
            self._end_motion()

    @alpaca_get("canmoveaxis")
    def get_canmoveaxis(self, params: CaseInsensitiveParams) -> bool:
        return self._parse_axis(params) in self.can_move_axes

    @alpaca_get("axisrates")
    def get_axisrates(self, params: CaseInsensitiveParams) -> list[dict[str, float]]:
        if self._parse_axis(params) not in self.can_move_axes:
            return []
        return [{"Minimum": 0.0, "Maximum": self.max_axis_rate}]

    @alpaca_get("destinationsideofpier")
    def get_destinationsideofpier(self) -> int:
        raise NotImplementedAlpacaError("DestinationSideOfPier is not supported")

    # =========================================================================
    # Capability flags
    # =========================================================================

    @alpaca_get("canslew")
    def get_canslew(self) -> bool:
        return self.can_slew

    @alpaca_get("canslewasync")
    def get_canslewasync(self) -> bool:
        return self.can_slew_async

    @alpaca_get("canslewaltaz")
    def get_canslewaltaz(self) -> bool:
        return False

    @alpaca_get("canslewaltazasync")
    def get_canslewaltazasync(self) -> bool:
        return False

    @alpaca_get("cansync")
    def get_cansync(self) -> bool:
        return self.can_sync

    @alpaca_get("cansyncaltaz")
    def get_cansyncaltaz(self) -> bool:
        return False

    @alpaca_get("canpark")
    def get_canpark(self) -> bool:
        return self.can_park

    @alpaca_get("canunpark")
    def get_canunpark(self) -> bool:
        return self.can_unpark

    @alpaca_get("cansetpark")
    def get_cansetpark(self) -> bool:
        return self.can_set_park

    @alpaca_get("canfindhome")
    def get_canfindhome(self) -> bool:
        return self.can_find_home

    @alpaca_get("cansettracking")
    def get_cansettracking(self) -> bool:
        return self.can_set_tracking

    @alpaca_get("canpulseguide")
    def get_canpulseguide(self) -> bool:
        return False

    @alpaca_get("cansetpierside")
    def get_cansetpierside(self) -> bool:
        return False

    @alpaca_get("cansetguiderates")
    def get_cansetguiderates(self) -> bool:
        return False

    @alpaca_get("cansetrightascensionrate")
    def get_cansetrightascensionrate(self) -> bool:
        return False

    @alpaca_get("cansetdeclinationrate")
    def get_cansetdeclinationrate(self) -> bool:
        return False


__all__ = [
    "AlignmentMode",
    "DriveRate",
    "EquatorialSystem",
    "MountActivity",
    "MountStatus",
    "PierSide",
    "Telescope",
    "TelescopeAxis",
]
