"""
Core types for dronectl.

Data classes for telemetry samples, command targets, capability roles and
discovery results.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union

from .constants import ALT_SCALE, LATLON_SCALE

if TYPE_CHECKING:
    from .protocols import DeviceHandle


class CapabilityRole(Enum):
    """Roles a device handle can provide a sub-client for."""

    HEARTBEAT = "heartbeat"
    CONTROL = "control"
    POSITION = "position"


# Acquisition order of the capability sub-clients
REQUIRED_ROLES = (
    CapabilityRole.HEARTBEAT,
    CapabilityRole.CONTROL,
    CapabilityRole.POSITION,
)


@dataclass(frozen=True)
class GlobalPosition:
    """
    One position sample in GLOBAL_POSITION_INT encoding.

    Latitude and longitude are degrees scaled by 1e7, altitudes are
    millimetres. Instances are immutable so a sample is published and read
    as a whole.

    Examples:
        >>> GlobalPosition(473977419, 85455938, 488150).altitude_m
        488.15
    """

    lat: int
    lon: int
    alt: int
    relative_alt: int = 0
    time_boot_ms: int = 0

    @classmethod
    def from_degrees(
        cls,
        latitude_deg: float,
        longitude_deg: float,
        altitude_m: float,
        relative_altitude_m: float = 0.0,
        time_boot_ms: int = 0,
    ) -> GlobalPosition:
        """Encode a sample given in degrees and metres."""
        return cls(
            round(latitude_deg * LATLON_SCALE),
            round(longitude_deg * LATLON_SCALE),
            round(altitude_m * ALT_SCALE),
            round(relative_altitude_m * ALT_SCALE),
            time_boot_ms,
        )

    @property
    def latitude_deg(self) -> float:
        return self.lat / LATLON_SCALE

    @property
    def longitude_deg(self) -> float:
        return self.lon / LATLON_SCALE

    @property
    def altitude_m(self) -> float:
        return self.alt / ALT_SCALE

    @property
    def relative_altitude_m(self) -> float:
        return self.relative_alt / ALT_SCALE

    def __str__(self) -> str:
        return (
            f"Lat: {self.latitude_deg:.7f} | "
            f"Lon: {self.longitude_deg:.7f} | "
            f"Alt: {self.altitude_m:.3f}m"
        )


@dataclass(frozen=True)
class GeoPoint:
    """Target coordinate: degrees and metres above mean sea level."""

    lat: float
    lon: float
    alt: float

    def __post_init__(self) -> None:
        for name in ("lat", "lon", "alt"):
            if not math.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be a finite number")
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude must be in [-90, 90], got {self.lat}")
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"Longitude must be in [-180, 180], got {self.lon}")


@dataclass(frozen=True)
class Found:
    """Discovery succeeded with a device handle."""

    device: "DeviceHandle"

    @property
    def found(self) -> bool:
        return True


@dataclass(frozen=True)
class TimedOut:
    """Discovery window elapsed without any device."""

    timeout: float

    @property
    def found(self) -> bool:
        return False


DiscoveryResult = Union[Found, TimedOut]


__all__ = [
    "CapabilityRole",
    "REQUIRED_ROLES",
    "GlobalPosition",
    "GeoPoint",
    "Found",
    "TimedOut",
    "DiscoveryResult",
]
