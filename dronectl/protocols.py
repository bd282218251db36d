"""
Protocol definitions for the vehicle-link collaborators.

The session layer only talks to these interfaces. ``dronectl.link``
implements them on top of MAVSDK and ``dronectl.testing`` provides
simulated versions.
"""
from __future__ import annotations

from typing import Callable, Optional, Protocol, Union, runtime_checkable

from .helpers import ReadOnlyValue, Subscription
from .types import CapabilityRole, GeoPoint, GlobalPosition


@runtime_checkable
class HeartbeatClient(Protocol):
    """Link liveness for one device."""

    @property
    def link(self) -> ReadOnlyValue[bool]: ...

    async def close(self) -> None: ...


@runtime_checkable
class ControlClient(Protocol):
    """Mode changes and movement commands. Every call may raise."""

    async def set_guided_mode(self) -> None: ...

    async def take_off(self, altitude_m: float) -> None: ...

    async def land(self) -> None: ...

    async def go_to(self, target: GeoPoint) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class PositionClient(Protocol):
    """Latest global position of one device."""

    @property
    def global_position(self) -> ReadOnlyValue[GlobalPosition]: ...

    async def close(self) -> None: ...


CapabilityClient = Union[HeartbeatClient, ControlClient, PositionClient]


@runtime_checkable
class DeviceHandle(Protocol):
    """
    One discovered remote vehicle.

    ``get_capability`` returns ``None`` when the device has no sub-client
    for the role.
    """

    @property
    def device_id(self) -> str: ...

    @property
    def identity(self) -> ReadOnlyValue[str]: ...

    async def wait_until_ready(self, timeout: float) -> None: ...

    def get_capability(self, role: CapabilityRole) -> Optional[CapabilityClient]: ...

    async def close(self) -> None: ...


@runtime_checkable
class DeviceRegistry(Protocol):
    """
    Push-notifying registry of discovered devices.

    ``subscribe_added`` calls back once per newly added device, possibly from
    another thread, until the returned subscription is disposed.
    """

    def subscribe_added(self, callback: Callable[[DeviceHandle], None]) -> Subscription: ...


__all__ = [
    "HeartbeatClient",
    "ControlClient",
    "PositionClient",
    "CapabilityClient",
    "DeviceHandle",
    "DeviceRegistry",
]
