"""
Vehicle session for dronectl.

A session binds one discovered device handle to its three required
capability sub-clients. It is built atomically, runs commands one at a
time with the guided-mode precondition, and tears itself down in reverse
acquisition order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List

from .exceptions import CapabilityMissing, CommandFailure, SessionClosedError
from .helpers import ReadOnlyValue
from .log import LogComponent, get_logger, log_timing
from .protocols import ControlClient, DeviceHandle, HeartbeatClient, PositionClient
from .teardown import TeardownChain
from .types import REQUIRED_ROLES, CapabilityRole, GeoPoint, GlobalPosition

logger = get_logger(LogComponent.SESSION)


@dataclass(frozen=True)
class Capabilities:
    """The three sub-clients a session needs, resolved once."""

    heartbeat: HeartbeatClient
    control: ControlClient
    position: PositionClient

    @classmethod
    async def resolve(cls, device: DeviceHandle) -> "Capabilities":
        """
        Look up every required role and validate them as a group.

        Raises:
            CapabilityMissing: Naming every absent role. Sub-clients that did
                resolve are closed again before raising.
        """
        resolved: Dict[CapabilityRole, object] = {}
        missing: List[CapabilityRole] = []
        for role in REQUIRED_ROLES:
            client = device.get_capability(role)
            if client is None:
                missing.append(role)
            else:
                resolved[role] = client

        if missing:
            for role in reversed(list(resolved)):
                try:
                    await resolved[role].close()
                except Exception as e:
                    logger.error(f"Releasing {role.value} client of {device.device_id} failed: {e}")
            raise CapabilityMissing(missing, device=device.device_id)

        return cls(
            heartbeat=resolved[CapabilityRole.HEARTBEAT],
            control=resolved[CapabilityRole.CONTROL],
            position=resolved[CapabilityRole.POSITION],
        )


class VehicleSession:
    """
    Command/telemetry session with one vehicle.

    Build with ``await VehicleSession.create(device)``. From then on the
    session owns the device handle and disposes it in ``close()``.

    Commands are serialized: a second command waits until the first one
    finished. Every movement command first sends the guided mode change and
    only then the action. When the action fails after the mode change went
    through, the mode change is not rolled back.
    """

    def __init__(self, device: DeviceHandle, capabilities: Capabilities):
        self._device = device
        self._capabilities = capabilities
        self._command_lock = asyncio.Lock()
        self._closed = False

        self._teardown = TeardownChain(f"session {device.device_id}")
        # Acquisition order; released in reverse
        self._teardown.push("device", device.close)
        self._teardown.push("heartbeat", capabilities.heartbeat.close)
        self._teardown.push("control", capabilities.control.close)
        self._teardown.push("position", capabilities.position.close)

    @classmethod
    async def create(cls, device: DeviceHandle) -> "VehicleSession":
        """
        Resolve the capabilities of ``device`` and build a session.

        Raises:
            CapabilityMissing: Nothing is retained; disposing the device
                handle stays with the caller.
        """
        capabilities = await Capabilities.resolve(device)
        session = cls(device, capabilities)
        logger.info(f"Session created for {device.device_id}")
        return session

    @property
    def device_id(self) -> str:
        return self._device.device_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def busy(self) -> bool:
        """True while a command is running."""
        return self._command_lock.locked()

    @property
    def identity(self) -> ReadOnlyValue[str]:
        """Latest display name of the vehicle, ``None`` until known."""
        return self._device.identity

    @property
    def position(self) -> ReadOnlyValue[GlobalPosition]:
        """Latest position sample, ``None`` until the first one arrives."""
        return self._capabilities.position.global_position

    @property
    def link(self) -> ReadOnlyValue[bool]:
        """Heartbeat link state, ``None`` until known."""
        return self._capabilities.heartbeat.link

    async def _send(self, command: str, stage: str, call: Awaitable[None]) -> None:
        try:
            await call
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{command}: {stage} failed: {e}")
            raise CommandFailure(command, stage=stage, cause=e) from e
        logger.debug(f"{command}: {stage} done")

    async def _guided_then(self, command: str, action: Callable[[], Awaitable[None]]) -> None:
        """Run ``action()`` under the command lock, preceded by the mode change."""
        async with self._command_lock:
            if self._closed:
                raise SessionClosedError(command)
            control = self._capabilities.control
            await self._send(command, "set_guided_mode", control.set_guided_mode())
            await self._send(command, command, action())

    @log_timing(logger=logger, level=logging.INFO)
    async def take_off(self, altitude_m: float) -> None:
        """Switch to guided mode, then take off to ``altitude_m`` metres."""
        logger.info(f"take_off to {altitude_m}m")
        await self._guided_then(
            "take_off", lambda: self._capabilities.control.take_off(altitude_m)
        )

    @log_timing(logger=logger, level=logging.INFO)
    async def land(self) -> None:
        """Switch to guided mode, then land."""
        logger.info("land")
        await self._guided_then("land", lambda: self._capabilities.control.land())

    @log_timing(logger=logger, level=logging.INFO)
    async def go_to(self, lat: float, lon: float, alt: float) -> None:
        """Switch to guided mode, then fly to the coordinate (alt in m AMSL)."""
        target = GeoPoint(lat, lon, alt)
        logger.info(f"go_to ({target.lat:.7f}, {target.lon:.7f}, alt={target.alt}m)")
        await self._guided_then("go_to", lambda: self._capabilities.control.go_to(target))

    async def close(self) -> None:
        """
        Release position, control and heartbeat clients, then the device.

        A command that is already running finishes first.

        Raises:
            TeardownError: If any release step failed; the others still ran.
        """
        if self._closed:
            return
        self._closed = True
        logger.info(f"Closing session {self.device_id}")
        # Waits for a running command; queued ones see the closed flag
        async with self._command_lock:
            await self._teardown.close()

    async def __aenter__(self) -> "VehicleSession":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


__all__ = ["Capabilities", "VehicleSession"]
