"""
MAVSDK-backed device registry, device handle and capability sub-clients.

Everything here that touches MAVSDK runs on the transport's link loop.
Telemetry is published into LatestValue cells from that loop's thread.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import math
import threading
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from grpc.aio import AioRpcError
from mavsdk.info import InfoError

from .constants import INITIALIZATION_POLL_S
from .exceptions import ConstructionError, InitializationTimedOut
from .helpers import LatestValue, ReadOnlyValue, Subscription
from .log import LogComponent, get_logger
from .protocols import CapabilityClient, DeviceHandle
from .types import CapabilityRole, GeoPoint, GlobalPosition

if TYPE_CHECKING:
    from mavsdk import System

    from .transport import MavsdkTransport

logger = get_logger(LogComponent.LINK)

# Telemetry stream restart policy
_MAX_STREAM_RETRIES = 10
_MAX_STREAM_BACKOFF_S = 30


class MavsdkHeartbeatClient:
    """Link liveness, fed by MAVSDK's connection state."""

    def __init__(self) -> None:
        self._link: LatestValue[bool] = LatestValue(None, name="link")
        self._closed = False

    @property
    def link(self) -> ReadOnlyValue[bool]:
        return self._link.read_only()

    def on_connection_state(self, is_connected: bool) -> None:
        if self._closed:
            return
        if self._link.get() is not None and self._link.get() != is_connected:
            if is_connected:
                logger.info("Heartbeat restored")
            else:
                logger.warning("Heartbeat lost")
        self._link.publish(is_connected)

    async def close(self) -> None:
        self._closed = True
        self._link.clear_subscribers()


class MavsdkControlClient:
    """
    Mode changes and movement commands through MAVSDK's action plugin.

    Guided mode is entered with MAVSDK's hold action. Acknowledgement and
    retries are MAVSDK's; ``ActionError`` propagates to the caller.
    """

    def __init__(self, transport: "MavsdkTransport", system: "System"):
        self._transport = transport
        self._system = system
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Control client is closed")

    async def set_guided_mode(self) -> None:
        self._check_open()
        await self._transport.run(self._system.action.hold())

    async def take_off(self, altitude_m: float) -> None:
        self._check_open()
        action = self._system.action

        async def _take_off() -> None:
            await action.set_takeoff_altitude(float(altitude_m))
            await action.arm()
            await action.takeoff()

        await self._transport.run(_take_off())

    async def land(self) -> None:
        self._check_open()
        await self._transport.run(self._system.action.land())

    async def go_to(self, target: GeoPoint) -> None:
        self._check_open()
        # NaN yaw keeps the current heading
        await self._transport.run(
            self._system.action.goto_location(target.lat, target.lon, target.alt, math.nan)
        )

    async def close(self) -> None:
        self._closed = True


class MavsdkPositionClient:
    """Latest GLOBAL_POSITION sample from MAVSDK's telemetry plugin."""

    def __init__(self, transport: "MavsdkTransport", system: "System"):
        self._transport = transport
        self._system = system
        self._position: LatestValue[GlobalPosition] = LatestValue(None, name="position")
        self._stream: Optional[concurrent.futures.Future] = None

    @property
    def global_position(self) -> ReadOnlyValue[GlobalPosition]:
        return self._position.read_only()

    def start(self) -> None:
        if self._stream is None:
            self._stream = self._transport.spawn(self._run_stream(), "position")

    async def _run_stream(self) -> None:
        """Follow the position stream, restarting it with backoff when it fails."""
        retry_count = 0
        while retry_count < _MAX_STREAM_RETRIES:
            try:
                async for p in self._system.telemetry.position():
                    self._position.publish(
                        GlobalPosition.from_degrees(
                            p.latitude_deg,
                            p.longitude_deg,
                            p.absolute_altitude_m,
                            p.relative_altitude_m,
                        )
                    )
                    retry_count = 0
                return
            except asyncio.CancelledError:
                return
            except Exception as e:
                retry_count += 1
                logger.warning(
                    f"Telemetry stream 'position' failed (attempt {retry_count}): {e}"
                )
                await asyncio.sleep(min(2 ** retry_count, _MAX_STREAM_BACKOFF_S))
        logger.error(f"Telemetry stream 'position' failed after {_MAX_STREAM_RETRIES} retries")

    async def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.cancel()
        self._position.clear_subscribers()


class MavsdkDevice:
    """
    The vehicle behind one MAVSDK ``System``.

    Capability sub-clients are created on first lookup and cached; the
    position client starts streaming when it is created.
    """

    def __init__(self, transport: "MavsdkTransport", system: "System", device_id: str):
        self._transport = transport
        self._system = system
        self._device_id = device_id
        self._identity: LatestValue[str] = LatestValue(None, name="identity")
        self._heartbeat = MavsdkHeartbeatClient()
        self._clients: Dict[CapabilityRole, CapabilityClient] = {}
        self._closed = False

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def identity(self) -> ReadOnlyValue[str]:
        return self._identity.read_only()

    @property
    def closed(self) -> bool:
        return self._closed

    def on_connection_state(self, is_connected: bool) -> None:
        self._heartbeat.on_connection_state(is_connected)

    async def wait_until_ready(self, timeout: float) -> None:
        """
        Wait for the autopilot to answer identification requests.

        Raises:
            InitializationTimedOut: If no answer arrived within ``timeout``.
            ConstructionError: If the link to mavsdk_server failed.
        """
        try:
            name = await self._transport.run(self._request_name(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise InitializationTimedOut(timeout, device=self._device_id, original_error=e) from e
        except (AioRpcError, RuntimeError) as e:
            raise ConstructionError(
                f"Link failed while initializing {self._device_id}",
                address=self._transport.address, original_error=e,
            ) from e
        self._identity.publish(name)
        logger.info(f"Device {self._device_id} initialized as '{name}'")

    async def _request_name(self) -> str:
        info = self._system.info
        while True:
            try:
                product = await info.get_product()
                identification = await info.get_identification()
                break
            except InfoError as e:
                logger.debug(f"Device {self._device_id} not ready yet: {e}")
                await asyncio.sleep(INITIALIZATION_POLL_S)
        name = product.product_name or product.vendor_name
        if not name:
            name = f"Vehicle {identification.hardware_uid[:8] or self._device_id}"
        return name

    def get_capability(self, role: CapabilityRole) -> Optional[CapabilityClient]:
        if self._closed:
            return None
        client = self._clients.get(role)
        if client is not None:
            return client
        if role is CapabilityRole.HEARTBEAT:
            client = self._heartbeat
        elif role is CapabilityRole.CONTROL:
            client = MavsdkControlClient(self._transport, self._system)
        elif role is CapabilityRole.POSITION:
            client = MavsdkPositionClient(self._transport, self._system)
            client.start()
        else:
            return None
        self._clients[role] = client
        return client

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._identity.clear_subscribers()
        self._clients.clear()
        logger.debug(f"Device {self._device_id} closed")


class MavsdkDeviceRegistry:
    """
    Device registry over one MAVSDK ``System``.

    MAVSDK manages a single autopilot per server, so the registry adds one
    device the first time the connection comes up and forwards later
    connection state changes to it as heartbeat updates.
    """

    def __init__(self, transport: "MavsdkTransport"):
        self._transport = transport
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[DeviceHandle], None]] = []
        self._devices: Dict[str, MavsdkDevice] = {}
        self._watch: Optional[concurrent.futures.Future] = None

    def start(self) -> None:
        self._watch = self._transport.spawn(self._watch_connection(), "registry")

    async def _watch_connection(self) -> None:
        system = self._transport.system
        device_id = f"{self._transport.config.router_id}/{self._transport.address}"
        async for state in system.core.connection_state():
            device = self._devices.get(device_id)
            if state.is_connected and device is None:
                device = MavsdkDevice(self._transport, system, device_id)
                self._add(device)
            if device is not None:
                device.on_connection_state(state.is_connected)

    def _add(self, device: MavsdkDevice) -> None:
        with self._lock:
            self._devices[device.device_id] = device
            subscribers = list(self._subscribers)
        logger.info(f"Device added: {device.device_id}")
        for callback in subscribers:
            callback(device)

    def subscribe_added(self, callback: Callable[[DeviceHandle], None]) -> Subscription:
        """Deliver already known devices now, later additions as they happen."""
        with self._lock:
            self._subscribers.append(callback)
            known = list(self._devices.values())
        for device in known:
            callback(device)
        return Subscription(lambda: self._unsubscribe(callback))

    def _unsubscribe(self, callback: Callable[[DeviceHandle], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self) -> None:
        watch, self._watch = self._watch, None
        if watch is not None:
            watch.cancel()
        with self._lock:
            self._subscribers.clear()
            self._devices.clear()


__all__ = [
    "MavsdkHeartbeatClient",
    "MavsdkControlClient",
    "MavsdkPositionClient",
    "MavsdkDevice",
    "MavsdkDeviceRegistry",
]
