"""
Simulated link for testing dronectl without MAVSDK or a vehicle.

The simulated registry, device and capability clients implement the same
interfaces as the MAVSDK-backed ones. Every call is appended to a shared
``CallLog`` so tests can assert on ordering across layers, and failures
can be injected per operation.

Example:
    log = CallLog()
    device = SimulatedDevice(call_log=log)
    device.control.fail_on("take_off", RuntimeError("rejected"))
    session = await VehicleSession.create(device)

    with pytest.raises(CommandFailure):
        await session.take_off(50)
    assert log.calls == ["control.set_guided_mode", "control.take_off"]
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .exceptions import InitializationTimedOut
from .helpers import LatestValue, ReadOnlyValue, Subscription
from .log import LogComponent, get_logger
from .transport import TransportConfig, TransportSession
from .types import CapabilityRole, GeoPoint, GlobalPosition

logger = get_logger(LogComponent.SIMULATION)

# Home of the simulated vehicle (ArduPilot SITL default location)
SIM_HOME = GeoPoint(-35.363262, 149.165237, 584.0)


class CallLog:
    """Ordered record of calls made on simulated components."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def record(self, call: str) -> None:
        self.calls.append(call)

    def index(self, call: str) -> int:
        return self.calls.index(call)

    def matching(self, prefix: str) -> List[str]:
        return [c for c in self.calls if c.startswith(prefix)]

    def clear(self) -> None:
        self.calls.clear()


@dataclass
class SimulatedVehicle:
    """Mutable flight state moved by the control client."""

    lat: float = SIM_HOME.lat
    lon: float = SIM_HOME.lon
    alt: float = SIM_HOME.alt
    ground_alt: float = SIM_HOME.alt
    target: Optional[GeoPoint] = None
    guided: bool = False
    armed: bool = False

    def step(self, fraction: float = 0.2) -> None:
        """Move a fraction of the remaining way towards the target."""
        if self.target is None:
            return
        self.lat += (self.target.lat - self.lat) * fraction
        self.lon += (self.target.lon - self.lon) * fraction
        self.alt += (self.target.alt - self.alt) * fraction
        if (
            math.isclose(self.lat, self.target.lat, abs_tol=1e-7)
            and math.isclose(self.lon, self.target.lon, abs_tol=1e-7)
            and math.isclose(self.alt, self.target.alt, abs_tol=1e-3)
        ):
            self.lat, self.lon, self.alt = self.target.lat, self.target.lon, self.target.alt
            self.target = None
            if self.alt <= self.ground_alt:
                self.armed = False

    def sample(self) -> GlobalPosition:
        return GlobalPosition.from_degrees(self.lat, self.lon, self.alt, self.alt - self.ground_alt)


class _RecordingClient:
    def __init__(self, call_log: CallLog, name: str):
        self._call_log = call_log
        self._name = name
        self.closed = False
        self._close_error: Optional[BaseException] = None

    def fail_close(self, error: BaseException) -> None:
        self._close_error = error

    async def close(self) -> None:
        self._call_log.record(f"{self._name}.close")
        self.closed = True
        if self._close_error is not None:
            raise self._close_error


class RecordingHeartbeatClient(_RecordingClient):
    def __init__(self, call_log: CallLog, link: Optional[bool] = True):
        super().__init__(call_log, "heartbeat")
        self._link: LatestValue[bool] = LatestValue(link, name="link")

    @property
    def link(self) -> ReadOnlyValue[bool]:
        return self._link.read_only()

    def set_link(self, connected: bool) -> None:
        self._link.publish(connected)


class RecordingControlClient(_RecordingClient):
    """
    Control client that records every call and moves the simulated vehicle.

    ``fail_on(op, error)`` makes the next and all later calls of ``op``
    raise ``error``; ``delay`` is awaited inside every call.
    """

    def __init__(
        self,
        call_log: CallLog,
        vehicle: Optional[SimulatedVehicle] = None,
        delay: float = 0.0,
    ):
        super().__init__(call_log, "control")
        self.vehicle = vehicle or SimulatedVehicle()
        self.delay = delay
        self._failures: Dict[str, BaseException] = {}

    def fail_on(self, op: str, error: BaseException) -> None:
        self._failures[op] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    async def _call(self, op: str) -> None:
        self._call_log.record(f"control.{op}")
        if self.closed:
            raise RuntimeError("Control client is closed")
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self._failures.get(op)
        if error is not None:
            raise error

    async def set_guided_mode(self) -> None:
        await self._call("set_guided_mode")
        self.vehicle.guided = True

    async def take_off(self, altitude_m: float) -> None:
        await self._call("take_off")
        v = self.vehicle
        v.armed = True
        v.target = GeoPoint(v.lat, v.lon, v.ground_alt + altitude_m)

    async def land(self) -> None:
        await self._call("land")
        v = self.vehicle
        v.target = GeoPoint(v.lat, v.lon, v.ground_alt)

    async def go_to(self, target: GeoPoint) -> None:
        await self._call("go_to")
        self.vehicle.target = target


class RecordingPositionClient(_RecordingClient):
    """
    Position client publishing samples of the simulated vehicle.

    With an ``interval`` the vehicle is stepped and sampled periodically
    once ``start()`` was called; without one, tests publish by hand.
    """

    def __init__(
        self,
        call_log: CallLog,
        vehicle: Optional[SimulatedVehicle] = None,
        interval: Optional[float] = None,
    ):
        super().__init__(call_log, "position")
        self.vehicle = vehicle or SimulatedVehicle()
        self.interval = interval
        self._position: LatestValue[GlobalPosition] = LatestValue(None, name="position")
        self._task: Optional[asyncio.Task] = None

    @property
    def global_position(self) -> ReadOnlyValue[GlobalPosition]:
        return self._position.read_only()

    def publish(self, position: GlobalPosition) -> None:
        self._position.publish(position)

    def start(self) -> None:
        if self.interval is not None and self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._drift())

    async def _drift(self) -> None:
        while True:
            self.vehicle.step()
            self._position.publish(self.vehicle.sample())
            await asyncio.sleep(self.interval)

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._position.clear_subscribers()
        await super().close()


class SimulatedDevice:
    """
    Device handle of a simulated vehicle.

    ``missing`` roles return no sub-client. ``init_delay`` longer than the
    ready timeout makes ``wait_until_ready`` time out. ``fail_ready``
    makes it raise the given error instead.
    """

    def __init__(
        self,
        device_id: str = "SIM/1",
        name: str = "Simulated Copter",
        call_log: Optional[CallLog] = None,
        missing: Iterable[CapabilityRole] = (),
        init_delay: float = 0.0,
        telemetry_interval: Optional[float] = None,
        command_delay: float = 0.0,
    ):
        self._device_id = device_id
        self._name = name
        self.call_log = call_log if call_log is not None else CallLog()
        self.missing = frozenset(missing)
        self.init_delay = init_delay
        self.vehicle = SimulatedVehicle()
        self._identity: LatestValue[str] = LatestValue(None, name="identity")
        self.heartbeat = RecordingHeartbeatClient(self.call_log)
        self.control = RecordingControlClient(self.call_log, self.vehicle, command_delay)
        self.position = RecordingPositionClient(self.call_log, self.vehicle, telemetry_interval)
        self.close_count = 0
        self._close_error: Optional[BaseException] = None
        self._ready_error: Optional[BaseException] = None

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def identity(self) -> ReadOnlyValue[str]:
        return self._identity.read_only()

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    async def wait_until_ready(self, timeout: float) -> None:
        self.call_log.record("device.wait_until_ready")
        if self._ready_error is not None:
            raise self._ready_error
        if self.init_delay > timeout:
            await asyncio.sleep(timeout)
            raise InitializationTimedOut(timeout, device=self._device_id)
        await asyncio.sleep(self.init_delay)
        self._identity.publish(self._name)

    def get_capability(self, role: CapabilityRole):
        if role in self.missing:
            return None
        if role is CapabilityRole.HEARTBEAT:
            return self.heartbeat
        if role is CapabilityRole.CONTROL:
            return self.control
        if role is CapabilityRole.POSITION:
            self.position.start()
            return self.position
        return None

    def fail_ready(self, error: BaseException) -> None:
        self._ready_error = error

    def fail_close(self, error: BaseException) -> None:
        self._close_error = error

    async def close(self) -> None:
        self.call_log.record("device.close")
        self.close_count += 1
        if self._close_error is not None:
            raise self._close_error


class SimulatedRegistry:
    """
    Device registry whose devices appear when ``emit`` is called.

    Already emitted devices are replayed to new subscribers, like the
    MAVSDK registry does.
    """

    def __init__(self, call_log: Optional[CallLog] = None):
        self.call_log = call_log if call_log is not None else CallLog()
        self._subscribers: List[Callable] = []
        self._devices: List[SimulatedDevice] = []
        self._pending: List[asyncio.TimerHandle] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe_added(self, callback: Callable) -> Subscription:
        self._subscribers.append(callback)
        for device in list(self._devices):
            callback(device)
        return Subscription(lambda: self._unsubscribe(callback))

    def _unsubscribe(self, callback: Callable) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, device: SimulatedDevice) -> None:
        logger.debug(f"Simulated device added: {device.device_id}")
        self._devices.append(device)
        for callback in list(self._subscribers):
            callback(device)

    def emit_later(self, device: SimulatedDevice, delay: float) -> None:
        """Emit ``device`` after ``delay`` seconds on the running loop."""
        handle = asyncio.get_running_loop().call_later(delay, self.emit, device)
        self._pending.append(handle)

    def close(self) -> None:
        self.call_log.record("transport.registry")
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()
        self._subscribers.clear()


class SimulatedTransport(TransportSession):
    """
    Transport whose registry is a ``SimulatedRegistry``.

    Acquires and releases router, port and registry in the same order as
    ``MavsdkTransport`` and records each release.
    """

    def __init__(self, config: TransportConfig, call_log: Optional[CallLog] = None):
        super().__init__(config)
        self.call_log = call_log if call_log is not None else CallLog()

    @classmethod
    async def open(
        cls,
        config: Optional[TransportConfig] = None,
        device: Optional[SimulatedDevice] = None,
        emit_delay: float = 0.5,
        call_log: Optional[CallLog] = None,
    ) -> "SimulatedTransport":
        """
        Open a simulated link. With a ``device`` it appears after ``emit_delay``.
        """
        self = cls(config or TransportConfig(), call_log)
        self._teardown.push("router", lambda: self.call_log.record("transport.router"))
        self._teardown.push("port", lambda: self.call_log.record("transport.port"))
        registry = SimulatedRegistry(self.call_log)
        self._registry = registry
        self._teardown.push("registry", registry.close)
        if device is not None:
            registry.emit_later(device, emit_delay)
        logger.info(f"Simulated transport {self.config.router_id} open")
        return self

    @property
    def simulated_registry(self) -> SimulatedRegistry:
        return self._registry


def simulated_vehicle_device(call_log: Optional[CallLog] = None) -> SimulatedDevice:
    """A device that streams moving telemetry, for ``--simulate`` runs."""
    return SimulatedDevice(
        device_id="SIM/tcpout://127.0.0.1:5760",
        name="Simulated Copter",
        call_log=call_log,
        init_delay=0.2,
        telemetry_interval=0.1,
        command_delay=0.3,
    )


__all__ = [
    "CallLog",
    "SimulatedVehicle",
    "RecordingHeartbeatClient",
    "RecordingControlClient",
    "RecordingPositionClient",
    "SimulatedDevice",
    "SimulatedRegistry",
    "SimulatedTransport",
    "simulated_vehicle_device",
    "SIM_HOME",
]
