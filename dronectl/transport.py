"""
Transport session for dronectl.

The transport owns the three link-level resources of a run:

- router: the MAVSDK event loop, running on a background thread
- port: the MAVSDK ``System`` connected to the MAVLink endpoint
- registry: the device registry fed by the port's connection state

It is created once per run and torn down after the vehicle session.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import threading
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Awaitable, Coroutine, Optional, TypeVar, Union

import yaml
from mavsdk import System

from .constants import (
    DEFAULT_MAVSDK_SERVER_PORT,
    DEFAULT_ROUTER_HOST,
    DEFAULT_ROUTER_ID,
    DEFAULT_ROUTER_PORT,
    GCS_COMPONENT_ID,
    GCS_SYSTEM_ID,
    LINK_CALL_TIMEOUT_S,
    LINK_STARTUP_TIMEOUT_S,
)
from .exceptions import ConstructionError, TeardownError
from .log import LogComponent, get_logger
from .protocols import DeviceRegistry
from .teardown import TeardownChain

logger = get_logger(LogComponent.TRANSPORT)

T = TypeVar("T")


@dataclass(frozen=True)
class TransportConfig:
    """Startup parameters of the vehicle link."""

    host: str = DEFAULT_ROUTER_HOST
    port: int = DEFAULT_ROUTER_PORT
    router_id: str = DEFAULT_ROUTER_ID
    mavsdk_port: int = DEFAULT_MAVSDK_SERVER_PORT

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("host must not be empty")
        if not 0 < int(self.port) <= 65535:
            raise ValueError(f"port must be in 1..65535, got {self.port}")
        if not 0 < int(self.mavsdk_port) <= 65535:
            raise ValueError(f"mavsdk_port must be in 1..65535, got {self.mavsdk_port}")
        if not self.router_id:
            raise ValueError("router_id must not be empty")

    @property
    def address(self) -> str:
        """MAVSDK connection URL of the MAVLink endpoint."""
        return f"tcpout://{self.host}:{self.port}"

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "TransportConfig":
        """
        Load a config from a JSON or YAML file.

        Keys are the field names, ``-`` and ``_`` both accepted. Missing keys
        keep their defaults; unknown keys are rejected.
        """
        config_path = Path(config_path)
        with config_path.open("r") as f:
            if config_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        return cls().with_overrides(**data)

    def with_overrides(self, **overrides: Any) -> "TransportConfig":
        """Return a copy with the non-None overrides applied."""
        known = {f.name for f in fields(self)}
        values = {}
        for key, value in overrides.items():
            name = key.replace("-", "_")
            if name not in known:
                raise ValueError(
                    f"Unknown transport option '{key}'. Valid options: {sorted(known)}"
                )
            if value is not None:
                values[name] = value
        if "port" in values:
            values["port"] = int(values["port"])
        if "mavsdk_port" in values:
            values["mavsdk_port"] = int(values["mavsdk_port"])
        return replace(self, **values)


class TransportSession:
    """
    Owner of the router, port and device registry.

    Subclasses acquire the resources in ``open`` and register each one on
    ``self._teardown`` right after acquiring it.
    """

    def __init__(self, config: TransportConfig):
        self.config = config
        self._teardown = TeardownChain(f"transport {config.router_id}")
        self._registry: Optional[DeviceRegistry] = None

    @property
    def registry(self) -> DeviceRegistry:
        if self._registry is None:
            raise RuntimeError("Transport has no device registry")
        return self._registry

    @property
    def address(self) -> str:
        return self.config.address

    @property
    def closed(self) -> bool:
        return self._teardown.closed

    async def run(self, coro: Awaitable[T], timeout: Optional[float] = LINK_CALL_TIMEOUT_S) -> T:
        """Run a coroutine against the link and return its result."""
        return await asyncio.wait_for(coro, timeout=timeout)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> concurrent.futures.Future:
        """Start a background coroutine on the link; cancel the returned future to stop it."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release registry, port and router, in that order."""
        logger.info(f"Closing transport {self.config.router_id}")
        await self._teardown.close()

    async def __aenter__(self) -> "TransportSession":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


class MavsdkTransport(TransportSession):
    """
    Transport backed by MAVSDK.

    MAVSDK runs on its own event loop in a daemon thread, so telemetry keeps
    flowing while the application loop is busy drawing or waiting on input.
    """

    def __init__(self, config: TransportConfig):
        super().__init__(config)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._system: Optional[System] = None

    @property
    def system(self) -> System:
        if self._system is None:
            raise RuntimeError("Transport port is not open")
        return self._system

    @classmethod
    async def open(cls, config: TransportConfig) -> "MavsdkTransport":
        """
        Start the router, connect the port and create the device registry.

        Raises:
            ConstructionError: If any of the three could not be set up. Any
                resource acquired so far is released before raising.
        """
        from .link import MavsdkDeviceRegistry

        self = cls(config)
        logger.info(
            f"Opening transport {config.router_id} to {config.address} "
            f"(mavsdk_server port {config.mavsdk_port})"
        )
        try:
            await self._start_router()
            await self._open_port()
            registry = MavsdkDeviceRegistry(self)
            registry.start()
            self._registry = registry
            self._teardown.push("registry", registry.close)
        except Exception as e:
            logger.error(f"Transport setup failed: {e}")
            try:
                await self.close()
            except TeardownError as te:
                logger.error(str(te))
            if isinstance(e, ConstructionError):
                raise
            raise ConstructionError(address=config.address, original_error=e) from e
        logger.info(f"Transport {config.router_id} open")
        return self

    async def _start_router(self) -> None:
        loop = asyncio.new_event_loop()
        ready = threading.Event()

        def _run_loop() -> None:
            asyncio.set_event_loop(loop)
            loop.call_soon(ready.set)
            try:
                loop.run_forever()
            finally:
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(
                        asyncio.gather(*pending, return_exceptions=True)
                    )
                loop.close()

        thread = threading.Thread(
            target=_run_loop, name=f"dronectl-{self.config.router_id}", daemon=True
        )
        thread.start()
        if not await asyncio.to_thread(ready.wait, LINK_STARTUP_TIMEOUT_S):
            loop.call_soon_threadsafe(loop.stop)
            raise ConstructionError(
                f"Link loop did not start within {LINK_STARTUP_TIMEOUT_S}s",
                address=self.config.address,
            )
        self._loop, self._thread = loop, thread
        self._teardown.push("router", self._stop_router)
        logger.debug(f"Link loop running on thread {thread.name}")

    async def _stop_router(self) -> None:
        loop, thread = self._loop, self._thread
        self._loop = self._thread = None
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        await asyncio.to_thread(thread.join, LINK_CALL_TIMEOUT_S)
        if thread.is_alive():
            raise RuntimeError(f"Link thread {thread.name} did not stop")

    async def _open_port(self) -> None:
        async def _connect() -> System:
            system = System(
                port=self.config.mavsdk_port,
                sysid=GCS_SYSTEM_ID,
                compid=GCS_COMPONENT_ID,
            )
            await system.connect(system_address=self.config.address)
            return system

        self._system = await self.run(_connect())
        self._teardown.push("port", self._close_port)
        logger.debug(f"Port connected to {self.config.address}")

    def _close_port(self) -> None:
        # mavsdk stops its embedded server when the System is released
        self._system = None

    async def run(self, coro: Awaitable[T], timeout: Optional[float] = LINK_CALL_TIMEOUT_S) -> T:
        """
        Run a coroutine on the MAVSDK loop.

        Raises:
            RuntimeError: If the router is not running.
            asyncio.TimeoutError: If the call did not finish within ``timeout``.
        """
        if self._loop is None or not self._loop.is_running():
            if asyncio.iscoroutine(coro):
                coro.close()
            raise RuntimeError("Link loop is not running")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return await asyncio.wait_for(asyncio.wrap_future(future), timeout=timeout)
        except asyncio.TimeoutError:
            future.cancel()
            raise
        except asyncio.CancelledError:
            future.cancel()
            raise

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> concurrent.futures.Future:
        if self._loop is None:
            coro.close()
            raise RuntimeError("Link loop is not running")
        logger.debug(f"Starting link task {name}")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)


__all__ = [
    "TransportConfig",
    "TransportSession",
    "MavsdkTransport",
]
