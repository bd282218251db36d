"""
Run orchestration for dronectl.

One run: open the transport, find one vehicle, build its session, hand it
to the operator console, then tear everything down layer by layer. The
session is closed before the transport; inside each layer the owner
releases its resources in reverse acquisition order.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, Optional

from .constants import DISCOVERY_TIMEOUT_S, INITIALIZATION_LIMIT_S
from .discovery import DiscoveryCoordinator
from .dispatcher import CommandDispatcher, Exit
from .exceptions import (
    CapabilityMissing,
    ConstructionError,
    DiscoveryTimedOut,
    InitializationTimedOut,
    TeardownError,
)
from .log import LogComponent, get_logger
from .protocols import DeviceHandle
from .session import VehicleSession
from .transport import MavsdkTransport, TransportConfig, TransportSession
from .types import Found
from .view import LiveView, PlainConsole, curses_terminal

logger = get_logger(LogComponent.APP)

# Time an accepted exit command gets to finish before the dispatcher is cancelled
_EXIT_GRACE_S = 1.0


async def _close_logged(what: str, close: Callable[[], Awaitable[None]]) -> None:
    try:
        await close()
    except TeardownError as e:
        logger.error(f"Closing {what} incomplete: {e}")


async def search_vehicle(
    transport: TransportSession,
    timeout: float = DISCOVERY_TIMEOUT_S,
    init_timeout: float = INITIALIZATION_LIMIT_S,
) -> VehicleSession:
    """
    Find the first vehicle on ``transport`` and build its session.

    Raises:
        DiscoveryTimedOut: Nothing appeared within ``timeout``.
        InitializationTimedOut: The device did not become ready in time.
        ConstructionError: The link failed while the device initialized.
        CapabilityMissing: The device lacks a required sub-client.

    On any failure after discovery the device handle is disposed before
    the error propagates.
    """
    result = await DiscoveryCoordinator(transport.registry).search(timeout)
    if not isinstance(result, Found):
        raise DiscoveryTimedOut(result.timeout, address=transport.address)

    device: DeviceHandle = result.device
    try:
        await device.wait_until_ready(init_timeout)
        return await VehicleSession.create(device)
    except BaseException:
        try:
            await device.close()
        except Exception as e:
            logger.error(f"Disposing device {device.device_id} failed: {e}")
        raise


async def _stop_dispatcher(dispatcher: CommandDispatcher, task: asyncio.Task) -> None:
    if not task.done() and isinstance(dispatcher.current, Exit):
        await asyncio.wait({task}, timeout=_EXIT_GRACE_S)
    if not task.done():
        if dispatcher.current is not None:
            logger.warning(f"Abandoning '{dispatcher.current}' on exit")
        task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def operate(session: VehicleSession, plain: bool = False) -> None:
    """Run the dispatcher and the operator console until the operator exits."""
    dispatcher = CommandDispatcher(session)
    task = asyncio.create_task(dispatcher.run(), name="dronectl-dispatcher")
    try:
        if plain:
            await PlainConsole(session, dispatcher).run()
        else:
            with curses_terminal() as terminal:
                await LiveView(session, dispatcher, terminal).run()
    finally:
        await _stop_dispatcher(dispatcher, task)


async def run(
    config: TransportConfig,
    plain: bool = False,
    simulate: bool = False,
    discovery_timeout: float = DISCOVERY_TIMEOUT_S,
    transport_factory: Optional[Callable[[TransportConfig], Awaitable[TransportSession]]] = None,
    console: Optional[Callable[[VehicleSession], Awaitable[None]]] = None,
) -> int:
    """
    Execute one run and return the process exit code.

    0 on operator exit and when no vehicle was found, 1 when the link or
    the vehicle session could not be set up.
    """
    if transport_factory is None:
        if simulate:
            from .testing import SimulatedTransport, simulated_vehicle_device

            async def transport_factory(cfg: TransportConfig) -> TransportSession:
                return await SimulatedTransport.open(cfg, device=simulated_vehicle_device())
        else:
            transport_factory = MavsdkTransport.open
    if console is None:
        async def console(session: VehicleSession) -> None:
            await operate(session, plain=plain)

    try:
        transport = await transport_factory(config)
    except ConstructionError as e:
        logger.critical(f"Cannot set up the vehicle link: {e}")
        return 1

    try:
        try:
            session = await search_vehicle(transport, discovery_timeout)
        except DiscoveryTimedOut as e:
            logger.warning(f"Cannot find the device: {e}")
            return 0
        except (ConstructionError, InitializationTimedOut, CapabilityMissing) as e:
            logger.critical(f"Cannot use the device: {e}")
            return 1

        try:
            await console(session)
        finally:
            await _close_logged("session", session.close)
    finally:
        await _close_logged("transport", transport.close)

    logger.info("Done")
    return 0


__all__ = ["search_vehicle", "operate", "run"]
