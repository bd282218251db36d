"""
Device discovery for dronectl.

Races the first "device added" event of a registry against a timeout.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from .constants import DISCOVERY_TIMEOUT_S
from .helpers import Subscription
from .log import LogComponent, get_logger
from .protocols import DeviceHandle, DeviceRegistry
from .types import DiscoveryResult, Found, TimedOut

logger = get_logger(LogComponent.DISCOVERY)


class DiscoveryCoordinator:
    """
    Finds at most one device per ``search`` call.

    Example:
        coordinator = DiscoveryCoordinator(transport.registry)
        result = await coordinator.search(60.0)
        if isinstance(result, Found):
            device = result.device
    """

    def __init__(self, registry: DeviceRegistry):
        self._registry = registry

    async def search(self, timeout: float = DISCOVERY_TIMEOUT_S) -> DiscoveryResult:
        """
        Wait up to ``timeout`` seconds for the first device.

        Returns ``Found`` with the first device or ``TimedOut``; running out
        of time is a normal outcome, not an error. The registry subscription
        is released on every path, cancellation included. No retries.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        loop = asyncio.get_running_loop()
        first: asyncio.Future = loop.create_future()

        def _resolve(device: DeviceHandle) -> None:
            if not first.done():
                first.set_result(device)

        def _on_added(device: DeviceHandle) -> None:
            # May run on the link thread
            loop.call_soon_threadsafe(_resolve, device)

        logger.info(f"Searching for a device ({timeout:g}s window)")
        start = time.monotonic()
        subscription: Optional[Subscription] = None
        try:
            subscription = self._registry.subscribe_added(_on_added)
            device = await asyncio.wait_for(first, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No device found within {timeout:g}s")
            return TimedOut(timeout)
        finally:
            if subscription is not None:
                subscription.dispose()

        logger.info(
            f"Found device {device.device_id} after {time.monotonic() - start:.2f}s"
        )
        return Found(device)


async def search(registry: DeviceRegistry, timeout: float = DISCOVERY_TIMEOUT_S) -> DiscoveryResult:
    """Shortcut for ``DiscoveryCoordinator(registry).search(timeout)``."""
    return await DiscoveryCoordinator(registry).search(timeout)


__all__ = ["DiscoveryCoordinator", "search"]
