"""Unit tests for dronectl device discovery."""

import asyncio
import time

import pytest

from dronectl.discovery import DiscoveryCoordinator, search
from dronectl.testing import SimulatedDevice, SimulatedRegistry
from dronectl.types import Found, TimedOut


class TestSearch:
    """Racing the first device against the discovery window."""

    @pytest.mark.asyncio
    async def test_device_found_early(self, registry, device):
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, registry.emit, device)

        start = time.monotonic()
        result = await DiscoveryCoordinator(registry).search(5.0)
        elapsed = time.monotonic() - start

        assert isinstance(result, Found)
        assert result.device is device
        assert 0.04 <= elapsed <= 0.15
        assert registry.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_silent_registry_times_out(self, registry):
        start = time.monotonic()
        result = await DiscoveryCoordinator(registry).search(1.0)
        elapsed = time.monotonic() - start

        assert isinstance(result, TimedOut)
        assert result.timeout == 1.0
        assert 1.0 <= elapsed <= 1.15
        assert registry.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_already_known_device_is_found(self, registry, device):
        registry.emit(device)
        result = await search(registry, 1.0)
        assert isinstance(result, Found)
        assert result.device is device

    @pytest.mark.asyncio
    async def test_only_first_device_counts(self, registry):
        first = SimulatedDevice(device_id="SIM/1")
        second = SimulatedDevice(device_id="SIM/2")
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, registry.emit, first)
        loop.call_later(0.02, registry.emit, second)

        result = await search(registry, 1.0)
        assert result.device is first

    @pytest.mark.asyncio
    async def test_cancellation_releases_subscription(self, registry):
        task = asyncio.create_task(search(registry, 5.0))
        await asyncio.sleep(0.05)
        assert registry.subscriber_count == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert registry.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_emit_from_other_thread(self, registry, device):
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, lambda: loop.run_in_executor(None, registry.emit, device))

        result = await search(registry, 2.0)
        assert isinstance(result, Found)

    @pytest.mark.asyncio
    async def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            await search(SimulatedRegistry(), 0)
