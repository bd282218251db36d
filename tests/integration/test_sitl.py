"""
SITL integration tests for dronectl.

These tests need an ArduPilot SITL reachable over TCP and fly the
simulated copter.

Run with:
    DRONECTL_SITL_HOST=127.0.0.1 pytest tests/integration/ -v

Environment variables:
    DRONECTL_SITL_HOST - SITL host (tests are skipped when unset)
    DRONECTL_SITL_PORT - SITL TCP port (default: 5760)
"""

import asyncio

import pytest

from dronectl.app import search_vehicle
from dronectl.helpers import wait_for_condition
from dronectl.transport import MavsdkTransport

pytestmark = [pytest.mark.integration]


class TestSitlSession:
    """Discovery, telemetry and commands against SITL."""

    @pytest.mark.asyncio
    async def test_discovers_and_reports_position(self, sitl_config):
        async with await MavsdkTransport.open(sitl_config) as transport:
            async with await search_vehicle(transport, timeout=60.0) as session:
                assert session.identity.get()
                await wait_for_condition(lambda: session.position.get() is not None, timeout=30)
                position = session.position.get()
                assert -90 <= position.latitude_deg <= 90
                assert session.link.get() is True

    @pytest.mark.asyncio
    async def test_take_off_and_land(self, sitl_config):
        async with await MavsdkTransport.open(sitl_config) as transport:
            async with await search_vehicle(transport, timeout=60.0) as session:
                await wait_for_condition(lambda: session.position.get() is not None, timeout=30)
                await session.take_off(10)
                await wait_for_condition(
                    lambda: session.position.get().relative_altitude_m > 8, timeout=60
                )
                await session.land()
                await wait_for_condition(
                    lambda: session.position.get().relative_altitude_m < 1, timeout=90
                )
                await asyncio.sleep(1)
