"""
Pytest configuration and fixtures for dronectl tests.

Unit tests run against the simulated link in ``dronectl.testing``.
Integration tests need a running ArduPilot SITL and are skipped unless
``DRONECTL_SITL_HOST`` is set.
"""

from __future__ import annotations

import os

import pytest
import pytest_asyncio

from dronectl.log import LogLevel, configure_logging
from dronectl.session import VehicleSession
from dronectl.testing import CallLog, SimulatedDevice, SimulatedRegistry
from dronectl.transport import TransportConfig

SITL_HOST_ENV = "DRONECTL_SITL_HOST"
SITL_PORT_ENV = "DRONECTL_SITL_PORT"


def pytest_configure(config: pytest.Config) -> None:
    """Pytest configuration."""
    configure_logging(level=LogLevel.DEBUG, colored=False)


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Auto-apply markers based on test path."""
    for item in items:
        path_str = str(item.path)
        if "/unit/" in path_str:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path_str:
            item.add_marker(pytest.mark.integration)


# ---------------------------------------------------------------------------
# Unit test fixtures (simulated link)
# ---------------------------------------------------------------------------


@pytest.fixture
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture
def device(call_log: CallLog) -> SimulatedDevice:
    """Simulated device with all three capabilities, no telemetry drift."""
    return SimulatedDevice(call_log=call_log)


@pytest.fixture
def registry(call_log: CallLog) -> SimulatedRegistry:
    return SimulatedRegistry(call_log)


@pytest_asyncio.fixture
async def session(device: SimulatedDevice):
    """VehicleSession over the simulated device, closed after the test."""
    session = await VehicleSession.create(device)
    yield session
    await session.close()


# ---------------------------------------------------------------------------
# Integration fixtures (SITL)
# ---------------------------------------------------------------------------


@pytest.fixture
def sitl_config() -> TransportConfig:
    """Link settings of an externally started SITL."""
    host = os.environ.get(SITL_HOST_ENV)
    if not host:
        pytest.skip(f"{SITL_HOST_ENV} not set; start SITL and export it to run")
    return TransportConfig(host=host, port=int(os.environ.get(SITL_PORT_ENV, "5760")))
