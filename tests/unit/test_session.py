"""Unit tests for dronectl VehicleSession."""

import asyncio

import pytest

from dronectl.exceptions import (
    CapabilityMissing,
    CommandFailure,
    ErrorCode,
    SessionClosedError,
    TeardownError,
)
from dronectl.session import Capabilities, VehicleSession
from dronectl.testing import CallLog, SimulatedDevice
from dronectl.types import CapabilityRole, GlobalPosition


class TestCreate:
    """Atomic construction."""

    @pytest.mark.asyncio
    async def test_resolves_all_capabilities(self, device):
        caps = await Capabilities.resolve(device)
        assert caps.heartbeat is device.heartbeat
        assert caps.control is device.control
        assert caps.position is device.position

    @pytest.mark.parametrize("role", list(CapabilityRole))
    @pytest.mark.asyncio
    async def test_missing_capability(self, role):
        log = CallLog()
        device = SimulatedDevice(call_log=log, missing=[role])

        with pytest.raises(CapabilityMissing) as exc_info:
            await VehicleSession.create(device)

        assert exc_info.value.roles == (role,)
        # Resolved sub-clients are released; the bare handle stays with the caller
        others = [r for r in CapabilityRole if r is not role]
        assert sorted(log.matching("heartbeat.") + log.matching("control.") + log.matching("position.")) == sorted(
            f"{r.value}.close" for r in others
        )
        assert device.close_count == 0

    @pytest.mark.asyncio
    async def test_all_missing_named(self):
        device = SimulatedDevice(missing=list(CapabilityRole))
        with pytest.raises(CapabilityMissing) as exc_info:
            await VehicleSession.create(device)
        assert set(exc_info.value.roles) == set(CapabilityRole)

    @pytest.mark.asyncio
    async def test_observables(self, session, device):
        await device.wait_until_ready(1.0)
        device.position.publish(GlobalPosition(1, 2, 3))
        assert session.identity.get() == "Simulated Copter"
        assert session.position.get() == GlobalPosition(1, 2, 3)
        assert session.link.get() is True
        assert session.device_id == "SIM/1"


class TestCommands:
    """Guided-mode precondition and serialization."""

    @pytest.mark.asyncio
    async def test_take_off_sends_mode_change_first(self, session, call_log):
        await session.take_off(50)
        assert call_log.calls == ["control.set_guided_mode", "control.take_off"]

    @pytest.mark.asyncio
    async def test_land_and_go_to(self, session, call_log):
        await session.land()
        await session.go_to(47.39, 8.54, 500)
        assert call_log.calls == [
            "control.set_guided_mode",
            "control.land",
            "control.set_guided_mode",
            "control.go_to",
        ]

    @pytest.mark.asyncio
    async def test_take_off_failure_then_land(self, session, device, call_log):
        device.control.fail_on("take_off", RuntimeError("rejected"))

        with pytest.raises(CommandFailure) as exc_info:
            await session.take_off(50)
        assert exc_info.value.command == "take_off"
        assert exc_info.value.stage == "take_off"
        assert isinstance(exc_info.value.cause, RuntimeError)

        await session.land()
        assert call_log.calls == [
            "control.set_guided_mode",
            "control.take_off",
            "control.set_guided_mode",
            "control.land",
        ]

    @pytest.mark.asyncio
    async def test_mode_change_failure_skips_action(self, session, device, call_log):
        device.control.fail_on("set_guided_mode", RuntimeError("no GPS"))

        with pytest.raises(CommandFailure) as exc_info:
            await session.land()
        assert exc_info.value.stage == "set_guided_mode"
        assert call_log.calls == ["control.set_guided_mode"]

    @pytest.mark.asyncio
    async def test_invalid_target_rejected_before_sending(self, session, call_log):
        with pytest.raises(ValueError):
            await session.go_to(95.0, 8.54, 500)
        assert call_log.calls == []

    @pytest.mark.asyncio
    async def test_commands_are_serialized(self, device, call_log):
        device.control.delay = 0.05
        session = await VehicleSession.create(device)
        try:
            first = asyncio.create_task(session.take_off(10))
            await asyncio.sleep(0.01)
            assert session.busy
            await asyncio.gather(first, session.land())
        finally:
            await session.close()
        assert call_log.calls[:4] == [
            "control.set_guided_mode",
            "control.take_off",
            "control.set_guided_mode",
            "control.land",
        ]


class TestClose:
    """Ordered teardown."""

    @pytest.mark.asyncio
    async def test_releases_sub_clients_before_device(self, device, call_log):
        session = await VehicleSession.create(device)
        await session.close()
        assert call_log.calls == [
            "position.close",
            "control.close",
            "heartbeat.close",
            "device.close",
        ]
        assert session.closed

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, device):
        session = await VehicleSession.create(device)
        await session.close()
        await session.close()
        assert device.close_count == 1

    @pytest.mark.asyncio
    async def test_command_after_close(self, device, call_log):
        session = await VehicleSession.create(device)
        await session.close()
        call_log.clear()

        with pytest.raises(CommandFailure) as exc_info:
            await session.land()
        assert exc_info.value.code is ErrorCode.SESSION_CLOSED
        assert call_log.calls == []

    @pytest.mark.asyncio
    async def test_failed_release_still_closes_device(self, device, call_log):
        device.control.fail_close(RuntimeError("stuck"))
        session = await VehicleSession.create(device)

        with pytest.raises(TeardownError) as exc_info:
            await session.close()
        assert [step for step, _ in exc_info.value.failures] == ["control"]
        assert call_log.calls[-1] == "device.close"

    @pytest.mark.asyncio
    async def test_close_during_telemetry(self):
        log = CallLog()
        device = SimulatedDevice(call_log=log, telemetry_interval=0.001)
        session = await VehicleSession.create(device)
        seen = []
        session.position.subscribe(seen.append)
        await asyncio.sleep(0.02)

        await session.close()
        count = len(seen)
        await asyncio.sleep(0.02)
        assert len(seen) == count
        assert log.calls == [
            "position.close",
            "control.close",
            "heartbeat.close",
            "device.close",
        ]

    @pytest.mark.asyncio
    async def test_close_waits_for_running_command(self):
        log = CallLog()
        device = SimulatedDevice(call_log=log, command_delay=0.05)
        session = await VehicleSession.create(device)

        command = asyncio.create_task(session.take_off(10))
        await asyncio.sleep(0.01)
        await session.close()
        await command

        assert log.calls == [
            "control.set_guided_mode",
            "control.take_off",
            "position.close",
            "control.close",
            "heartbeat.close",
            "device.close",
        ]

    @pytest.mark.asyncio
    async def test_queued_command_refused_once_closing(self):
        log = CallLog()
        device = SimulatedDevice(call_log=log, command_delay=0.05)
        session = await VehicleSession.create(device)

        first = asyncio.create_task(session.take_off(10))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(session.land())
        await asyncio.sleep(0)
        await session.close()

        await first
        with pytest.raises(SessionClosedError):
            await second
        assert "control.land" not in log.calls
        assert log.calls[-1] == "device.close"

    @pytest.mark.asyncio
    async def test_async_context_manager(self, device):
        async with await VehicleSession.create(device) as session:
            assert not session.closed
        assert session.closed
        assert device.close_count == 1
