"""Unit tests for dronectl command parsing and dispatching."""

import asyncio

import pytest

from dronectl.dispatcher import (
    CommandDispatcher,
    Exit,
    GoTo,
    Land,
    ShowStatus,
    TakeOff,
    describe_status,
    parse_intent,
)
from dronectl.exceptions import CommandFailure, IntentError
from dronectl.types import GlobalPosition


class TestParseIntent:
    """Textual commands to intents."""

    @pytest.mark.parametrize(
        "text, intent",
        [
            ("takeoff 50", TakeOff(50.0)),
            ("TAKE-OFF 12.5", TakeOff(12.5)),
            ("land", Land()),
            ("goto 47.39 8.54 500", GoTo(47.39, 8.54, 500.0)),
            ("  status  ", ShowStatus()),
            ("exit", Exit()),
            ("quit", Exit()),
        ],
    )
    def test_valid(self, text, intent):
        assert parse_intent(text) == intent

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "fly",
            "takeoff",
            "takeoff high",
            "takeoff -5",
            "goto 47.39 8.54",
            "goto 95 8.54 500",
            "land now",
        ],
    )
    def test_invalid(self, text):
        with pytest.raises(IntentError):
            parse_intent(text)

    def test_intent_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_intent("takeoff x")


class TestDescribeStatus:
    """Status line."""

    @pytest.mark.asyncio
    async def test_before_telemetry(self, session):
        assert describe_status(session) == "unknown vehicle | no position yet | link up"

    @pytest.mark.asyncio
    async def test_with_telemetry(self, session, device):
        await device.wait_until_ready(1.0)
        device.position.publish(GlobalPosition(473977419, 85455938, 488150))
        device.heartbeat.set_link(False)
        assert describe_status(session) == (
            "Simulated Copter | Lat: 47.3977419 | Lon: 8.5455938 | Alt: 488.150m | link down"
        )


class TestDispatch:
    """One intent, one outcome."""

    @pytest.mark.asyncio
    async def test_take_off(self, session, call_log):
        outcome = await CommandDispatcher(session).dispatch(TakeOff(50))
        assert outcome.ok
        assert outcome.intent == TakeOff(50)
        assert call_log.calls == ["control.set_guided_mode", "control.take_off"]

    @pytest.mark.asyncio
    async def test_failure_becomes_outcome(self, session, device):
        device.control.fail_on("land", RuntimeError("denied"))
        outcome = await CommandDispatcher(session).dispatch(Land())
        assert not outcome.ok
        assert isinstance(outcome.error, CommandFailure)
        assert "land failed" in outcome.message

    @pytest.mark.asyncio
    async def test_status_sends_nothing(self, session, call_log):
        outcome = await CommandDispatcher(session).dispatch(ShowStatus())
        assert outcome.ok
        assert "link up" in outcome.message
        assert call_log.calls == []


class TestRun:
    """Consumer loop."""

    @pytest.mark.asyncio
    async def test_runs_until_exit(self, session, call_log):
        reported = []
        dispatcher = CommandDispatcher(session, reporter=reported.append)
        task = asyncio.create_task(dispatcher.run())

        assert dispatcher.submit(Land())
        await asyncio.wait_for(_idle(dispatcher), 1.0)
        assert dispatcher.submit(Exit())
        await asyncio.wait_for(task, 1.0)

        assert [o.intent for o in reported] == [Land(), Exit()]
        assert dispatcher.stopped
        assert dispatcher.outcome.get().intent == Exit()
        assert not dispatcher.submit(Land())

    @pytest.mark.asyncio
    async def test_refuses_while_busy(self, session, device, call_log):
        device.control.delay = 0.05
        dispatcher = CommandDispatcher(session)
        task = asyncio.create_task(dispatcher.run())
        try:
            assert dispatcher.submit(TakeOff(10))
            assert dispatcher.busy
            assert dispatcher.current == TakeOff(10)
            assert not dispatcher.submit(Land())
            await asyncio.wait_for(_idle(dispatcher), 1.0)
            assert not dispatcher.busy
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        assert "control.land" not in call_log.calls

    @pytest.mark.asyncio
    async def test_failure_keeps_loop_running(self, session, device, call_log):
        device.control.fail_on("take_off", RuntimeError("rejected"))
        reported = []
        dispatcher = CommandDispatcher(session, reporter=reported.append)
        task = asyncio.create_task(dispatcher.run())

        dispatcher.submit(TakeOff(50))
        await asyncio.wait_for(_idle(dispatcher), 1.0)
        dispatcher.submit(Land())
        await asyncio.wait_for(_idle(dispatcher), 1.0)
        dispatcher.submit(Exit())
        await asyncio.wait_for(task, 1.0)

        assert [o.ok for o in reported] == [False, True, True]
        assert call_log.calls == [
            "control.set_guided_mode",
            "control.take_off",
            "control.set_guided_mode",
            "control.land",
        ]

    @pytest.mark.asyncio
    async def test_failing_reporter_is_logged(self, session):
        def reporter(outcome):
            raise RuntimeError("display gone")

        dispatcher = CommandDispatcher(session, reporter=reporter)
        task = asyncio.create_task(dispatcher.run())
        dispatcher.submit(Exit())
        await asyncio.wait_for(task, 1.0)
        assert dispatcher.outcome.get().ok


async def _idle(dispatcher):
    while dispatcher.busy:
        await asyncio.sleep(0.005)
