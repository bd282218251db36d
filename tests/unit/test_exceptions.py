"""Unit tests for dronectl exception types."""

import pytest

from dronectl.exceptions import (
    CapabilityMissing,
    CommandFailure,
    ConstructionError,
    DiscoveryTimedOut,
    DronectlError,
    ErrorCode,
    ErrorSeverity,
    InitializationTimedOut,
    IntentError,
    SessionClosedError,
    TeardownError,
)
from dronectl.types import CapabilityRole


class TestDronectlError:
    """Base exception."""

    def test_message(self):
        e = DronectlError("test message")
        assert str(e) == "test message"
        assert e.message == "test message"
        assert e.code is ErrorCode.COMMAND_FAILED

    def test_with_original_error(self):
        inner = ValueError("inner")
        e = DronectlError("outer", original_error=inner)
        assert str(e) == "outer: inner"
        assert e.original_error is inner

    def test_details_skip_none(self):
        e = DronectlError("msg", device="SIM/1", extra=None)
        assert e.details == {"device": "SIM/1"}
        assert str(e) == "msg (device=SIM/1)"


class TestDiscoveryExceptions:
    """Discovery and construction errors."""

    def test_discovery_timed_out(self):
        e = DiscoveryTimedOut(60.0, address="tcpout://127.0.0.1:5760")
        assert "60s" in str(e)
        assert e.timeout == 60.0
        assert e.recoverable
        assert e.severity is ErrorSeverity.WARNING

    def test_initialization_timed_out(self):
        e = InitializationTimedOut(10.0, device="SIM/1")
        assert e.code is ErrorCode.INITIALIZATION_TIMEOUT
        assert not e.recoverable
        assert "10s" in str(e)

    def test_capability_missing_names_roles(self):
        e = CapabilityMissing([CapabilityRole.CONTROL, CapabilityRole.POSITION])
        assert e.roles == (CapabilityRole.CONTROL, CapabilityRole.POSITION)
        assert str(e) == "No control, position client found"
        assert e.severity is ErrorSeverity.FATAL

    def test_construction_error(self):
        inner = OSError("refused")
        e = ConstructionError(address="tcpout://h:1", original_error=inner)
        assert e.code is ErrorCode.CONSTRUCTION_FAILED
        assert "refused" in str(e)
        assert e.details["address"] == "tcpout://h:1"


class TestCommandExceptions:
    """Command and input errors."""

    def test_command_failure_stage(self):
        cause = RuntimeError("denied")
        e = CommandFailure("take_off", stage="set_guided_mode", cause=cause)
        assert str(e) == "take_off failed during set_guided_mode: denied"
        assert e.cause is cause
        assert e.recoverable

    def test_command_failure_same_stage(self):
        e = CommandFailure("land", stage="land")
        assert str(e) == "land failed"

    def test_session_closed(self):
        e = SessionClosedError("land")
        assert isinstance(e, CommandFailure)
        assert e.code is ErrorCode.SESSION_CLOSED
        assert "session closed" in str(e)
        assert e.command == "land"
        with pytest.raises(SessionClosedError):
            raise e

    def test_intent_error_is_value_error(self):
        with pytest.raises(ValueError):
            raise IntentError("bad", text="fly")


class TestTeardownError:
    """Aggregated teardown failures."""

    def test_collects_failures(self):
        failures = [("position", RuntimeError("a")), ("device", OSError("b"))]
        e = TeardownError("session SIM/1", failures)
        assert e.failures == failures
        assert e.owner == "session SIM/1"
        assert "2 step(s)" in str(e)
        assert "position: a" in str(e)
