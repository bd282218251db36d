"""
Exception hierarchy for dronectl.

A few base classes with error codes. Discovery and construction errors are
fatal to the current run; command failures are recovered by the dispatcher.
"""
from __future__ import annotations

from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple


class ErrorCode(Enum):
    """Error codes for categorizing exceptions."""
    # Construction errors (1xx)
    CONSTRUCTION_FAILED = 100
    LINK_UNAVAILABLE = 101

    # Discovery errors (2xx)
    DISCOVERY_TIMEOUT = 200
    INITIALIZATION_TIMEOUT = 201
    CAPABILITY_MISSING = 202

    # Command errors (3xx)
    COMMAND_FAILED = 300
    SESSION_CLOSED = 301
    INVALID_INTENT = 302

    # Teardown errors (4xx)
    TEARDOWN_FAILED = 400


class ErrorSeverity(Enum):
    """Severity level of an error."""
    WARNING = auto()
    ERROR = auto()
    CRITICAL = auto()
    FATAL = auto()


class DronectlError(Exception):
    """
    Base exception for all dronectl errors.

    All errors have:
    - message: Human-readable description
    - code: ErrorCode for programmatic handling
    - severity: How serious the error is
    - recoverable: Whether the run can continue
    - details: Additional context as key-value pairs
    - original_error: The underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.COMMAND_FAILED,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        recoverable: bool = True,
        original_error: Optional[BaseException] = None,
        **details: Any
    ):
        self.message = message
        self.code = code
        self.severity = severity
        self.recoverable = recoverable
        self.original_error = original_error
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}
        super().__init__(message)

    def __str__(self) -> str:
        base = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            base += f" ({detail_str})"
        if self.original_error is not None:
            base += f": {self.original_error}"
        return base


class ConstructionError(DronectlError):
    """Transport or device registry could not be set up."""

    def __init__(
        self,
        message: str = "Failed to set up the vehicle link",
        address: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        **details: Any
    ):
        super().__init__(
            message, ErrorCode.CONSTRUCTION_FAILED, ErrorSeverity.FATAL, False,
            original_error, address=address, **details
        )


class DiscoveryTimedOut(DronectlError):
    """No device appeared within the discovery window."""

    def __init__(self, timeout: float, address: Optional[str] = None):
        super().__init__(
            f"No device found within {timeout:g}s",
            ErrorCode.DISCOVERY_TIMEOUT, ErrorSeverity.WARNING, True,
            address=address,
        )
        self.timeout = timeout


class InitializationTimedOut(DronectlError):
    """A discovered device did not finish its init handshake in time."""

    def __init__(
        self,
        timeout: float,
        device: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(
            f"Device did not finish initialization within {timeout:g}s",
            ErrorCode.INITIALIZATION_TIMEOUT, ErrorSeverity.ERROR, False,
            original_error, device=device,
        )
        self.timeout = timeout


class CapabilityMissing(DronectlError):
    """A discovered device lacks one or more required capabilities."""

    def __init__(self, roles: Sequence[Any], device: Optional[str] = None):
        self.roles: Tuple[Any, ...] = tuple(roles)
        names = ", ".join(getattr(r, "value", str(r)) for r in self.roles)
        super().__init__(
            f"No {names} client found",
            ErrorCode.CAPABILITY_MISSING, ErrorSeverity.FATAL, False,
            device=device,
        )


class CommandFailure(DronectlError):
    """A vehicle command's send or acknowledgement failed."""

    def __init__(
        self,
        command: str,
        stage: Optional[str] = None,
        cause: Optional[BaseException] = None,
        reason: Optional[str] = None,
        code: ErrorCode = ErrorCode.COMMAND_FAILED,
    ):
        message = f"{command} failed"
        if stage and stage != command:
            message += f" during {stage}"
        super().__init__(
            message, code, ErrorSeverity.ERROR, True, cause, reason=reason,
        )
        self.command = command
        self.stage = stage
        self.cause = cause


class SessionClosedError(CommandFailure):
    """A command was issued on a session that is closed or closing."""

    def __init__(self, command: str):
        super().__init__(
            command, reason="session closed", code=ErrorCode.SESSION_CLOSED
        )


class IntentError(DronectlError, ValueError):
    """Operator input could not be turned into a command."""

    def __init__(self, message: str, text: Optional[str] = None):
        super().__init__(
            message, ErrorCode.INVALID_INTENT, ErrorSeverity.WARNING, True,
            input=text,
        )


class TeardownError(DronectlError):
    """One or more release steps failed; all steps were still attempted."""

    def __init__(self, owner: str, failures: Iterable[Tuple[str, BaseException]]):
        self.failures: List[Tuple[str, BaseException]] = list(failures)
        steps = ", ".join(f"{step}: {err}" for step, err in self.failures)
        super().__init__(
            f"Teardown of {owner} failed in {len(self.failures)} step(s) [{steps}]",
            ErrorCode.TEARDOWN_FAILED, ErrorSeverity.ERROR, False,
        )
        self.owner = owner


__all__ = [
    # Enums
    "ErrorCode",
    "ErrorSeverity",
    # Base
    "DronectlError",
    # Taxonomy
    "ConstructionError",
    "DiscoveryTimedOut",
    "InitializationTimedOut",
    "CapabilityMissing",
    "CommandFailure",
    "SessionClosedError",
    "IntentError",
    "TeardownError",
]
