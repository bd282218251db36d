"""
dronectl - interactive control of a single MAVLink drone.

Finds one vehicle within a bounded discovery window, binds it to a
``VehicleSession`` (heartbeat, control and position sub-clients) and drives
it from a terminal view.

Example:
    from dronectl import MavsdkTransport, TransportConfig, search_vehicle

    async with await MavsdkTransport.open(TransportConfig()) as transport:
        async with await search_vehicle(transport) as session:
            await session.take_off(10)
            await session.land()
"""

__version__ = "1.0.0"

from .app import run, search_vehicle
from .discovery import DiscoveryCoordinator, search
from .dispatcher import (
    CommandDispatcher,
    Exit,
    GoTo,
    Land,
    Outcome,
    ShowStatus,
    TakeOff,
    parse_intent,
)
from .exceptions import (
    CapabilityMissing,
    CommandFailure,
    ConstructionError,
    DiscoveryTimedOut,
    DronectlError,
    ErrorCode,
    ErrorSeverity,
    InitializationTimedOut,
    IntentError,
    TeardownError,
)
from .helpers import LatestValue, ReadOnlyValue, Subscription
from .session import Capabilities, VehicleSession
from .transport import MavsdkTransport, TransportConfig, TransportSession
from .types import (
    CapabilityRole,
    DiscoveryResult,
    Found,
    GeoPoint,
    GlobalPosition,
    TimedOut,
)

__all__ = [
    "__version__",
    # Run
    "run",
    "search_vehicle",
    # Discovery
    "DiscoveryCoordinator",
    "search",
    "DiscoveryResult",
    "Found",
    "TimedOut",
    # Session
    "VehicleSession",
    "Capabilities",
    "CapabilityRole",
    # Commands
    "CommandDispatcher",
    "Outcome",
    "TakeOff",
    "Land",
    "GoTo",
    "ShowStatus",
    "Exit",
    "parse_intent",
    # Transport
    "TransportConfig",
    "TransportSession",
    "MavsdkTransport",
    # Values
    "GlobalPosition",
    "GeoPoint",
    "LatestValue",
    "ReadOnlyValue",
    "Subscription",
    # Errors
    "DronectlError",
    "ErrorCode",
    "ErrorSeverity",
    "ConstructionError",
    "DiscoveryTimedOut",
    "InitializationTimedOut",
    "CapabilityMissing",
    "CommandFailure",
    "IntentError",
    "TeardownError",
]
