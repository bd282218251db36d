"""
Central configuration constants for dronectl.

All timing, scaling, and identity values are defined here
for easy tuning and documentation.
"""

# Transport Defaults

# Host of the MAVLink router / autopilot TCP endpoint
DEFAULT_ROUTER_HOST = "127.0.0.1"

# TCP port of the MAVLink router / autopilot endpoint (SITL serial0)
DEFAULT_ROUTER_PORT = 5760

# Identifier of the router, used to name the link thread and in logs
DEFAULT_ROUTER_ID = "ROUTER"

# gRPC port of the embedded mavsdk_server
DEFAULT_MAVSDK_SERVER_PORT = 50051

# MAVLink identity used by this ground station
GCS_SYSTEM_ID = 255
GCS_COMPONENT_ID = 190


# Discovery Constants

# Discovery window: how long to wait for a vehicle to appear (seconds)
# Not user-configurable yet; candidate for a CLI flag.
DISCOVERY_TIMEOUT_S = 60.0

# Maximum time for a discovered device to finish its init handshake (seconds)
INITIALIZATION_LIMIT_S = 10.0

# Interval between identity requests during the init handshake (seconds)
INITIALIZATION_POLL_S = 0.5


# Link Constants

# Maximum time to wait for a single call marshalled onto the MAVSDK loop (seconds)
LINK_CALL_TIMEOUT_S = 30.0

# Maximum time to wait for the MAVSDK loop thread to come up (seconds)
LINK_STARTUP_TIMEOUT_S = 5.0


# Telemetry Encoding

# GLOBAL_POSITION_INT lat/lon are degrees * 1e7
LATLON_SCALE = 10_000_000

# GLOBAL_POSITION_INT alt/relative_alt are millimetres
ALT_SCALE = 1_000


# View Constants

# Redraw / input poll interval of the live view (seconds)
REFRESH_INTERVAL_S = 0.1

# Key poll interval inside a modal prompt (seconds)
PROMPT_POLL_INTERVAL_S = 0.05
