"""Constants for the Efergy EGO local control library."""

from __future__ import annotations

VERSION = "1.0.0"

# Device type/model tags before a variant is known
DEVICE_TYPE_UNKNOWN = "unknown"
DEVICE_MODEL_UNKNOWN = "unknown"

# Session timings (seconds)
DISPOSE_GRACE_CALLBACK = 0.05
DISPOSE_GRACE = 0.5
READY_TIMEOUT = 5.0

# Discovery timings (seconds)
DISCOVERY_SWEEP_TIMEOUT = 0.3
DEFAULT_DISCOVERY_INTERVAL = 2.0
DEFAULT_DISCOVERY_TIMEOUT = 60.0

# Config keys
CONF_LOCAL_IP = "local_ip"
CONF_DISCOVERY_INTERVAL = "discovery_interval"
CONF_DISCOVERY_TIMEOUT = "discovery_timeout"

# State update keys
STATE_POWER = "power"


def format_mac(mac: bytes) -> str:
    """Format a 6-byte MAC as upper-case colon-separated hex."""
    return ":".join(f"{b:02X}" for b in mac)
