"""Device discovery for Efergy EGO outlets on the local network."""

from .manager import DiscoveryManager
from .registry import DeviceRegistry
from .sweep import (
    DiscoveredDevice,
    DiscoverySweep,
    build_discovery_packet,
    detect_local_ip,
    parse_discovery_reply,
)

__all__ = [
    "DeviceRegistry",
    "DiscoveredDevice",
    "DiscoveryManager",
    "DiscoverySweep",
    "build_discovery_packet",
    "detect_local_ip",
    "parse_discovery_reply",
]
