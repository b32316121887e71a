"""Local UDP control of Efergy EGO smart outlets."""

from __future__ import annotations

from .const import VERSION
from .devices import DeviceVariant, EgoOutlet, create_variant
from .discovery import DeviceRegistry, DiscoveryManager, DiscoverySweep
from .hub import DeviceHub
from .protocol import Command, DeviceSession, Host, PacketCodec, Reachability, checksum

__version__ = VERSION

__all__ = [
    "Command",
    "DeviceHub",
    "DeviceRegistry",
    "DeviceSession",
    "DeviceVariant",
    "DiscoveryManager",
    "DiscoverySweep",
    "EgoOutlet",
    "Host",
    "PacketCodec",
    "Reachability",
    "checksum",
    "create_variant",
]
