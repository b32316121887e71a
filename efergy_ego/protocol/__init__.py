"""Broadlink-dialect local protocol implementation."""

from .constants import Command, Reachability
from .encryption import DeviceCipher, checksum
from .messages import DeviceMessage, PacketCodec
from .session import DeviceSession, Host

__all__ = [
    "Command",
    "DeviceCipher",
    "DeviceMessage",
    "DeviceSession",
    "Host",
    "PacketCodec",
    "Reachability",
    "checksum",
]
