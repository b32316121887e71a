"""Broadlink-dialect local protocol constants."""

from __future__ import annotations

from enum import IntEnum, StrEnum


# Packet framing
MAGIC = b"\x5a\xa5\xaa\x55\x5a\xa5\xaa\x55"
DEVICE_CONSTANT = b"\x2a\x27"

# Header is fixed size, encrypted payload follows
HEADER_SIZE = 0x38
BLOCK_SIZE = 16

# Header field offsets
OFFSET_CHECKSUM = 0x20
OFFSET_ERROR = 0x22
OFFSET_CONSTANT = 0x24
OFFSET_COMMAND = 0x26
OFFSET_COUNTER = 0x28
OFFSET_MAC = 0x2A
OFFSET_DEVICE_ID = 0x30
OFFSET_PAYLOAD_CHECKSUM = 0x34

CHECKSUM_SEED = 0xBEAF
COUNTER_MASK = 0xFFFFF

# Well-known keys used before the handshake
DEFAULT_KEY = bytes([
    0x09, 0x76, 0x28, 0x34, 0x3F, 0xE9, 0x9E, 0x23,
    0x76, 0x5C, 0x15, 0x13, 0xAC, 0xCF, 0x8B, 0x02,
])
DEFAULT_IV = bytes([
    0x56, 0x2E, 0x17, 0x99, 0x6D, 0x09, 0x3D, 0x28,
    0xDD, 0xB3, 0xBA, 0x69, 0x5A, 0x2E, 0x6F, 0x58,
])
DEFAULT_DEVICE_ID = b"\x00\x00\x00\x00"

# Auth request payload layout
AUTH_PAYLOAD_SIZE = 0x50
AUTH_IDENTITY = b"Test  1"

# Auth reply: device id in [0:4], new key in [4:20]
AUTH_REPLY_ID_SLICE = slice(0x00, 0x04)
AUTH_REPLY_KEY_SLICE = slice(0x04, 0x14)

# Discovery
DISCOVERY_PACKET_SIZE = 0x30
DISCOVERY_REPLY_MIN_SIZE = 0x40
DISCOVERY_NAME_SIZE = 0x40
DISCOVERY_PORT = 80
BROADCAST_ADDRESS = "255.255.255.255"


class Command(IntEnum):
    """Protocol opcodes written at header offset 0x26."""

    DISCOVER = 0x06
    AUTH = 0x65
    COMMAND = 0x6A
    AUTH_REPLY = 0xE9
    COMMAND_REPLY = 0xEE


class Reachability(StrEnum):
    """Last known reachability of a device."""

    UNKNOWN = "unknown"
    ACTIVE = "active"
    INACTIVE = "inactive"
