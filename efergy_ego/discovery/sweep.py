"""Single broadcast-and-listen discovery sweep."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import struct
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import netifaces

from ..const import DISCOVERY_SWEEP_TIMEOUT, format_mac
from ..protocol.constants import (
    BROADCAST_ADDRESS,
    DISCOVERY_NAME_SIZE,
    DISCOVERY_PACKET_SIZE,
    DISCOVERY_PORT,
    DISCOVERY_REPLY_MIN_SIZE,
    OFFSET_CHECKSUM,
    OFFSET_COMMAND,
    Command,
)
from ..protocol.encryption import checksum
from ..protocol.session import Host

_LOGGER = logging.getLogger(__name__)

# Reply layout
REPLY_TYPE_OFFSET = 0x34
REPLY_MAC_SLICE = slice(0x3A, 0x40)
REPLY_NAME_OFFSET = 0x40


@dataclass
class DiscoveredDevice:
    """Identity of a device that answered a discovery broadcast."""

    host: Host
    mac: bytes
    type_code: int
    name: str = ""

    @property
    def mac_address(self) -> str:
        return format_mac(self.mac)


def _detect_outbound_ip() -> str | None:
    try:
        # Connecting a UDP socket selects the outbound interface without sending data
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            local_ip = s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        _LOGGER.debug("Failed to detect outbound IP", exc_info=True)
        return None

    if ipaddress.IPv4Address(local_ip).is_loopback:
        return None
    return local_ip


def detect_local_ip() -> str | None:
    """Return the first non-loopback IPv4 address bound to a local interface.

    Falls back to the address of the default route when interface
    enumeration yields nothing usable.
    """
    for ifname in netifaces.interfaces():
        for addrinfo in netifaces.ifaddresses(ifname).get(netifaces.AF_INET, []):
            ip_str = addrinfo.get("addr")
            if ip_str and not ipaddress.IPv4Address(ip_str).is_loopback:
                _LOGGER.debug("Using %s on %s for discovery", ip_str, ifname)
                return ip_str
    return _detect_outbound_ip()


def build_discovery_packet(local_ip: str, port: int, now: datetime | None = None) -> bytes:
    """Build the 0x30-byte broadcast packet announcing where replies should go."""
    if now is None:
        now = datetime.now().astimezone()

    offset = now.utcoffset()
    timezone = int(offset.total_seconds() / 3600) if offset is not None else 0

    packet = bytearray(DISCOVERY_PACKET_SIZE)
    if timezone < 0:
        packet[0x08] = 0xFF + timezone - 1
        packet[0x09:0x0B] = b"\xff\xff"
    else:
        packet[0x08] = timezone

    struct.pack_into("<H", packet, 0x0C, now.year)
    packet[0x0E] = now.minute
    packet[0x0F] = now.hour
    packet[0x10] = now.year % 100
    packet[0x11] = now.isoweekday()
    packet[0x12] = now.day
    packet[0x13] = now.month

    packet[0x18:0x1C] = ipaddress.IPv4Address(local_ip).packed
    struct.pack_into("<H", packet, 0x1C, port)
    packet[OFFSET_COMMAND] = Command.DISCOVER

    struct.pack_into("<H", packet, OFFSET_CHECKSUM, checksum(packet))
    return bytes(packet)


def parse_discovery_reply(data: bytes, addr: tuple) -> DiscoveredDevice | None:
    """Extract MAC, type code and name from a discovery reply."""
    if len(data) < DISCOVERY_REPLY_MIN_SIZE:
        return None

    mac = bytes(data[REPLY_MAC_SLICE])[::-1]
    (type_code,) = struct.unpack_from("<H", data, REPLY_TYPE_OFFSET)
    name_field = bytes(data[REPLY_NAME_OFFSET : REPLY_NAME_OFFSET + DISCOVERY_NAME_SIZE])
    name = name_field.split(b"\x00", 1)[0].decode("utf-8", errors="replace")

    return DiscoveredDevice(
        host=Host(address=addr[0], port=addr[1]),
        mac=mac,
        type_code=type_code,
        name=name,
    )


class DiscoverySweep:
    """Sends one discovery broadcast and collects replies until it times out."""

    def __init__(
        self,
        local_ip: str,
        on_device: Callable[[DiscoveredDevice], None] | None = None,
        timeout: float = DISCOVERY_SWEEP_TIMEOUT,
        target: tuple[str, int] = (BROADCAST_ADDRESS, DISCOVERY_PORT),
    ) -> None:
        self._local_ip = local_ip
        self._on_device = on_device
        self._timeout = timeout
        self._target = target
        self._transport: asyncio.DatagramTransport | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._closed = asyncio.Event()
        self._replies: list[DiscoveredDevice] = []

    @property
    def local_ip(self) -> str:
        return self._local_ip

    @property
    def replies(self) -> list[DiscoveredDevice]:
        """Return every parsed reply, duplicates included."""
        return list(self._replies)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def start(self) -> None:
        """Bind, send the broadcast and schedule the auto-close."""
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _DiscoveryProtocol(self),
            local_addr=(self._local_ip, 0),
            allow_broadcast=True,
        )
        self._transport = transport
        self._timeout_handle = loop.call_later(self._timeout, self.close)

        port = transport.get_extra_info("sockname")[1]
        packet = build_discovery_packet(self._local_ip, port)
        _LOGGER.debug("Sending discovery from %s:%s to %s:%s", self._local_ip, port, *self._target)
        transport.sendto(packet, self._target)

    def close(self) -> None:
        """Stop listening. Safe to call more than once."""
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            _LOGGER.debug("Discovery sweep closed (%d replies)", len(self._replies))
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _handle_reply(self, data: bytes, addr: tuple) -> None:
        device = parse_discovery_reply(data, addr)
        if device is None:
            _LOGGER.debug("Ignoring short discovery reply from %s", addr[0])
            return

        self._replies.append(device)
        _LOGGER.debug(
            "Discovery reply from %s: mac=%s type=%#06x name=%r",
            addr[0], device.mac_address, device.type_code, device.name,
        )
        if self._on_device:
            try:
                self._on_device(device)
            except Exception:
                _LOGGER.debug("Discovery callback error", exc_info=True)


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Internal DatagramProtocol for discovery replies."""

    def __init__(self, sweep: DiscoverySweep) -> None:
        self._sweep = sweep

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._sweep._handle_reply(data, addr)

    def error_received(self, exc: Exception) -> None:
        _LOGGER.debug("UDP error during discovery: %s", exc)
