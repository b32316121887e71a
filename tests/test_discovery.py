"""Tests for discovery sweeps, reply parsing and the device registry."""

from __future__ import annotations

import asyncio
import struct
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from efergy_ego.devices import EgoOutlet
from efergy_ego.discovery.manager import DiscoveryManager
from efergy_ego.discovery.registry import DeviceRegistry
from efergy_ego.discovery.sweep import (
    DiscoveredDevice,
    DiscoverySweep,
    build_discovery_packet,
    detect_local_ip,
    parse_discovery_reply,
)
from efergy_ego.protocol.constants import Command
from efergy_ego.protocol.encryption import checksum
from efergy_ego.protocol.messages import PacketCodec
from efergy_ego.protocol.session import DeviceSession, Host

EGO_TYPE_CODE = 0x271D


def _make_reply(mac: bytes, type_code: int = EGO_TYPE_CODE, name: bytes = b"Kitchen") -> bytes:
    """Build a discovery reply: type code at 0x34, reversed MAC at 0x3A, name at 0x40."""
    reply = bytearray(0x80)
    struct.pack_into("<H", reply, 0x34, type_code)
    reply[0x3A:0x40] = mac[::-1]
    reply[0x40 : 0x40 + len(name)] = name
    return bytes(reply)


class _FakeOutlet(asyncio.DatagramProtocol):
    """Answers discovery broadcasts and auth requests on the loopback interface."""

    def __init__(self, mac: bytes, auth_reply_payload: bytes) -> None:
        self.mac = mac
        self.codec = PacketCodec(mac)
        self.auth_reply_payload = auth_reply_payload
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        if len(data) == 0x30 and data[0x26] == Command.DISCOVER:
            # Two identical replies: the second must be treated as a duplicate
            self.transport.sendto(_make_reply(self.mac), addr)
            self.transport.sendto(_make_reply(self.mac), addr)
        elif data[0x26] == Command.AUTH:
            self.transport.sendto(self.codec.encode(Command.AUTH_REPLY, self.auth_reply_payload), addr)


class TestBuildDiscoveryPacket:
    @pytest.fixture
    def now(self) -> datetime:
        return datetime(2026, 10, 19, 14, 35, tzinfo=timezone(timedelta(hours=2)))

    def test_local_ip_octets(self, now: datetime) -> None:
        packet = build_discovery_packet("10.20.30.40", 5000, now)
        assert len(packet) == 0x30
        assert list(packet[0x18:0x1C]) == [10, 20, 30, 40]

    def test_port_and_command(self, now: datetime) -> None:
        packet = build_discovery_packet("10.20.30.40", 0xC351, now)
        assert packet[0x1C] == 0x51
        assert packet[0x1D] == 0xC3
        assert packet[0x26] == 0x06

    def test_date_fields(self, now: datetime) -> None:
        packet = build_discovery_packet("10.20.30.40", 5000, now)
        assert packet[0x08] == 2
        assert packet[0x09:0x0C] == b"\x00\x00\x00"
        assert struct.unpack_from("<H", packet, 0x0C)[0] == 2026
        assert packet[0x0E] == 35
        assert packet[0x0F] == 14
        assert packet[0x10] == 26
        assert packet[0x11] == now.isoweekday()
        assert packet[0x12] == 19
        assert packet[0x13] == 10

    def test_negative_timezone_fill(self) -> None:
        now = datetime(2026, 1, 5, 8, 0, tzinfo=timezone(timedelta(hours=-5)))
        packet = build_discovery_packet("192.168.1.10", 5000, now)
        assert packet[0x08] == 0xFF - 5 - 1
        assert packet[0x09:0x0B] == b"\xff\xff"
        assert packet[0x0B] == 0

    def test_naive_datetime_treated_as_utc(self) -> None:
        packet = build_discovery_packet("192.168.1.10", 5000, datetime(2026, 1, 5, 8, 0))
        assert packet[0x08] == 0

    def test_checksum(self, now: datetime) -> None:
        packet = bytearray(build_discovery_packet("10.20.30.40", 5000, now))
        stored = struct.unpack_from("<H", packet, 0x20)[0]
        packet[0x20:0x22] = b"\x00\x00"
        assert stored == checksum(packet)

    def test_defaults_to_current_time(self) -> None:
        packet = build_discovery_packet("10.20.30.40", 5000)
        assert struct.unpack_from("<H", packet, 0x0C)[0] >= 2024


class TestParseDiscoveryReply:
    def test_fields(self, mac: bytes) -> None:
        device = parse_discovery_reply(_make_reply(mac), ("192.168.1.50", 80))
        assert device is not None
        assert device.mac == mac
        assert device.mac_address == "34:EA:34:B1:C2:D3"
        assert device.type_code == EGO_TYPE_CODE
        assert device.name == "Kitchen"
        assert device.host == Host("192.168.1.50", 80)

    def test_name_fills_whole_field(self, mac: bytes) -> None:
        reply = bytearray(_make_reply(mac, name=b"A" * 0x40))
        reply += b"trailing"
        device = parse_discovery_reply(bytes(reply), ("192.168.1.50", 80))
        assert device.name == "A" * 0x40

    def test_invalid_utf8_name(self, mac: bytes) -> None:
        device = parse_discovery_reply(_make_reply(mac, name=b"Plug\xff"), ("192.168.1.50", 80))
        assert device.name.startswith("Plug")

    def test_reply_without_name(self, mac: bytes) -> None:
        device = parse_discovery_reply(_make_reply(mac)[:0x40], ("192.168.1.50", 80))
        assert device is not None
        assert device.name == ""

    def test_short_reply(self) -> None:
        assert parse_discovery_reply(b"\x00" * 0x20, ("192.168.1.50", 80)) is None


class TestDetectLocalIp:
    @staticmethod
    def _interfaces(table: dict[str, list[str]]):
        def ifaddresses(ifname: str) -> dict:
            addrs = table[ifname]
            return {2: [{"addr": a, "netmask": "255.255.255.0"} for a in addrs]} if addrs else {}

        return patch.multiple(
            "efergy_ego.discovery.sweep.netifaces",
            AF_INET=2,
            interfaces=MagicMock(return_value=list(table)),
            ifaddresses=MagicMock(side_effect=ifaddresses),
        )

    def test_first_non_loopback_interface(self) -> None:
        table = {"lo": ["127.0.0.1"], "docker0": [], "eth0": ["192.168.4.20"], "wlan0": ["10.0.0.7"]}
        with self._interfaces(table):
            assert detect_local_ip() == "192.168.4.20"

    def test_works_without_default_route(self) -> None:
        table = {"lo": ["127.0.0.1"], "eth0": ["192.168.4.20"]}
        with self._interfaces(table), patch(
            "socket.socket.connect", side_effect=OSError(101, "Network is unreachable")
        ):
            assert detect_local_ip() == "192.168.4.20"

    def test_falls_back_to_outbound_address(self) -> None:
        with self._interfaces({"lo": ["127.0.0.1"]}), patch(
            "efergy_ego.discovery.sweep._detect_outbound_ip", return_value="172.16.0.9"
        ):
            assert detect_local_ip() == "172.16.0.9"

    def test_loopback_only_without_route(self) -> None:
        with self._interfaces({"lo": ["127.0.0.1"]}), patch(
            "socket.socket.connect", side_effect=OSError(101, "Network is unreachable")
        ):
            assert detect_local_ip() is None


class TestDeviceRegistry:
    def test_add_and_lookup(self, session: DeviceSession, mac: bytes) -> None:
        registry = DeviceRegistry()
        assert registry.add(session)
        assert mac in registry
        assert registry.get(mac) is session
        assert len(registry) == 1
        assert list(registry) == [session]

    def test_duplicate_rejected(self, session: DeviceSession, host: Host, mac: bytes) -> None:
        registry = DeviceRegistry()
        registry.add(session)
        assert not registry.add(DeviceSession(host, mac))
        assert registry.get(mac) is session

    def test_remove_and_clear(self, session: DeviceSession, mac: bytes) -> None:
        registry = DeviceRegistry()
        registry.add(session)
        assert registry.remove(mac) is session
        assert registry.remove(mac) is None
        registry.add(session)
        registry.clear()
        assert len(registry) == 0


class TestManagerHandleDevice:
    """Tests for session creation from discovery replies."""

    def _device(self, mac: bytes, type_code: int = EGO_TYPE_CODE) -> DiscoveredDevice:
        return DiscoveredDevice(host=Host("192.168.1.50", 80), mac=mac, type_code=type_code, name="Kitchen")

    @pytest.mark.asyncio
    async def test_creates_session_and_authenticates(self, mac: bytes) -> None:
        manager = DiscoveryManager()
        with patch.object(DeviceSession, "open", AsyncMock()), patch.object(
            DeviceSession, "authenticate"
        ) as authenticate:
            manager._handle_device(self._device(mac))
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        session = manager.registry.get(mac)
        assert isinstance(session, DeviceSession)
        assert isinstance(session.variant, EgoOutlet)
        assert session.name == "Kitchen"
        authenticate.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_duplicate_mac_ignored(self, mac: bytes) -> None:
        manager = DiscoveryManager()
        manager._start_session = AsyncMock()
        manager._handle_device(self._device(mac))
        first = manager.registry.get(mac)
        manager._handle_device(self._device(mac))
        await asyncio.sleep(0)

        assert len(manager.registry) == 1
        assert manager.registry.get(mac) is first
        manager._start_session.assert_awaited_once_with(first)

    @pytest.mark.asyncio
    async def test_unknown_type_code_ignored(self, mac: bytes) -> None:
        manager = DiscoveryManager()
        manager._start_session = AsyncMock()
        manager._handle_device(self._device(mac, type_code=0x2712))
        await asyncio.sleep(0)
        assert len(manager.registry) == 0
        manager._start_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_ready_is_forwarded(self, mac: bytes) -> None:
        manager = DiscoveryManager()
        manager._start_session = AsyncMock()
        ready = MagicMock()
        manager.on_device_ready(ready)
        manager._handle_device(self._device(mac))

        session = manager.registry.get(mac)
        session._notify(session._on_ready, "Ready", session)
        ready.assert_called_once_with(session)

    @pytest.mark.asyncio
    async def test_failed_open_allows_rediscovery(self, mac: bytes) -> None:
        manager = DiscoveryManager()
        with patch.object(DeviceSession, "open", AsyncMock(side_effect=OSError("bind failed"))):
            manager._handle_device(self._device(mac))
            first = manager.registry.get(mac)
            await asyncio.sleep(0)
            await asyncio.sleep(0)
        assert mac not in manager.registry

        with patch.object(DeviceSession, "open", AsyncMock()), patch.object(
            DeviceSession, "authenticate"
        ) as authenticate:
            manager._handle_device(self._device(mac))
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        second = manager.registry.get(mac)
        assert second is not None
        assert second is not first
        authenticate.assert_called_once_with()


class TestDiscoverySweep:
    @pytest.mark.asyncio
    async def test_no_replies_closes_after_timeout(self) -> None:
        manager = DiscoveryManager(sweep_timeout=0.05, target=("127.0.0.1", 9))
        ready = MagicMock()
        manager.on_device_ready(ready)

        sweep = await manager.discover("127.0.0.1")
        assert not sweep.closed
        await asyncio.wait_for(sweep.wait_closed(), timeout=1.0)

        assert sweep.closed
        assert sweep.replies == []
        assert len(manager.registry) == 0
        ready.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        sweep = DiscoverySweep("127.0.0.1", target=("127.0.0.1", 9))
        await sweep.start()
        sweep.close()
        sweep.close()
        assert sweep.closed

    @pytest.mark.asyncio
    async def test_discover_without_local_ip(self) -> None:
        manager = DiscoveryManager()
        with patch("efergy_ego.discovery.manager.detect_local_ip", return_value=None):
            with pytest.raises(ConnectionError, match="local IPv4"):
                await manager.discover()

    @pytest.mark.asyncio
    async def test_discovers_and_authenticates(
        self, mac: bytes, auth_reply_payload: bytes, session_key: bytes, session_id: bytes
    ) -> None:
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _FakeOutlet(mac, auth_reply_payload),
            local_addr=("127.0.0.1", 0),
        )
        port = transport.get_extra_info("sockname")[1]
        manager = DiscoveryManager(target=("127.0.0.1", port))
        ready: list[DeviceSession] = []
        manager.on_device_ready(ready.append)

        try:
            sweep = await manager.discover("127.0.0.1")
            for _ in range(100):
                if ready:
                    break
                await asyncio.sleep(0.02)
            await asyncio.wait_for(sweep.wait_closed(), timeout=1.0)

            assert len(sweep.replies) == 2
            assert len(manager.registry) == 1
            assert len(ready) == 1
            session = ready[0]
            assert session.mac == mac
            assert session.host.port == port
            assert session.key == session_key
            assert session.device_id == session_id
        finally:
            await manager.close()
            transport.close()
            await asyncio.sleep(0.6)
