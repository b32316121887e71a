"""Per-device UDP session: handshake, command exchange and reply dispatch."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..const import (
    DISPOSE_GRACE,
    DISPOSE_GRACE_CALLBACK,
    READY_TIMEOUT,
    format_mac,
)
from ..devices.base import DeviceVariant
from .constants import (
    AUTH_IDENTITY,
    AUTH_PAYLOAD_SIZE,
    DEFAULT_DEVICE_ID,
    Command,
    Reachability,
)
from .messages import DeviceMessage, PacketCodec

_LOGGER = logging.getLogger(__name__)


@dataclass
class Host:
    """UDP endpoint of one physical device."""

    address: str
    port: int
    mac_address: str | None = None


def build_auth_payload() -> bytes:
    """Build the fixed auth request payload sent with Command.AUTH."""
    payload = bytearray(AUTH_PAYLOAD_SIZE)
    payload[0x04:0x12] = b"\x31" * 0x0E
    payload[0x1E] = 0x01
    payload[0x2D] = 0x01
    payload[0x30 : 0x30 + len(AUTH_IDENTITY)] = AUTH_IDENTITY
    return bytes(payload)


class DeviceSession:
    """Owns the key material, counter and UDP endpoint for one device."""

    def __init__(
        self,
        host: Host,
        mac: bytes,
        name: str = "",
        variant: DeviceVariant | None = None,
    ) -> None:
        self._host = host
        self._mac = bytes(mac)
        self._name = name
        self._variant = variant or DeviceVariant()
        self._codec = PacketCodec(self._mac)

        self._reachability = Reachability.UNKNOWN
        self._state: dict[str, Any] = {}
        self._checksum_errors = 0

        self._transport: asyncio.DatagramTransport | None = None
        self._dispose_handle: asyncio.TimerHandle | None = None
        self._disposed = False

        # One-shot futures resolved by the next auth reply
        self._ready_waiters: list[asyncio.Future[None]] = []

        # Callbacks
        self._on_ready: list[Callable[[DeviceSession], None]] = []
        self._on_state_update: list[Callable[[dict[str, Any]], None]] = []
        self._on_error: list[Callable[[int, bytes], None]] = []
        self._on_reachability: list[Callable[[Reachability], None]] = []
        self._on_transport_error: list[Callable[[Exception], None]] = []

    def __repr__(self) -> str:
        return (
            f"DeviceSession({self.type!r}, mac={format_mac(self._mac)}, "
            f"host={self._host.address}:{self._host.port})"
        )

    @property
    def host(self) -> Host:
        return self._host

    @property
    def mac(self) -> bytes:
        return self._mac

    @property
    def name(self) -> str:
        return self._name

    @property
    def variant(self) -> DeviceVariant:
        return self._variant

    @property
    def type(self) -> str:
        return self._variant.type_name

    @property
    def model(self) -> str:
        return self._variant.model

    @property
    def key(self) -> bytes:
        return self._codec.key

    @property
    def iv(self) -> bytes:
        return self._codec.iv

    @property
    def device_id(self) -> bytes:
        return self._codec.device_id

    @property
    def counter(self) -> int:
        return self._codec.counter

    @property
    def state(self) -> dict[str, Any]:
        """Return the last state reported by the device."""
        return dict(self._state)

    @property
    def checksum_errors(self) -> int:
        """Number of accepted replies whose header checksums did not match."""
        return self._checksum_errors

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._disposed

    @property
    def is_authenticated(self) -> bool:
        return self._codec.device_id != DEFAULT_DEVICE_ID

    @property
    def reachability(self) -> Reachability:
        return self._reachability

    @reachability.setter
    def reachability(self, value: Reachability) -> None:
        if value == self._reachability:
            return
        self._reachability = value
        self._notify(self._on_reachability, "Reachability", value)

    def get_type(self) -> str:
        return self.type

    def on_ready(self, callback: Callable[[DeviceSession], None]) -> Callable[[], None]:
        """Register a callback for completed handshakes. Returns unregister function."""
        self._on_ready.append(callback)
        return lambda: self._on_ready.remove(callback)

    def on_state_update(self, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        """Register a callback for state updates. Returns unregister function."""
        self._on_state_update.append(callback)
        return lambda: self._on_state_update.remove(callback)

    def on_error(self, callback: Callable[[int, bytes], None]) -> Callable[[], None]:
        """Register a callback for error-code replies. Returns unregister function."""
        self._on_error.append(callback)
        return lambda: self._on_error.remove(callback)

    def on_reachability(self, callback: Callable[[Reachability], None]) -> Callable[[], None]:
        """Register a callback for reachability changes. Returns unregister function."""
        self._on_reachability.append(callback)
        return lambda: self._on_reachability.remove(callback)

    def on_transport_error(self, callback: Callable[[Exception], None]) -> Callable[[], None]:
        """Register a callback for socket-level errors. Returns unregister function."""
        self._on_transport_error.append(callback)
        return lambda: self._on_transport_error.remove(callback)

    async def open(self, local_ip: str = "0.0.0.0") -> None:
        """Bind the session's UDP endpoint to an ephemeral port."""
        if self._disposed:
            raise ConnectionError("Session disposed")
        if self._transport is not None:
            return

        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _SessionProtocol(self),
            local_addr=(local_ip, 0),
        )
        self._transport = transport
        _LOGGER.debug(
            "Session for %s bound to %s", format_mac(self._mac), transport.get_extra_info("sockname")
        )

    def authenticate(self) -> None:
        """Send the auth request. Completion is signalled through on_ready."""
        _LOGGER.debug("Authenticating with %s:%s", self._host.address, self._host.port)
        self.send(Command.AUTH, build_auth_payload())

    def send(self, command: int, payload: bytes) -> None:
        """Encode and transmit a command. Fire-and-forget."""
        packet = self._codec.encode(command, payload)
        if self._disposed or self._transport is None:
            raise ConnectionError("Not connected")
        self._transport.sendto(packet, (self._host.address, self._host.port))

    async def wait_ready(self, timeout: float = READY_TIMEOUT) -> None:
        """Wait for the next successful auth reply."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        self._ready_waiters.append(future)
        try:
            await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"No auth reply from {self._host.address}")
        finally:
            if future in self._ready_waiters:
                self._ready_waiters.remove(future)

    def dispose(self, callback: Callable[[], None] | None = None) -> asyncio.TimerHandle:
        """Close the endpoint after a grace delay so queued datagrams flush.

        Calling dispose() again returns the already scheduled handle.
        """
        if self._dispose_handle is not None:
            return self._dispose_handle

        self._disposed = True
        delay = DISPOSE_GRACE_CALLBACK if callback else DISPOSE_GRACE
        loop = asyncio.get_event_loop()
        self._dispose_handle = loop.call_later(delay, self._close, callback)
        return self._dispose_handle

    def _close(self, callback: Callable[[], None] | None) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None

        for future in self._ready_waiters:
            if not future.done():
                future.cancel()
        self._ready_waiters.clear()

        _LOGGER.debug("Session for %s closed", format_mac(self._mac))
        if callback:
            try:
                callback()
            except Exception:
                _LOGGER.debug("Dispose callback error", exc_info=True)

    def _handle_datagram(self, data: bytes, addr: tuple) -> None:
        msg = self._codec.decode(data)
        if msg is None:
            return
        self._dispatch_message(msg)

    def _dispatch_message(self, msg: DeviceMessage) -> None:
        """Route a decoded reply to the appropriate handler."""
        if not msg.checksum_ok:
            self._checksum_errors += 1
            _LOGGER.debug(
                "Accepting reply %#04x from %s despite checksum mismatch",
                msg.command, format_mac(self._mac),
            )

        if msg.error_code:
            _LOGGER.debug(
                "Device %s replied with error %#06x to command %#04x",
                format_mac(self._mac), msg.error_code, msg.command,
            )
            self._notify(self._on_error, "Error", msg.error_code, msg.payload)
            return

        if msg.command == Command.AUTH_REPLY:
            try:
                self._codec.apply_auth_reply(msg.payload)
            except ValueError:
                _LOGGER.debug("Ignoring malformed auth reply", exc_info=True)
                return
            self.reachability = Reachability.ACTIVE
            _LOGGER.info("Session ready for %s at %s", format_mac(self._mac), self._host.address)

            for future in self._ready_waiters:
                if not future.done():
                    future.set_result(None)
            self._ready_waiters.clear()
            self._notify(self._on_ready, "Ready", self)

        elif msg.command == Command.COMMAND_REPLY:
            self.reachability = Reachability.ACTIVE
            updates = self._variant.interpret_payload(msg.payload)
            if updates:
                self._state.update(updates)
                self._notify(self._on_state_update, "State update", updates)

        else:
            _LOGGER.debug("Ignoring reply with command %#04x", msg.command)

    def _handle_transport_error(self, exc: Exception) -> None:
        _LOGGER.debug("UDP error for %s: %s", self._host.address, exc)
        self._notify(self._on_transport_error, "Transport error", exc)

    @staticmethod
    def _notify(callbacks: list[Callable[..., None]], label: str, *args: Any) -> None:
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception:
                _LOGGER.debug("%s callback error", label, exc_info=True)


class _SessionProtocol(asyncio.DatagramProtocol):
    """Internal DatagramProtocol feeding a DeviceSession."""

    def __init__(self, session: DeviceSession) -> None:
        self._session = session

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._session._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._session._handle_transport_error(exc)
