"""Discovery lifecycle: sweeps, session creation and handshake start."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..const import DISCOVERY_SWEEP_TIMEOUT, format_mac
from ..devices import create_variant
from ..protocol.constants import BROADCAST_ADDRESS, DISCOVERY_PORT
from ..protocol.session import DeviceSession
from .registry import DeviceRegistry
from .sweep import DiscoveredDevice, DiscoverySweep, detect_local_ip

_LOGGER = logging.getLogger(__name__)


class DiscoveryManager:
    """Runs discovery sweeps and turns new replies into authenticated sessions."""

    def __init__(
        self,
        registry: DeviceRegistry | None = None,
        sweep_timeout: float = DISCOVERY_SWEEP_TIMEOUT,
        target: tuple[str, int] = (BROADCAST_ADDRESS, DISCOVERY_PORT),
    ) -> None:
        self._registry = registry if registry is not None else DeviceRegistry()
        self._sweep_timeout = sweep_timeout
        self._target = target
        self._callbacks: list[Callable[[DeviceSession], None]] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    def on_device_ready(self, callback: Callable[[DeviceSession], None]) -> Callable[[], None]:
        """Register a callback for authenticated devices. Returns unregister function."""
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback)

    async def discover(self, local_ip: str | None = None) -> DiscoverySweep:
        """Start one sweep. Returns as soon as the broadcast has been sent."""
        address = local_ip or detect_local_ip()
        if not address:
            raise ConnectionError("Could not determine a local IPv4 address for discovery")

        sweep = DiscoverySweep(
            address,
            self._handle_device,
            timeout=self._sweep_timeout,
            target=self._target,
        )
        await sweep.start()
        return sweep

    async def close(self) -> None:
        """Cancel pending session starts and dispose every known session."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for session in self._registry:
            session.dispose()
        self._registry.clear()
        _LOGGER.debug("Discovery manager closed")

    def _handle_device(self, device: DiscoveredDevice) -> None:
        """Create a session for a first-seen MAC with a supported type code."""
        if device.mac in self._registry:
            return

        variant = create_variant(device.type_code)
        if variant is None:
            _LOGGER.debug(
                "Ignoring %s with unsupported type code %#06x", device.mac_address, device.type_code
            )
            return

        session = DeviceSession(device.host, device.mac, device.name, variant)
        self._registry.add(session)
        session.on_ready(self._handle_session_ready)
        _LOGGER.debug("Created %s session for %s", variant.type_name, device.mac_address)

        task = asyncio.ensure_future(self._start_session(session))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _start_session(self, session: DeviceSession) -> None:
        try:
            await session.open()
            session.authenticate()
        except OSError as err:
            _LOGGER.warning("Could not start session for %s: %s", format_mac(session.mac), err)
            # Forget it so the next reply from this MAC gets a fresh session
            if self._registry.get(session.mac) is session:
                self._registry.remove(session.mac)
            session.dispose()

    def _handle_session_ready(self, session: DeviceSession) -> None:
        for callback in list(self._callbacks):
            try:
                callback(session)
            except Exception:
                _LOGGER.debug("Device ready callback error", exc_info=True)
