"""DeviceHub: periodic discovery and bookkeeping of ready outlets."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

from .const import (
    CONF_DISCOVERY_INTERVAL,
    CONF_DISCOVERY_TIMEOUT,
    CONF_LOCAL_IP,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_DISCOVERY_TIMEOUT,
    format_mac,
)
from .devices import EgoOutlet
from .discovery.manager import DiscoveryManager
from .protocol.session import DeviceSession

_LOGGER = logging.getLogger(__name__)


class DeviceHub:
    """Keeps discovering for a while and tracks every device that became ready."""

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        discovery_manager: DiscoveryManager | None = None,
    ) -> None:
        config = config or {}

        # Config
        self._local_ip: str | None = config.get(CONF_LOCAL_IP)
        self._interval = float(config.get(CONF_DISCOVERY_INTERVAL, DEFAULT_DISCOVERY_INTERVAL))
        self._timeout = float(config.get(CONF_DISCOVERY_TIMEOUT, DEFAULT_DISCOVERY_TIMEOUT))

        self._discovery = discovery_manager or DiscoveryManager()
        self._devices: dict[str, DeviceSession] = {}
        self._on_device_added: list[Callable[[DeviceSession], None]] = []

        self._discovery_task: asyncio.Task | None = None
        self._unregister_ready: Callable[[], None] | None = None

    @property
    def discovery(self) -> DiscoveryManager:
        return self._discovery

    @property
    def devices(self) -> dict[str, DeviceSession]:
        """Return ready devices keyed by formatted MAC address."""
        return dict(self._devices)

    @property
    def is_discovering(self) -> bool:
        return self._discovery_task is not None and not self._discovery_task.done()

    def on_device_added(self, callback: Callable[[DeviceSession], None]) -> Callable[[], None]:
        """Register a callback for newly added devices. Returns unregister function."""
        self._on_device_added.append(callback)
        return lambda: self._on_device_added.remove(callback)

    def get_device(self, mac_address: str) -> DeviceSession | None:
        return self._devices.get(mac_address.upper())

    async def start(self, automatic: bool = True) -> None:
        """Start discovery: a single sweep, or repeated sweeps until the timeout."""
        if self._unregister_ready is None:
            self._unregister_ready = self._discovery.on_device_ready(self._handle_device_ready)

        if not automatic:
            await self._sweep()
            return

        if self.is_discovering:
            return
        _LOGGER.debug(
            "Starting discovery every %ss for %ss", self._interval, self._timeout
        )
        self._discovery_task = asyncio.ensure_future(self._discovery_loop())

    async def stop(self) -> None:
        """Stop discovering and dispose every session."""
        if self._discovery_task and not self._discovery_task.done():
            self._discovery_task.cancel()
            try:
                await self._discovery_task
            except asyncio.CancelledError:
                pass
        self._discovery_task = None

        if self._unregister_ready:
            self._unregister_ready()
            self._unregister_ready = None

        await self._discovery.close()
        self._devices.clear()
        _LOGGER.debug("Hub stopped")

    def set_power(self, mac_address: str, state: bool) -> bool:
        """Switch an outlet. Returns False if the device is unknown or not an outlet."""
        session = self._get_outlet(mac_address)
        if session is None:
            return False
        session.variant.set_power(session, state)
        return True

    def check_power(self, mac_address: str) -> bool:
        """Request a power report. Returns False if the device is unknown or not an outlet."""
        session = self._get_outlet(mac_address)
        if session is None:
            return False
        session.variant.check_power(session)
        return True

    # --- Internal methods ---

    def _get_outlet(self, mac_address: str) -> DeviceSession | None:
        session = self.get_device(mac_address)
        if session is None or not isinstance(session.variant, EgoOutlet):
            _LOGGER.warning("No outlet known with MAC %s", mac_address)
            return None
        return session

    async def _discovery_loop(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        try:
            while True:
                await self._sweep()
                if loop.time() + self._interval > deadline:
                    break
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            return
        _LOGGER.debug("Discovery window of %ss elapsed", self._timeout)

    async def _sweep(self) -> None:
        try:
            await self._discovery.discover(self._local_ip)
        except OSError as err:
            _LOGGER.warning("Discovery sweep failed: %s", err)

    def _handle_device_ready(self, session: DeviceSession) -> None:
        mac_address = format_mac(session.mac)
        session.host.mac_address = mac_address

        _LOGGER.info(
            "Discovered %s (%s) at %s (%s)",
            session.model, session.type, session.host.address, mac_address,
        )
        if mac_address in self._devices:
            return
        self._devices[mac_address] = session

        for callback in list(self._on_device_added):
            try:
                callback(session)
            except Exception:
                _LOGGER.debug("Device added callback error", exc_info=True)

        # Sync the initial state
        if isinstance(session.variant, EgoOutlet):
            try:
                session.variant.check_power(session)
            except ConnectionError:
                _LOGGER.debug("Initial power query failed for %s", mac_address)
