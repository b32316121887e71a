"""Efergy EGO power outlet."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..const import STATE_POWER
from ..protocol.constants import Command
from .base import DeviceVariant

if TYPE_CHECKING:
    from ..protocol.session import DeviceSession

_LOGGER = logging.getLogger(__name__)

PAYLOAD_SIZE = 0x10

# Sub-commands in payload byte 0
SUBCMD_QUERY_POWER = 0x01
SUBCMD_SET_POWER = 0x02

POWER_BYTE = 0x04
POWER_ON = 0x03
POWER_OFF = 0x02

# Firmware reports the power level either numerically or as an ASCII digit
POWER_ON_VALUES = frozenset({1, 3, ord("1"), ord("3")})


class EgoOutlet(DeviceVariant):
    """Switchable outlet speaking the 0x6A command family."""

    type_name = "Efergy EGO"
    model = "Outlet"

    def interpret_payload(self, payload: bytes) -> dict[str, Any]:
        if len(payload) <= POWER_BYTE or payload[0] != SUBCMD_QUERY_POWER:
            return {}
        power = payload[POWER_BYTE] in POWER_ON_VALUES
        _LOGGER.debug("Power state reported: %s (raw %#04x)", power, payload[POWER_BYTE])
        return {STATE_POWER: power}

    @staticmethod
    def build_set_power_payload(state: bool) -> bytes:
        payload = _payload(SUBCMD_SET_POWER)
        payload[POWER_BYTE] = POWER_ON if state else POWER_OFF
        return bytes(payload)

    @staticmethod
    def build_query_power_payload() -> bytes:
        return bytes(_payload(SUBCMD_QUERY_POWER))

    def set_power(self, session: DeviceSession, state: bool) -> None:
        """Switch the outlet on or off. The new state arrives as a state update."""
        session.send(Command.COMMAND, self.build_set_power_payload(state))

    def check_power(self, session: DeviceSession) -> None:
        """Ask the outlet for its power state."""
        session.send(Command.COMMAND, self.build_query_power_payload())


def _payload(subcommand: int) -> bytearray:
    payload = bytearray(PAYLOAD_SIZE)
    payload[0] = subcommand
    return payload
