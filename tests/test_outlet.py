"""Tests for the outlet variant and the type-code factory."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from efergy_ego.devices import DEVICE_TYPES, DeviceVariant, EgoOutlet, create_variant
from efergy_ego.protocol.constants import Command


def _power_payload(value: int) -> bytes:
    payload = bytearray(16)
    payload[0] = 0x01
    payload[4] = value
    return bytes(payload)


class TestInterpretPayload:
    @pytest.mark.parametrize("value", [1, 3, ord("1"), ord("3")])
    def test_power_on_values(self, value: int) -> None:
        assert EgoOutlet().interpret_payload(_power_payload(value)) == {"power": True}

    @pytest.mark.parametrize("value", [0, 2, ord("0"), ord("2"), 0xFF])
    def test_power_off_values(self, value: int) -> None:
        assert EgoOutlet().interpret_payload(_power_payload(value)) == {"power": False}

    def test_other_subcommand_yields_nothing(self) -> None:
        payload = bytearray(_power_payload(1))
        payload[0] = 0x02
        assert EgoOutlet().interpret_payload(bytes(payload)) == {}

    def test_short_payload_yields_nothing(self) -> None:
        assert EgoOutlet().interpret_payload(b"\x01\x00") == {}


class TestBuildPayloads:
    def test_set_power_on(self) -> None:
        assert EgoOutlet.build_set_power_payload(True) == bytes([0x02, 0, 0, 0, 0x03] + [0] * 11)

    def test_set_power_off(self) -> None:
        payload = EgoOutlet.build_set_power_payload(False)
        assert len(payload) == 16
        assert payload[0] == 0x02
        assert payload[4] == 0x02

    def test_query_power(self) -> None:
        assert EgoOutlet.build_query_power_payload() == b"\x01" + b"\x00" * 15


class TestOutletCommands:
    def test_set_power_sends_command(self) -> None:
        session = MagicMock()
        EgoOutlet().set_power(session, True)
        session.send.assert_called_once_with(Command.COMMAND, EgoOutlet.build_set_power_payload(True))

    def test_check_power_sends_query(self) -> None:
        session = MagicMock()
        EgoOutlet().check_power(session)
        session.send.assert_called_once_with(Command.COMMAND, EgoOutlet.build_query_power_payload())


class TestCreateVariant:
    def test_known_type_code(self) -> None:
        variant = create_variant(0x271D)
        assert isinstance(variant, EgoOutlet)
        assert variant.type_name == "Efergy EGO"
        assert variant.model == "Outlet"

    def test_unknown_type_code(self) -> None:
        assert create_variant(0x2712) is None

    def test_each_call_returns_new_instance(self) -> None:
        assert create_variant(0x271D) is not create_variant(0x271D)

    def test_registry_maps_to_variants(self) -> None:
        assert all(issubclass(cls, DeviceVariant) for cls in DEVICE_TYPES.values())

    def test_base_variant_interprets_nothing(self) -> None:
        variant = DeviceVariant()
        assert variant.interpret_payload(b"\x01" * 16) == {}
        assert variant.type_name == "unknown"
