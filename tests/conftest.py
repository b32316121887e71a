"""Shared test fixtures for Efergy EGO tests."""

from __future__ import annotations

import pytest

from efergy_ego.devices import EgoOutlet
from efergy_ego.protocol.session import DeviceSession, Host


@pytest.fixture
def mac() -> bytes:
    """A test device MAC (6 bytes)."""
    return bytes.fromhex("34ea34b1c2d3")


@pytest.fixture
def session_key() -> bytes:
    """A session key as issued by a device in its auth reply."""
    return b"fedcba9876543210"


@pytest.fixture
def session_id() -> bytes:
    """A session id as issued by a device in its auth reply."""
    return b"\x01\x02\x03\x04"


@pytest.fixture
def auth_reply_payload(session_key: bytes, session_id: bytes) -> bytes:
    """A decrypted auth reply: id, key, then zero fill to a block boundary."""
    return session_id + session_key + b"\x00" * 12


@pytest.fixture
def host() -> Host:
    return Host(address="127.0.0.1", port=80)


@pytest.fixture
def session(host: Host, mac: bytes) -> DeviceSession:
    return DeviceSession(host, mac, "Kitchen", EgoOutlet())
