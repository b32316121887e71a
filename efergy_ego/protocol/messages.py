"""Frame encoding/decoding for the Broadlink-dialect UDP protocol."""

from __future__ import annotations

import logging
import random
import struct
from dataclasses import dataclass

from .constants import (
    AUTH_REPLY_ID_SLICE,
    AUTH_REPLY_KEY_SLICE,
    COUNTER_MASK,
    DEFAULT_DEVICE_ID,
    DEFAULT_IV,
    DEFAULT_KEY,
    DEVICE_CONSTANT,
    HEADER_SIZE,
    MAGIC,
    OFFSET_CHECKSUM,
    OFFSET_COMMAND,
    OFFSET_CONSTANT,
    OFFSET_COUNTER,
    OFFSET_DEVICE_ID,
    OFFSET_ERROR,
    OFFSET_MAC,
    OFFSET_PAYLOAD_CHECKSUM,
)
from .encryption import DeviceCipher, checksum

_LOGGER = logging.getLogger(__name__)


@dataclass
class DeviceMessage:
    """Represents a decoded frame received from a device."""

    command: int
    error_code: int
    counter: int
    mac: bytes
    device_id: bytes
    payload: bytes
    checksum_ok: bool = True


class PacketCodec:
    """Encodes and decodes frames using one device's key material.

    The codec owns the session counter and the key/IV/device id triple. The
    key and device id only change together, through apply_auth_reply().
    """

    def __init__(
        self,
        mac: bytes,
        key: bytes = DEFAULT_KEY,
        iv: bytes = DEFAULT_IV,
        counter: int | None = None,
    ) -> None:
        if len(mac) != 6:
            raise ValueError("MAC must be exactly 6 bytes")
        self._mac = bytes(mac)
        self._cipher = DeviceCipher(key, iv)
        self._device_id = DEFAULT_DEVICE_ID
        if counter is None:
            counter = random.randint(0, 0xFFFF)
        self._counter = counter & COUNTER_MASK

    @property
    def mac(self) -> bytes:
        return self._mac

    @property
    def key(self) -> bytes:
        return self._cipher.key

    @property
    def iv(self) -> bytes:
        return self._cipher.iv

    @property
    def device_id(self) -> bytes:
        return self._device_id

    @property
    def counter(self) -> int:
        return self._counter

    def next_counter(self) -> int:
        """Advance and return the session counter."""
        self._counter = (self._counter + 1) & COUNTER_MASK
        return self._counter

    def encode(self, command: int, payload: bytes) -> bytes:
        """Encode a command + plaintext payload into a wire-format frame.

        The counter advances before anything else, so it moves even when the
        payload is rejected.
        """
        counter = self.next_counter()

        header = bytearray(HEADER_SIZE)
        header[0 : len(MAGIC)] = MAGIC
        header[OFFSET_CONSTANT : OFFSET_CONSTANT + 2] = DEVICE_CONSTANT
        header[OFFSET_COMMAND] = command & 0xFF
        struct.pack_into("<H", header, OFFSET_COUNTER, counter & 0xFFFF)
        header[OFFSET_MAC : OFFSET_MAC + 6] = self._mac
        header[OFFSET_DEVICE_ID : OFFSET_DEVICE_ID + 4] = self._device_id
        struct.pack_into("<H", header, OFFSET_PAYLOAD_CHECKSUM, checksum(payload))

        packet = header + self._cipher.encrypt(payload)
        struct.pack_into("<H", packet, OFFSET_CHECKSUM, checksum(packet))
        return bytes(packet)

    def decode(self, data: bytes) -> DeviceMessage | None:
        """Decode a single frame. Returns None for short or undecryptable frames."""
        if len(data) < HEADER_SIZE:
            _LOGGER.debug("Dropping short frame (%d bytes)", len(data))
            return None

        (error_code,) = struct.unpack_from("<H", data, OFFSET_ERROR)
        (counter,) = struct.unpack_from("<H", data, OFFSET_COUNTER)

        try:
            payload = self._cipher.decrypt(bytes(data[HEADER_SIZE:]))
        except ValueError:
            _LOGGER.debug("Decryption failed, dropping frame: %s", bytes(data[:HEADER_SIZE]).hex())
            return None

        return DeviceMessage(
            command=data[OFFSET_COMMAND],
            error_code=error_code,
            counter=counter,
            mac=bytes(data[OFFSET_MAC : OFFSET_MAC + 6]),
            device_id=bytes(data[OFFSET_DEVICE_ID : OFFSET_DEVICE_ID + 4]),
            payload=payload,
            checksum_ok=self._verify_checksums(data, payload),
        )

    def apply_auth_reply(self, payload: bytes) -> None:
        """Replace key and device id from a decrypted auth reply."""
        if len(payload) < AUTH_REPLY_KEY_SLICE.stop:
            raise ValueError(f"Auth reply too short ({len(payload)} bytes)")
        key = bytes(payload[AUTH_REPLY_KEY_SLICE])
        device_id = bytes(payload[AUTH_REPLY_ID_SLICE])
        self._cipher = DeviceCipher(key, self._cipher.iv)
        self._device_id = device_id
        _LOGGER.debug("Session key updated, device id %s", device_id.hex())

    @staticmethod
    def _verify_checksums(data: bytes, payload: bytes) -> bool:
        """Check both header checksums. Mismatches are logged, not enforced."""
        (expected_full,) = struct.unpack_from("<H", data, OFFSET_CHECKSUM)
        zeroed = bytearray(data)
        zeroed[OFFSET_CHECKSUM : OFFSET_CHECKSUM + 2] = b"\x00\x00"
        actual_full = checksum(zeroed)

        (expected_payload,) = struct.unpack_from("<H", data, OFFSET_PAYLOAD_CHECKSUM)
        actual_payload = checksum(payload)

        if expected_full != actual_full:
            _LOGGER.debug("Frame checksum mismatch: expected %04x, got %04x", expected_full, actual_full)
        if expected_payload != actual_payload:
            _LOGGER.debug(
                "Payload checksum mismatch: expected %04x, got %04x", expected_payload, actual_payload
            )
        return expected_full == actual_full and expected_payload == actual_payload
