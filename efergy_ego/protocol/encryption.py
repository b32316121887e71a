"""Checksum and AES-CBC operations for the local protocol."""

from __future__ import annotations

import logging

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .constants import BLOCK_SIZE, CHECKSUM_SEED

_LOGGER = logging.getLogger(__name__)


def checksum(data: bytes) -> int:
    """Return the 16-bit rolling checksum of data, seeded with 0xBEAF."""
    value = CHECKSUM_SEED
    for byte in data:
        value = (value + byte) & 0xFFFF
    return value


class DeviceCipher:
    """AES-128-CBC without padding, keyed per device session."""

    def __init__(self, key: bytes, iv: bytes) -> None:
        """Initialize with a 16-byte key and a 16-byte IV."""
        if len(key) != 16:
            raise ValueError("Key must be exactly 16 bytes")
        if len(iv) != 16:
            raise ValueError("IV must be exactly 16 bytes")
        self._key = bytes(key)
        self._iv = bytes(iv)

    @property
    def key(self) -> bytes:
        """Return the current key."""
        return self._key

    @property
    def iv(self) -> bytes:
        """Return the IV."""
        return self._iv

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt block-aligned plaintext. Output length equals input length."""
        self._check_aligned(plaintext)
        _LOGGER.debug("CBC encrypt: %d bytes plaintext", len(plaintext))
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(self._iv)).encryptor()
        return encryptor.update(plaintext) + encryptor.finalize()

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt block-aligned ciphertext. Raises ValueError if misaligned."""
        self._check_aligned(ciphertext)
        _LOGGER.debug("CBC decrypt: %d bytes ciphertext", len(ciphertext))
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(self._iv)).decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()

    @staticmethod
    def _check_aligned(data: bytes) -> None:
        if len(data) % BLOCK_SIZE:
            raise ValueError(
                f"Data length {len(data)} is not a multiple of {BLOCK_SIZE}"
            )
