"""Base capability shared by all device families."""

from __future__ import annotations

from typing import Any

from ..const import DEVICE_MODEL_UNKNOWN, DEVICE_TYPE_UNKNOWN


class DeviceVariant:
    """Interprets decrypted reply payloads for one product family.

    A variant holds no session state; it is attached to a DeviceSession,
    which routes every decrypted generic reply to interpret_payload().
    """

    type_name: str = DEVICE_TYPE_UNKNOWN
    model: str = DEVICE_MODEL_UNKNOWN

    def interpret_payload(self, payload: bytes) -> dict[str, Any]:
        """Return state updates parsed from a reply payload (empty if none)."""
        return {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type_name={self.type_name!r}, model={self.model!r})"
