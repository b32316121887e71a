"""Device families, selected by the type code from discovery replies."""

from __future__ import annotations

from .base import DeviceVariant
from .outlet import EgoOutlet

# Type code -> variant class
DEVICE_TYPES: dict[int, type[DeviceVariant]] = {
    0x271D: EgoOutlet,
}


def create_variant(type_code: int) -> DeviceVariant | None:
    """Instantiate the variant for a type code, or None if unsupported."""
    variant_cls = DEVICE_TYPES.get(type_code)
    if variant_cls is None:
        return None
    return variant_cls()


__all__ = [
    "DEVICE_TYPES",
    "DeviceVariant",
    "EgoOutlet",
    "create_variant",
]
