"""Device handlers for routers with numbered filter tables."""
from dataclasses import fields

from .base import (
    DeviceCommandError,
    DeviceConfig,
    DeviceError,
    DeviceNotFoundError,
    FilterDevice,
)
from .rtx import RTXDevice

__all__ = [
    "FilterDevice",
    "DeviceConfig",
    "DeviceError",
    "DeviceNotFoundError",
    "DeviceCommandError",
    "RTXDevice",
]

# Device type registry
DEVICE_TYPES = {
    "rtx": RTXDevice,
}


def create_device(device_id: str, config: dict) -> FilterDevice:
    """Factory function to create device instances."""
    device_type = config.get("type", "").lower()
    if device_type not in DEVICE_TYPES:
        raise ValueError(f"Unknown device type: {device_type}")

    known = {f.name for f in fields(DeviceConfig)}
    unknown = set(config) - known
    if unknown:
        raise ValueError(f"Unknown settings for {device_id}: {', '.join(sorted(unknown))}")

    device_class = DEVICE_TYPES[device_type]
    return device_class(device_id, DeviceConfig(**config))
