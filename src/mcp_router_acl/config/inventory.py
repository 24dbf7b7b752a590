"""Router inventory management from YAML configuration."""
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from ..devices import create_device, FilterDevice

logger = logging.getLogger(__name__)


def candidate_paths() -> list[Path]:
    """Places devices.yaml is looked for, in order."""
    paths = [
        Path.cwd() / "configs" / "devices.yaml",
        Path.cwd() / "devices.yaml",
        Path.home() / ".config" / "aclcraft" / "devices.yaml",
        Path("/etc/aclcraft/devices.yaml"),
    ]
    override = os.environ.get("ACLCRAFT_CONFIG")
    if override:
        paths.insert(0, Path(override))
    return paths


def _with_defaults(device_id: str, entry: Optional[dict], defaults: dict) -> dict:
    merged = {**defaults, **(entry or {})}
    merged.setdefault("name", device_id)
    return merged


class RouterInventory:
    """Routers the server may manage, loaded from YAML.

    Keys under ``defaults`` apply to every router that does not set them.

    ```yaml
    defaults:
      username: admin
      password_env: RTX_PASSWORD
      save_after_apply: true

    devices:
      rtx-edge:
        type: rtx
        name: Edge router
        host: 192.168.1.1
        admin_password_env: RTX_ADMIN_PASSWORD
    ```
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config()
        self._routers: dict[str, dict] = {}
        self._devices: dict[str, FilterDevice] = {}
        self._load_config()

    def _find_config(self) -> str:
        for path in candidate_paths():
            if path.exists():
                return str(path)
        raise FileNotFoundError(
            "Could not find devices.yaml. Set ACLCRAFT_CONFIG or create ./configs/devices.yaml"
        )

    def _load_config(self) -> None:
        with open(self.config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        defaults = raw.get("defaults") or {}
        self._routers = {
            device_id: _with_defaults(device_id, entry, defaults)
            for device_id, entry in (raw.get("devices") or {}).items()
        }
        logger.info(f"Loaded {len(self._routers)} router(s) from {self.config_path}")

    def get_device_ids(self) -> list[str]:
        return list(self._routers)

    def get_device_config(self, device_id: str) -> dict:
        """Settings for one router with defaults merged in."""
        try:
            return self._routers[device_id]
        except KeyError:
            raise KeyError(f"Unknown device: {device_id}") from None

    def get_device(self, device_id: str) -> FilterDevice:
        """The cached handler for a router, created on first use."""
        device = self._devices.get(device_id)
        if device is None:
            device = create_device(device_id, self.get_device_config(device_id))
            self._devices[device_id] = device
        return device

    def get_devices_by_type(self, device_type: str) -> list[FilterDevice]:
        return [
            self.get_device(device_id)
            for device_id, settings in self._routers.items()
            if settings.get("type") == device_type
        ]

    async def close_all(self) -> None:
        """Disconnect every router that holds an open session."""
        for device in self._devices.values():
            if device.is_connected:
                await device.disconnect()
        self._devices.clear()
