"""State store for access list and apply snapshots.

Every successful lifecycle operation leaves a snapshot here; the next
operation diffs against it. A failed operation never overwrites the stored
snapshot.

Directory structure:
    ~/.aclcraft/state/
    ├── groups/<device>/<table>/<name>.yaml
    └── applies/<device>/<table>/<interface>_<direction>.yaml

Snapshots written before tables existed live at groups/<device>/<name>.yaml
and are read as IPv4 groups; the next save moves them to the canonical path.
"""
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote, unquote

import yaml

from ..acl_engine.schema import (
    ApplyState,
    Direction,
    FilterTable,
    GroupState,
)

logger = logging.getLogger(__name__)

# Default state directory
DEFAULT_STATE_DIR = Path.home() / ".aclcraft" / "state"


def _safe(name: str) -> str:
    """Percent-encode an identifier into a file name. A leading dot is encoded too."""
    encoded = quote(name, safe="")
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    return encoded


def _unsafe(stem: str) -> str:
    return unquote(stem)


class StateStore:
    """Persist GroupState and ApplyState snapshots as YAML files."""

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Initialize the state store.

        Args:
            base_dir: State directory (default: ACLCRAFT_STATE_DIR or ~/.aclcraft/state)
        """
        if base_dir is None:
            base_dir = Path(os.environ.get("ACLCRAFT_STATE_DIR", str(DEFAULT_STATE_DIR)))
        self.base_dir = Path(base_dir)
        self.groups_dir.mkdir(parents=True, exist_ok=True)
        self.applies_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"State store initialized at {self.base_dir}")

    @property
    def groups_dir(self) -> Path:
        return self.base_dir / "groups"

    @property
    def applies_dir(self) -> Path:
        return self.base_dir / "applies"

    def _group_path(self, device_id: str, table: FilterTable, name: str) -> Path:
        return self.groups_dir / _safe(device_id) / table.value / f"{_safe(name)}.yaml"

    def _legacy_group_path(self, device_id: str, name: str) -> Path:
        return self.groups_dir / _safe(device_id) / f"{_safe(name)}.yaml"

    def _apply_path(
        self,
        device_id: str,
        table: FilterTable,
        interface: str,
        direction: Direction
    ) -> Path:
        return (
            self.applies_dir / _safe(device_id) / table.value
            / f"{_safe(interface)}_{direction.value}.yaml"
        )

    def _write(self, path: Path, data: dict[str, Any]) -> int:
        existing = self._read(path)
        version = (existing.get("version", 0) + 1) if existing else 1

        document = {
            "version": version,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            **data,
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".yaml.tmp")
        tmp_path.write_text(yaml.safe_dump(document, default_flow_style=False, sort_keys=False))
        tmp_path.replace(path)
        return version

    def _read(self, path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        try:
            return yaml.safe_load(path.read_text()) or None
        except yaml.YAMLError as e:
            logger.error(f"Failed to read state file {path}: {e}")
            return None

    # === Groups ===

    def save_group(self, device_id: str, state: GroupState) -> int:
        """
        Save a group snapshot.

        Returns:
            New version number of the snapshot
        """
        path = self._group_path(device_id, state.table, state.name)
        version = self._write(path, state.to_dict())

        if state.table == FilterTable.IP:
            legacy = self._legacy_group_path(device_id, state.name)
            if legacy.exists():
                legacy.unlink()
                logger.info(f"Migrated legacy snapshot {legacy} to {path}")

        logger.info(f"Saved state for {device_id} {state.identity} (v{version})")
        return version

    def load_group(self, device_id: str, table: FilterTable, name: str) -> Optional[GroupState]:
        """Load a group snapshot, or None if there is none."""
        data = self._read(self._group_path(device_id, table, name))
        if data is None and table == FilterTable.IP:
            data = self._read(self._legacy_group_path(device_id, name))
            if data is not None:
                data.setdefault("table", FilterTable.IP.value)
                data.setdefault("name", name)
        if data is None:
            return None

        try:
            return GroupState.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Invalid state for {device_id} {table.value}:{name}: {e}")
            return None

    def delete_group(self, device_id: str, table: FilterTable, name: str) -> bool:
        deleted = False
        paths = [self._group_path(device_id, table, name)]
        if table == FilterTable.IP:
            paths.append(self._legacy_group_path(device_id, name))

        for path in paths:
            if path.exists():
                path.unlink()
                deleted = True

        if deleted:
            logger.info(f"Deleted state for {device_id} {table.value}:{name}")
        return deleted

    def list_groups(self, device_id: str, table: Optional[FilterTable] = None) -> list[GroupState]:
        """List stored groups of a device, optionally for one table."""
        device_dir = self.groups_dir / _safe(device_id)
        tables = [table] if table else list(FilterTable)
        groups = []

        for t in tables:
            for path in sorted((device_dir / t.value).glob("*.yaml")):
                state = self.load_group(device_id, t, _unsafe(path.stem))
                if state:
                    groups.append(state)

        if FilterTable.IP in tables:
            known = {g.name for g in groups if g.table == FilterTable.IP}
            for path in sorted(device_dir.glob("*.yaml")):
                name = _unsafe(path.stem)
                if name not in known:
                    state = self.load_group(device_id, FilterTable.IP, name)
                    if state:
                        groups.append(state)

        return groups

    # === Standalone applies ===

    def save_apply(self, device_id: str, state: ApplyState) -> int:
        binding = state.binding
        path = self._apply_path(device_id, state.table, binding.interface, binding.direction)
        version = self._write(path, state.to_dict())
        logger.info(f"Saved state for {device_id} apply {state.identity} (v{version})")
        return version

    def load_apply(
        self,
        device_id: str,
        table: FilterTable,
        interface: str,
        direction: Direction
    ) -> Optional[ApplyState]:
        data = self._read(self._apply_path(device_id, table, interface, direction))
        if data is None:
            return None
        try:
            return ApplyState.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Invalid apply state for {device_id} {interface} {direction.value}: {e}")
            return None

    def delete_apply(
        self,
        device_id: str,
        table: FilterTable,
        interface: str,
        direction: Direction
    ) -> bool:
        path = self._apply_path(device_id, table, interface, direction)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted apply state for {device_id} {table.value}:{interface}:{direction.value}")
            return True
        return False

    def list_applies(self, device_id: str, table: FilterTable) -> list[ApplyState]:
        applies = []
        for path in sorted((self.applies_dir / _safe(device_id) / table.value).glob("*.yaml")):
            data = self._read(path)
            if not data:
                continue
            try:
                applies.append(ApplyState.from_dict(data))
            except (KeyError, ValueError, TypeError) as e:
                logger.error(f"Invalid apply state {path}: {e}")
        return applies
