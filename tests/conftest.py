"""Shared fixtures: an in-memory router standing in for a real RTX."""
import pytest

from mcp_router_acl.acl_engine.schema import FilterTable, IPFilterPayload
from mcp_router_acl.devices.base import (
    DeviceCommandError,
    DeviceConfig,
    DeviceNotFoundError,
    FilterDevice,
)


class FakeFilterDevice(FilterDevice):
    """Router with numbered filter tables kept in dicts.

    Every mutating call is recorded in `calls`. Failures are injected by
    adding keys to the fail_* sets.
    """

    def __init__(self, device_id: str = "rtx-test", **config):
        config.setdefault("save_after_apply", False)
        super().__init__(device_id, DeviceConfig(
            type="rtx",
            name=device_id,
            host="192.0.2.1",
            username="admin",
            **config,
        ))
        self.entries: dict = {table: {} for table in FilterTable}
        self.bindings: dict = {}
        self.dynamic_bindings: dict = {}
        self.calls: list = []
        self.fail_define: set = set()
        self.fail_delete: set = set()
        self.fail_bind: set = set()
        self.fail_unbind: set = set()
        self.fail_read: set = set()
        self.fail_list = False
        self.fail_save = False
        self.connects = 0
        self.saves = 0

    async def connect(self) -> bool:
        self.connects += 1
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    async def create_or_update_entry(self, table, number, payload) -> None:
        if number in self.fail_define:
            raise DeviceCommandError(f"ip filter {number}", "Error: Invalid parameter")
        self.calls.append(("define", table, number))
        self.entries[table][number] = payload

    async def delete_entry(self, table, number) -> None:
        if number in self.fail_delete:
            raise DeviceCommandError(f"no ip filter {number}", "Error: Command failed")
        if number not in self.entries[table]:
            raise DeviceNotFoundError(f"{table.value} filter {number} not found")
        self.calls.append(("delete", table, number))
        del self.entries[table][number]

    async def get_entry(self, table, number):
        if number in self.fail_read:
            raise DeviceCommandError(f"show ip filter {number}", "Connection timeout")
        if number not in self.entries[table]:
            raise DeviceNotFoundError(f"{table.value} filter {number} not found")
        return self.entries[table][number]

    async def list_entry_numbers(self, table) -> list[int]:
        if self.fail_list:
            raise ConnectionError("Not connected")
        return sorted(self.entries[table])

    async def bind_interface_filters(self, table, interface, direction, numbers, dynamic=()) -> None:
        if (interface, direction) in self.fail_bind:
            raise DeviceCommandError(f"ip {interface} secure filter", "Error: Invalid parameter")
        self.calls.append(("bind", table, interface, direction, list(numbers)))
        slot = (table.binding_table, interface, direction)
        if table.is_dynamic:
            self.bindings[slot] = []
            self.dynamic_bindings[slot] = list(numbers)
        else:
            self.bindings[slot] = list(numbers)
            self.dynamic_bindings[slot] = list(dynamic)

    async def unbind_interface_filters(self, table, interface, direction) -> None:
        if (interface, direction) in self.fail_unbind:
            raise DeviceCommandError(f"no ip {interface} secure filter", "Error: Command failed")
        self.calls.append(("unbind", table, interface, direction))
        slot = (table.binding_table, interface, direction)
        self.bindings.pop(slot, None)
        self.dynamic_bindings.pop(slot, None)

    async def list_interface_filters(self, table, interface, direction) -> list[int]:
        slot = (table.binding_table, interface, direction)
        if table.is_dynamic:
            return list(self.dynamic_bindings.get(slot, []))
        return list(self.bindings.get(slot, []))

    async def save_config(self) -> None:
        if self.fail_save:
            raise DeviceCommandError("save", "Error: Command failed")
        self.saves += 1

    def mutations(self, kind: str) -> list:
        return [call for call in self.calls if call[0] == kind]


class FakeInventory:
    """Inventory serving fake devices by ID."""

    def __init__(self, *devices: FakeFilterDevice):
        self.devices = {d.device_id: d for d in devices}

    def get_device_ids(self) -> list[str]:
        return list(self.devices)

    def get_device(self, device_id: str) -> FakeFilterDevice:
        if device_id not in self.devices:
            raise KeyError(f"Unknown device: {device_id}")
        return self.devices[device_id]


def ip_rule(action: str = "pass", destination: str = "*", dest_port: str = "*") -> IPFilterPayload:
    protocol = "tcp" if dest_port != "*" else "*"
    return IPFilterPayload(action=action, destination=destination, protocol=protocol, dest_port=dest_port)


@pytest.fixture
def device():
    return FakeFilterDevice()


@pytest.fixture
def inventory(device):
    return FakeInventory(device)
