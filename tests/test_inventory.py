"""Tests for router inventory management."""
import pytest
import tempfile
import os

from mcp_router_acl.config.inventory import RouterInventory
from mcp_router_acl.devices import RTXDevice


class TestRouterInventory:
    """Tests for RouterInventory class."""

    @pytest.fixture
    def temp_config(self):
        """Create a temporary config file for testing."""
        config_content = """
defaults:
  password_env: "TEST_PASSWORD"
  admin_password_env: "TEST_ADMIN_PASSWORD"
  timeout: 30
  username: admin

devices:
  rtx-edge:
    type: rtx
    name: "Edge Router"
    host: 192.168.1.1

  rtx-branch:
    type: rtx
    host: 192.168.2.1
    username: operator
    save_after_apply: false
    check_conflicts: false
"""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(config_content)
            f.flush()
            yield f.name
        os.unlink(f.name)

    def test_load_config(self, temp_config):
        """Inventory loads config file correctly."""
        inv = RouterInventory(temp_config)
        assert inv.get_device_ids() == ["rtx-edge", "rtx-branch"]

    def test_defaults_merged(self, temp_config):
        """Defaults fill in settings the device does not set."""
        inv = RouterInventory(temp_config)
        config = inv.get_device_config("rtx-edge")
        assert config["username"] == "admin"
        assert config["timeout"] == 30
        assert config["password_env"] == "TEST_PASSWORD"

    def test_device_overrides_defaults(self, temp_config):
        inv = RouterInventory(temp_config)
        assert inv.get_device_config("rtx-branch")["username"] == "operator"

    def test_name_defaults_to_id(self, temp_config):
        inv = RouterInventory(temp_config)
        assert inv.get_device_config("rtx-branch")["name"] == "rtx-branch"

    def test_get_device_unknown(self, temp_config):
        """Unknown device raises KeyError."""
        inv = RouterInventory(temp_config)
        with pytest.raises(KeyError) as exc_info:
            inv.get_device_config("nonexistent")
        assert "Unknown device" in str(exc_info.value)

    def test_get_device(self, temp_config, monkeypatch):
        """Can create device instances."""
        monkeypatch.setenv("TEST_PASSWORD", "secret")
        inv = RouterInventory(temp_config)
        device = inv.get_device("rtx-edge")
        assert isinstance(device, RTXDevice)
        assert device.config.get_password() == "secret"
        assert device.config.save_after_apply is True

    def test_per_device_engine_settings(self, temp_config):
        inv = RouterInventory(temp_config)
        device = inv.get_device("rtx-branch")
        assert device.config.save_after_apply is False
        assert device.config.check_conflicts is False

    def test_get_device_cached(self, temp_config):
        """Device instances are cached."""
        inv = RouterInventory(temp_config)
        assert inv.get_device("rtx-edge") is inv.get_device("rtx-edge")

    def test_get_devices_by_type(self, temp_config):
        inv = RouterInventory(temp_config)
        assert len(inv.get_devices_by_type("rtx")) == 2
        assert inv.get_devices_by_type("ix") == []

    def test_config_from_env(self, temp_config, monkeypatch, tmp_path):
        """ACLCRAFT_CONFIG is searched first."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("ACLCRAFT_CONFIG", temp_config)
        inv = RouterInventory()
        assert inv.config_path == temp_config

    def test_missing_config(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("ACLCRAFT_CONFIG", str(tmp_path / "missing.yaml"))
        monkeypatch.setenv("HOME", str(tmp_path))
        if os.path.exists("/etc/aclcraft/devices.yaml"):
            pytest.skip("system-wide inventory present")
        with pytest.raises(FileNotFoundError):
            RouterInventory()

    @pytest.mark.asyncio
    async def test_close_all(self, temp_config):
        inv = RouterInventory(temp_config)
        inv.get_device("rtx-edge")
        await inv.close_all()
        assert inv._devices == {}
