"""Base device abstraction for routers with numbered filter tables."""
import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..acl_engine.schema import Direction, FilterPayload, FilterTable

logger = logging.getLogger(__name__)


class DeviceError(Exception):
    """Base class for device-level failures."""
    pass


class DeviceNotFoundError(DeviceError):
    """The requested filter entry or binding does not exist on the device."""
    pass


class DeviceCommandError(DeviceError):
    """The device rejected a command or returned an error."""

    def __init__(self, command: str, output: str):
        self.command = command
        self.output = output
        super().__init__(f"command '{command}' failed: {output}")


@dataclass
class DeviceConfig:
    """Configuration for a router."""
    type: str
    name: str
    host: str
    username: str
    port: int = 22
    protocol: str = "ssh"
    password: Optional[str] = None
    password_env: str = "ROUTER_PASSWORD"
    admin_password: Optional[str] = None
    admin_password_env: str = "ROUTER_ADMIN_PASSWORD"
    timeout: int = 30
    retries: int = 3
    retry_delay: float = 2
    save_after_apply: bool = True
    check_conflicts: bool = True

    def get_password(self) -> str:
        """Get password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")

    def get_admin_password(self) -> str:
        """Get administrator password from config or environment variable."""
        if self.admin_password:
            return self.admin_password
        return os.environ.get(self.admin_password_env, "")


class FilterDevice(ABC):
    """Abstract base class for devices exposing numbered filter tables.

    Create and update are the same operation on these devices: defining
    entry N replaces whatever entry N held before.
    """

    def __init__(self, device_id: str, config: DeviceConfig):
        self.device_id = device_id
        self.config = config
        self._connected = False
        self._connection: Any = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def is_connected(self) -> bool:
        return self._connected

    # Connection management
    @abstractmethod
    async def connect(self) -> bool:
        """Establish connection to the device."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the device."""
        pass

    # Numbered entries
    @abstractmethod
    async def create_or_update_entry(
        self,
        table: "FilterTable",
        number: int,
        payload: "FilterPayload"
    ) -> None:
        """Define filter entry `number` with `payload`."""
        pass

    @abstractmethod
    async def delete_entry(self, table: "FilterTable", number: int) -> None:
        """Delete filter entry `number`.

        Raises:
            DeviceNotFoundError: If the entry does not exist
        """
        pass

    @abstractmethod
    async def get_entry(self, table: "FilterTable", number: int) -> "FilterPayload":
        """Read filter entry `number`.

        Raises:
            DeviceNotFoundError: If the entry does not exist
        """
        pass

    @abstractmethod
    async def list_entry_numbers(self, table: "FilterTable") -> list[int]:
        """List every number currently defined in a table."""
        pass

    # Interface bindings
    @abstractmethod
    async def bind_interface_filters(
        self,
        table: "FilterTable",
        interface: str,
        direction: "Direction",
        numbers: list[int],
        dynamic: Sequence[int] = (),
    ) -> None:
        """Set the complete ordered filter list of an interface slot.

        `dynamic` numbers follow the static list of an IPv4 or IPv6 slot.
        """
        pass

    @abstractmethod
    async def unbind_interface_filters(
        self,
        table: "FilterTable",
        interface: str,
        direction: "Direction"
    ) -> None:
        """Remove every filter from an interface slot."""
        pass

    @abstractmethod
    async def list_interface_filters(
        self,
        table: "FilterTable",
        interface: str,
        direction: "Direction"
    ) -> list[int]:
        """Get the filter numbers bound to an interface slot, in order."""
        pass

    async def save_config(self) -> None:
        """Persist the running configuration (no-op when unsupported)."""
        logger.debug(f"save_config not supported on {self.device_id}")

    # Context manager support
    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False
