"""Yamaha RTX router handler via SSH CLI.

Technical details:
- Interactive shell via invoke_shell()
- "> " prompt for users, "# " after the administrator command
- Filter commands need administrator privileges
- "console lines infinity" disables pagination
- Changes only survive a reboot after "save"
"""
import asyncio
import logging
import re
import time
from typing import Optional, Sequence

import paramiko

from .base import (
    DeviceCommandError,
    DeviceConfig,
    DeviceNotFoundError,
    FilterDevice,
)
from .commands import (
    build_bind_command,
    build_delete_entry_command,
    build_entry_command,
    build_show_binding_command,
    build_show_entry_command,
    build_show_table_command,
    build_unbind_command,
    parse_entries,
    parse_interface_filters,
)
from ..acl_engine.schema import Direction, FilterPayload, FilterTable
from ..utils.connection import device_retry
from ..utils.logging_config import log_timing, timed

logger = logging.getLogger(__name__)

PROMPT_PATTERN = re.compile(r"[>#]\s*$")
ADMIN_PROMPT_PATTERN = re.compile(r"#\s*$")
PASSWORD_PATTERN = re.compile(r"Password:\s*$", re.IGNORECASE)
ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")


class RTXSSH:
    """Interactive paramiko shell to one RTX router.

    Every blocking paramiko call runs in the default executor so a slow
    router never stalls the MCP event loop.
    """

    def __init__(self, host: str, port: int, username: str, password: str, timeout: float = 30):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self._client: Optional[paramiko.SSHClient] = None
        self._shell: Optional[paramiko.Channel] = None

    @staticmethod
    async def _blocking(func, *args):
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    def _open(self) -> paramiko.Channel:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            timeout=self.timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        self._client = client
        channel = client.invoke_shell()
        channel.settimeout(self.timeout)
        return channel

    def _drain(self) -> str:
        if not self._shell.recv_ready():
            return ""
        return ANSI_PATTERN.sub("", self._shell.recv(65535).decode("utf-8", errors="ignore"))

    async def connect(self) -> None:
        """Open the session and wait for the login prompt."""
        self._shell = await self._blocking(self._open)
        await self.read_until(PROMPT_PATTERN, timeout=10)

    async def close(self) -> None:
        for resource in (self._shell, self._client):
            if resource is None:
                continue
            try:
                resource.close()
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.debug(f"Error closing SSH session to {self.host}: {e}")
        self._shell = None
        self._client = None

    async def read_until(self, pattern: re.Pattern, timeout: float = 30) -> str:
        """Read until `pattern` matches the end of the output.

        Raises:
            TimeoutError: If the pattern never shows up
        """
        if not self._shell:
            raise ConnectionError("Not connected")

        buffer = ""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            chunk = await self._blocking(self._drain)
            if not chunk:
                await asyncio.sleep(0.1)
                continue
            buffer += chunk
            if pattern.search(buffer):
                return buffer

        raise TimeoutError(f"Timed out waiting for {pattern.pattern!r} from {self.host}")

    async def send_raw(self, data: str) -> None:
        if not self._shell:
            raise ConnectionError("Not connected")
        await self._blocking(self._shell.send, data)

    async def send_command(self, command: str, timeout: float = 30) -> str:
        """Send a command and return its output without echo and prompt."""
        await self.send_raw(f"{command}\r")
        raw = await self.read_until(PROMPT_PATTERN, timeout=timeout)

        lines = raw.replace("\r", "").split("\n")
        # first line echoes the command, last line is the next prompt
        if lines and command in lines[0]:
            del lines[0]
        if lines and PROMPT_PATTERN.search(lines[-1]):
            del lines[-1]
        return "\n".join(lines).strip()


class RTXDevice(FilterDevice):
    """Yamaha RTX router handler via SSH CLI."""

    # Error patterns that indicate command failure
    ERROR_PATTERNS = [
        r"^%?\s*Error[:\s]",
        r"^Command failed",
        r"Invalid parameter",
        r"Permission denied",
        r"^Connection timeout",
    ]

    # Only meaningful as the answer to a change
    NOT_FOUND_PATTERNS = [
        r"not found",
        r"No such",
        r"is not set",
    ]

    # Commands whose output is configuration text, not a status message
    READ_ONLY_PREFIXES = ("show ",)

    def __init__(self, device_id: str, config: DeviceConfig):
        super().__init__(device_id, config)
        self._ssh: Optional[RTXSSH] = None
        self._admin = False

    def _has_error(self, output: str, command: str = "") -> Optional[str]:
        """Return the first error line of `output`, if any.

        A show listing is scanned for error-prefixed lines only, so a
        description or filter that happens to contain "not found" is data.
        """
        if command.startswith(self.READ_ONLY_PREFIXES):
            patterns = [p for p in self.ERROR_PATTERNS if p.startswith("^")]
        else:
            patterns = self.ERROR_PATTERNS + self.NOT_FOUND_PATTERNS

        for line in output.split("\n"):
            line_stripped = line.strip()
            if not line_stripped:
                continue
            for pattern in patterns:
                if re.search(pattern, line_stripped, re.IGNORECASE):
                    return line_stripped
        return None

    def _is_not_found(self, error_line: str) -> bool:
        return any(
            re.search(pattern, error_line, re.IGNORECASE)
            for pattern in self.NOT_FOUND_PATTERNS
        )

    @device_retry()
    @timed("connect")
    async def connect(self) -> bool:
        """Connect to the router and enter administrator mode."""
        logger.info(f"Connecting to RTX {self.device_id} at {self.host}")

        self._ssh = RTXSSH(
            self.host,
            self.config.port,
            self.config.username,
            self.config.get_password(),
            timeout=self.config.timeout,
        )
        await self._ssh.connect()

        await self._ssh.send_command("console character en.ascii")
        await self._ssh.send_command("console lines infinity")
        await self._enter_administrator()

        self._connected = True
        logger.info(f"Connected to {self.device_id}")
        return True

    async def _enter_administrator(self) -> None:
        """Escalate with the administrator command."""
        await self._ssh.send_raw("administrator\r")
        output = await self._ssh.read_until(
            re.compile(f"{PASSWORD_PATTERN.pattern}|{ADMIN_PROMPT_PATTERN.pattern}", re.IGNORECASE),
            timeout=10,
        )
        if PASSWORD_PATTERN.search(output):
            await self._ssh.send_raw(f"{self.config.get_admin_password()}\r")
            output = await self._ssh.read_until(PROMPT_PATTERN, timeout=10)

        if not ADMIN_PROMPT_PATTERN.search(output):
            raise PermissionError(f"Administrator login failed on {self.device_id}")
        self._admin = True
        logger.debug(f"Administrator mode on {self.device_id}")

    async def disconnect(self) -> None:
        """Leave administrator mode and close the session."""
        if self._ssh:
            await self._ssh.close()
            self._ssh = None
        self._connected = False
        self._admin = False
        logger.info(f"Disconnected from {self.device_id}")

    async def execute(self, command: str) -> str:
        """
        Run one command.

        Raises:
            DeviceNotFoundError: The router reports the target does not exist
            DeviceCommandError: Any other error output
        """
        if not self._ssh:
            raise ConnectionError("Not connected")

        start = time.perf_counter()
        try:
            output = await self._ssh.send_command(command, timeout=self.config.timeout)
        except (OSError, EOFError, paramiko.SSHException) as e:
            log_timing("execute", self.device_id, start, e, cmd=command[:50])
            logger.error(f"Lost session to {self.device_id} during {command!r}: {e}")
            self._connected = False
            raise

        error = self._has_error(output, command)
        log_timing("execute", self.device_id, start, error, cmd=command[:50])
        if error:
            if self._is_not_found(error):
                raise DeviceNotFoundError(f"{command}: {error}")
            raise DeviceCommandError(command, error)
        return output

    # Numbered entries

    async def create_or_update_entry(
        self,
        table: FilterTable,
        number: int,
        payload: FilterPayload
    ) -> None:
        await self.execute(build_entry_command(table, number, payload))

    async def delete_entry(self, table: FilterTable, number: int) -> None:
        # RTX accepts "no ip filter N" silently for unknown N
        if number not in await self.list_entry_numbers(table):
            raise DeviceNotFoundError(f"{table.value} filter {number} not found")
        await self.execute(build_delete_entry_command(table, number))

    async def get_entry(self, table: FilterTable, number: int) -> FilterPayload:
        output = await self.execute(build_show_entry_command(table, number))
        entries = parse_entries(table, output)
        if number not in entries:
            raise DeviceNotFoundError(f"{table.value} filter {number} not found")
        return entries[number]

    async def list_entry_numbers(self, table: FilterTable) -> list[int]:
        output = await self.execute(build_show_table_command(table))
        return sorted(parse_entries(table, output))

    # Interface bindings

    async def bind_interface_filters(
        self,
        table: FilterTable,
        interface: str,
        direction: Direction,
        numbers: list[int],
        dynamic: Sequence[int] = (),
    ) -> None:
        await self.execute(build_bind_command(table, interface, direction, numbers, dynamic))

    async def unbind_interface_filters(
        self,
        table: FilterTable,
        interface: str,
        direction: Direction
    ) -> None:
        await self.execute(build_unbind_command(table, interface, direction))

    async def list_interface_filters(
        self,
        table: FilterTable,
        interface: str,
        direction: Direction
    ) -> list[int]:
        output = await self.execute(build_show_binding_command(table, interface))
        return parse_interface_filters(table, output).get((interface, direction), [])

    @timed("save_config")
    async def save_config(self) -> None:
        """Write the running configuration to flash."""
        await self.execute("save")
        logger.info(f"Configuration saved on {self.device_id}")
