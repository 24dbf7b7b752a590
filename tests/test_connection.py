"""Tests for connect retry handling."""
import pytest

from mcp_router_acl.devices.base import DeviceCommandError
from mcp_router_acl.devices.base import DeviceConfig
from mcp_router_acl.utils.connection import RETRYABLE_EXCEPTIONS, device_retry


class TestRetryableExceptions:
    """Tests for retryable exceptions list."""

    @pytest.mark.parametrize("exc", [
        ConnectionRefusedError,
        ConnectionResetError,
        TimeoutError,
        OSError,
        EOFError,
    ])
    def test_transport_errors_retryable(self, exc):
        assert exc in RETRYABLE_EXCEPTIONS

    def test_device_errors_not_retryable(self):
        assert not issubclass(DeviceCommandError, RETRYABLE_EXCEPTIONS)


class FlakyRouter:
    """Device-shaped object whose connect fails a set number of times."""

    def __init__(self, failures, error=ConnectionRefusedError("connection refused"), **settings):
        self.config = DeviceConfig(type="rtx", name="flaky", host="192.0.2.9", username="admin", **settings)
        self.failures = failures
        self.error = error
        self.attempts = 0

    @device_retry(max_wait=0.05)
    async def connect(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return True


class TestDeviceRetry:
    """Tests for retries driven by the device config."""

    @pytest.mark.asyncio
    async def test_success_no_retry(self):
        router = FlakyRouter(failures=0, retries=3, retry_delay=0.01)
        assert await router.connect() is True
        assert router.attempts == 1

    @pytest.mark.asyncio
    async def test_recovers_within_configured_retries(self):
        router = FlakyRouter(failures=2, retries=3, retry_delay=0.01)
        assert await router.connect() is True
        assert router.attempts == 3

    @pytest.mark.asyncio
    async def test_ssh_reset_then_success(self):
        """A dropped SSH session is retried."""
        router = FlakyRouter(
            failures=1, error=ConnectionResetError("Connection reset by peer"),
            retries=3, retry_delay=0.01,
        )
        assert await router.connect() is True
        assert router.attempts == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_retries(self):
        router = FlakyRouter(failures=5, retries=2, retry_delay=0.01)
        with pytest.raises(ConnectionRefusedError):
            await router.connect()
        assert router.attempts == 2

    @pytest.mark.asyncio
    async def test_router_errors_not_retried(self):
        """A command rejected by the router is not a transport failure."""
        router = FlakyRouter(
            failures=5, error=DeviceCommandError("login", "Error: Invalid parameter"),
            retries=3, retry_delay=0.01,
        )
        with pytest.raises(DeviceCommandError):
            await router.connect()
        assert router.attempts == 1

    @pytest.mark.asyncio
    async def test_zero_retries_still_tries_once(self):
        router = FlakyRouter(failures=0, retries=0, retry_delay=0.01)
        assert await router.connect() is True
        assert router.attempts == 1
