"""Retry policies for router transport failures.

Only transport errors are retried. A command the router rejects raises a
DeviceError, which is never in the retryable set, so an entry define that
fails validation is reported once instead of being hammered.
"""
import logging
from functools import wraps
from typing import Any, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


RETRYABLE_EXCEPTIONS = (
    ConnectionRefusedError,
    ConnectionResetError,
    TimeoutError,
    OSError,
    EOFError,
)


def device_retry(max_wait: float = 10) -> Callable:
    """Retry an async device method using the device's own settings.

    Attempts come from ``self.config.retries`` and the first backoff step
    from ``self.config.retry_delay``, so each inventory entry can tune how
    hard a flaky router is retried.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def call(self, *args: Any, **kwargs: Any) -> Any:
            config = self.config
            controller = AsyncRetrying(
                stop=stop_after_attempt(max(1, config.retries)),
                wait=wait_exponential(multiplier=1, min=config.retry_delay, max=max_wait),
                retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            async for attempt in controller:
                with attempt:
                    result = await func(self, *args, **kwargs)
            return result
        return call

    return decorator
