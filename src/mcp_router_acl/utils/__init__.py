"""Utility modules for retries, logging and auditing."""
from .connection import device_retry
from .logging_config import (
    setup_logging,
    timed,
    timed_section,
    perf_logger,
)

__all__ = [
    "device_retry",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
]
