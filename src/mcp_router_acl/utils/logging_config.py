"""Logging configuration for the aclcraft MCP server.

Provides configurable logging with:
- File-based logging with rotation
- Console output on stderr (stdout carries the MCP protocol)
- Performance timing decorators for device round-trips
- A separate performance log for easy filtering

Environment Variables:
    ACLCRAFT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    ACLCRAFT_LOG_FILE: Path to log file (default: ~/.aclcraft/aclcraft.log)
    ACLCRAFT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    ACLCRAFT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from mcp_router_acl.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("connect")
    async def connect(self):
        ...

    async with timed_section("filter_sync", device_id="rtx-edge", define=4):
        ...
"""
import functools
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Timing records go to aclcraft.perf so they can be filtered out
perf_logger = logging.getLogger("aclcraft.perf")

# Logger names that receive the console and file handlers
LOGGER_NAMES = ("aclcraft", "mcp_router_acl")

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("ACLCRAFT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".aclcraft" / "aclcraft.log"
    return Path(os.environ.get("ACLCRAFT_LOG_FILE", str(default_path)))


def rotating_handler(
    path: Path,
    formatter: logging.Formatter,
    max_mb: Optional[int] = None,
    backups: Optional[int] = None,
) -> RotatingFileHandler:
    """Size-rotated UTF-8 file handler; limits default to the ACLCRAFT_LOG_* settings."""
    if max_mb is None:
        max_mb = int(os.environ.get("ACLCRAFT_LOG_MAX_SIZE", "10"))
    if backups is None:
        backups = int(os.environ.get("ACLCRAFT_LOG_BACKUPS", "5"))
    handler = RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """Configure logging for the server process.

    The console handler honours ACLCRAFT_LOG_LEVEL, the rotating file
    handler keeps everything at DEBUG, and timing records only go to
    aclcraft-perf.log next to the main log. Calling it again is a no-op.
    """
    if logging.getLogger(LOGGER_NAMES[0]).handlers:
        return

    log_level = get_log_level()
    log_file = get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-30s | %(levelname)-7s | %(message)s",
        datefmt=_DATE_FORMAT,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)
    file_handler = rotating_handler(log_file, main_format)

    for name in LOGGER_NAMES:
        target = logging.getLogger(name)
        target.setLevel(logging.DEBUG)
        target.addHandler(console_handler)
        target.addHandler(file_handler)

    perf_log_file = log_file.parent / "aclcraft-perf.log"
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False
    perf_logger.addHandler(rotating_handler(
        perf_log_file,
        logging.Formatter("%(asctime)s.%(msecs)03d | PERF | %(message)s", datefmt=_DATE_FORMAT),
    ))

    logging.getLogger(LOGGER_NAMES[0]).info(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
    )


def log_timing(
    operation: str,
    device_id: Optional[str],
    start: float,
    error: Any = None,
    **extra: Any,
) -> None:
    """Write one perf line; `error` is an exception or router error text."""
    elapsed = (time.perf_counter() - start) * 1000
    status = f"FAIL: {error}" if error else "OK"
    parts = [f"{operation:20s}", f"{device_id or 'N/A':15s}", f"{elapsed:8.2f}ms", status]
    parts.extend(f"{k}={v}" for k, v in extra.items())
    message = " | ".join(parts)
    if error:
        perf_logger.warning(message)
    else:
        perf_logger.info(message)


def timed(operation: str, device_id: Optional[str] = None):
    """Decorator logging the duration of a coroutine method.

    Args:
        operation: Name of the operation (e.g., "connect", "save_config")
        device_id: Device identifier; defaults to self.device_id
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            dev_id = device_id
            if dev_id is None and args:
                dev_id = getattr(args[0], "device_id", None)

            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log_timing(operation, dev_id, start, e)
                raise
            log_timing(operation, dev_id, start)
            return result

        return wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Args:
        operation: Name of the operation
        device_id: Device identifier
        **extra: Additional context to log
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        log_timing(operation, device_id, start, e, **extra)
        raise
    log_timing(operation, device_id, start, **extra)
