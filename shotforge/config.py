"""Configuration management for the orchestration layer.

This module provides centralized configuration loading from environment variables.
Values that never change during a process lifetime are cached.

Environment Variables:
    DATABASE_URL: Snapshot/settings store URL (default: local SQLite file)
    MAX_CONCURRENT_IMAGE_GEN: Image submission queue ceiling (default: 2)
    MAX_CONCURRENT_VIDEO_GEN: Video submission queue ceiling (default: 1)
    RETRY_MAX_ATTEMPTS: Retries after the first attempt for image tasks (default: 3)
    VIDEO_RETRY_MAX_ATTEMPTS: Retries after the first attempt for video tasks (default: 2)
    RETRY_BASE_DELAY_SECONDS: Base backoff delay (default: 1.0)
    ITEM_TIMEOUT_SECONDS: Hard ceiling for one work item (default: 600)
    PAUSE_POLL_INTERVAL_SECONDS: Pause wait slice (default: 0.5)

Usage:
    from shotforge.config import get_item_timeout_seconds, get_database_url

    timeout = get_item_timeout_seconds()  # 600.0 unless overridden
"""

import os
from functools import lru_cache

import structlog

log = structlog.get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///shotforge.db"

# Queue ceilings: image backend tolerates a little parallelism, video does not
DEFAULT_MAX_CONCURRENT_IMAGE = 2
DEFAULT_MAX_CONCURRENT_VIDEO = 1

DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_VIDEO_RETRY_MAX_ATTEMPTS = 2
DEFAULT_RETRY_BASE_DELAY = 1.0

DEFAULT_ITEM_TIMEOUT = 600.0  # 10 minutes per work item
DEFAULT_PAUSE_POLL_INTERVAL = 0.5


@lru_cache
def get_database_url() -> str:
    """Get database URL for the persistence collaborator.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Environment Variable:
        DATABASE_URL: SQLAlchemy URL (default: sqlite+aiosqlite:///shotforge.db)

    Returns:
        Database URL with an async driver.
    """
    url = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def _read_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("invalid_int_setting", setting=name, value=raw, using_default=default)
        return default
    if value < minimum:
        log.warning("setting_below_minimum", setting=name, value=value, minimum=minimum)
        return minimum
    return value


def _read_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("invalid_float_setting", setting=name, value=raw, using_default=default)
        return default
    if value < minimum:
        log.warning("setting_below_minimum", setting=name, value=value, minimum=minimum)
        return minimum
    return value


def get_max_concurrent_image_gen() -> int:
    """Get the image submission queue ceiling.

    Environment Variable:
        MAX_CONCURRENT_IMAGE_GEN: Maximum in-flight image requests (default: 2)

    Returns:
        Ceiling, never below 1.
    """
    return _read_int("MAX_CONCURRENT_IMAGE_GEN", DEFAULT_MAX_CONCURRENT_IMAGE, minimum=1)


def get_max_concurrent_video_gen() -> int:
    """Get the video submission queue ceiling.

    Environment Variable:
        MAX_CONCURRENT_VIDEO_GEN: Maximum in-flight video requests (default: 1)

    Returns:
        Ceiling, never below 1.
    """
    return _read_int("MAX_CONCURRENT_VIDEO_GEN", DEFAULT_MAX_CONCURRENT_VIDEO, minimum=1)


def get_retry_max_attempts() -> int:
    """Get the number of retries after the first attempt for image tasks."""
    return _read_int("RETRY_MAX_ATTEMPTS", DEFAULT_RETRY_MAX_ATTEMPTS)


def get_video_retry_max_attempts() -> int:
    """Get the number of retries after the first attempt for video tasks.

    Video generation is expensive and slow, so it retries less than images.
    """
    return _read_int("VIDEO_RETRY_MAX_ATTEMPTS", DEFAULT_VIDEO_RETRY_MAX_ATTEMPTS)


def get_retry_base_delay() -> float:
    """Get the base backoff delay in seconds (doubled per attempt)."""
    return _read_float("RETRY_BASE_DELAY_SECONDS", DEFAULT_RETRY_BASE_DELAY)


def get_item_timeout_seconds() -> float:
    """Get the hard per-item ceiling applied by the orchestrators.

    Environment Variable:
        ITEM_TIMEOUT_SECONDS: Seconds before an item is forced to a failed
            result (default: 600)

    Returns:
        Timeout in seconds (minimum 1, maximum 3600).

    Note:
        Independent of the retry/timeout policy of the submission layer.
        A result that does not arrive in time is recorded as failed.
    """
    timeout = _read_float("ITEM_TIMEOUT_SECONDS", DEFAULT_ITEM_TIMEOUT)
    return max(1.0, min(3600.0, timeout))


def get_pause_poll_interval() -> float:
    """Get the longest single wait while an orchestrator is paused.

    Environment Variable:
        PAUSE_POLL_INTERVAL_SECONDS: Wait slice in seconds (default: 0.5)

    Returns:
        Interval in seconds (minimum 0.01).
    """
    return max(0.01, _read_float("PAUSE_POLL_INTERVAL_SECONDS", DEFAULT_PAUSE_POLL_INTERVAL))
