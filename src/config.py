"""
Configuration loader for the Terraform reconciliation engine.
"""

import os
from dataclasses import dataclass
from typing import Optional

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Configuration class for the reconciliation engine."""

    log_level: str = "INFO"
    aws_region: Optional[str] = None
    aws_partition: str = "aws"
    retry_timeout_seconds: float = 180.0
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 10.0
    retry_jitter_seconds: float = 0.5
    wait_timeout_seconds: float = 600.0
    wait_poll_interval_seconds: float = 5.0
    wait_poll_increment_seconds: float = 1.0
    wait_max_poll_interval_seconds: float = 30.0
    max_batch_size: int = 20


def _float_env(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_config() -> Config:
    """
    Loads and validates configuration from the environment.

    Every setting is optional; unset variables fall back to the Config defaults.

    Returns:
        Config object with validated settings

    Raises:
        ValueError: If a configuration value is malformed or out of range
    """
    defaults = Config()

    log_level = os.environ.get("LOG_LEVEL", defaults.log_level).upper()
    if log_level not in VALID_LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {', '.join(VALID_LOG_LEVELS)}, got {log_level!r}")

    aws_region = os.environ.get("AWS_REGION") or None
    aws_partition = os.environ.get("AWS_PARTITION", defaults.aws_partition)

    raw_batch_size = os.environ.get("MAX_BATCH_SIZE", str(defaults.max_batch_size))
    try:
        max_batch_size = int(raw_batch_size)
    except ValueError:
        raise ValueError(f"MAX_BATCH_SIZE must be an integer, got {raw_batch_size!r}")
    if max_batch_size < 1:
        raise ValueError("MAX_BATCH_SIZE must be at least 1")

    config = Config(
        log_level=log_level,
        aws_region=aws_region,
        aws_partition=aws_partition,
        retry_timeout_seconds=_float_env("RETRY_TIMEOUT_SECONDS", defaults.retry_timeout_seconds),
        retry_base_delay_seconds=_float_env("RETRY_BASE_DELAY_SECONDS", defaults.retry_base_delay_seconds),
        retry_max_delay_seconds=_float_env("RETRY_MAX_DELAY_SECONDS", defaults.retry_max_delay_seconds),
        retry_jitter_seconds=_float_env("RETRY_JITTER_SECONDS", defaults.retry_jitter_seconds),
        wait_timeout_seconds=_float_env("WAIT_TIMEOUT_SECONDS", defaults.wait_timeout_seconds),
        wait_poll_interval_seconds=_float_env("WAIT_POLL_INTERVAL_SECONDS", defaults.wait_poll_interval_seconds),
        wait_poll_increment_seconds=_float_env("WAIT_POLL_INCREMENT_SECONDS", defaults.wait_poll_increment_seconds),
        wait_max_poll_interval_seconds=_float_env(
            "WAIT_MAX_POLL_INTERVAL_SECONDS", defaults.wait_max_poll_interval_seconds
        ),
        max_batch_size=max_batch_size,
    )

    if config.retry_max_delay_seconds < config.retry_base_delay_seconds:
        raise ValueError("RETRY_MAX_DELAY_SECONDS must not be smaller than RETRY_BASE_DELAY_SECONDS")

    return config
