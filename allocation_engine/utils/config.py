"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be numeric, got {value!r}") from exc


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_timeout_seconds: float
    default_weekly_capacity_hours: float
    capacity_comfortable_threshold: float
    capacity_warning_threshold: float
    capacity_critical_threshold: float
    underutilization_threshold: float
    max_allocated_hours: float
    notification_queue_size: int
    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; tests derive copies with `replace`."""
    return Settings(
        app_name=_env_str("APP_NAME", "Resource Allocation Engine"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(_env_str("DATABASE_PATH", "data/allocations.db")),
        database_timeout_seconds=_env_float("DATABASE_TIMEOUT_SECONDS", 5.0),
        default_weekly_capacity_hours=_env_float("DEFAULT_WEEKLY_CAPACITY_HOURS", 40.0),
        capacity_comfortable_threshold=_env_float("CAPACITY_COMFORTABLE_THRESHOLD", 60.0),
        capacity_warning_threshold=_env_float("CAPACITY_WARNING_THRESHOLD", 80.0),
        capacity_critical_threshold=_env_float("CAPACITY_CRITICAL_THRESHOLD", 95.0),
        underutilization_threshold=_env_float("UNDERUTILIZATION_THRESHOLD", 70.0),
        max_allocated_hours=_env_float("MAX_ALLOCATED_HOURS", 1000.0),
        notification_queue_size=_env_int("NOTIFICATION_QUEUE_SIZE", 1000),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
    )
