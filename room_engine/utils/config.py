"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _default_base_rates() -> dict[str, float]:
    return {
        "standard": 150.0,
        "deluxe": 200.0,
        "suite": 300.0,
        "presidential": 500.0,
    }


@dataclass(frozen=True)
class Settings:
    app_name: str = "Room Assignment Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    storage_backend: str = "memory"
    database_path: Path = PROJECT_ROOT / "data" / "room_assignments.db"

    inventory_service_url: Optional[str] = None
    inventory_fetch_timeout_seconds: float = 5.0
    notification_service_url: Optional[str] = None
    notification_timeout_seconds: float = 5.0

    queue_drain_interval_seconds: float = 30.0
    queue_batch_size: int = 50
    queue_autostart: bool = True

    seed_default_config: bool = True
    default_property_id: str = "default"
    base_rates: dict[str, float] = field(default_factory=_default_base_rates)
    default_rate: float = 150.0
    currency: str = "USD"
    upgrade_value_per_tier: float = 50.0
    booking_value_nightly_rate: float = 150.0
    fallback_shift_days: int = 1

    demo_inventory_floors: int = 10
    demo_rooms_per_floor: int = 8


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings from the environment once per process."""
    return Settings(
        app_name=_env_str("APP_NAME", Settings.app_name),
        app_version=_env_str("APP_VERSION", Settings.app_version),
        log_level=_env_str("LOG_LEVEL", Settings.log_level),
        storage_backend=_env_str("ASSIGNMENT_STORAGE_BACKEND", Settings.storage_backend).lower(),
        database_path=Path(
            _env_str("ASSIGNMENT_DATABASE_PATH", str(Settings.database_path))
        ),
        inventory_service_url=_env_optional("INVENTORY_SERVICE_URL"),
        inventory_fetch_timeout_seconds=_env_float(
            "INVENTORY_FETCH_TIMEOUT_SECONDS",
            Settings.inventory_fetch_timeout_seconds,
        ),
        notification_service_url=_env_optional("NOTIFICATION_SERVICE_URL"),
        notification_timeout_seconds=_env_float(
            "NOTIFICATION_TIMEOUT_SECONDS",
            Settings.notification_timeout_seconds,
        ),
        queue_drain_interval_seconds=_env_float(
            "QUEUE_DRAIN_INTERVAL_SECONDS",
            Settings.queue_drain_interval_seconds,
        ),
        queue_batch_size=_env_int("QUEUE_BATCH_SIZE", Settings.queue_batch_size),
        queue_autostart=_env_bool("QUEUE_AUTOSTART", Settings.queue_autostart),
        seed_default_config=_env_bool("SEED_DEFAULT_CONFIG", Settings.seed_default_config),
        default_property_id=_env_str("DEFAULT_PROPERTY_ID", Settings.default_property_id),
        currency=_env_str("RATE_CURRENCY", Settings.currency),
        fallback_shift_days=_env_int("FALLBACK_SHIFT_DAYS", Settings.fallback_shift_days),
    )
