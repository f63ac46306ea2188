from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    app_name: str = "Stockroom Inventory"
    api_prefix: str = "/v1"
    log_level: str = "INFO"
    mongodb_uri: str = "mongodb://localhost:27017/commerce"
    redis_url: str = "redis://localhost:6379/0"
    enable_external_services: bool = False
    reservation_duration_ms: int = 30 * 60 * 1000
    max_inventory: int = 999_999
    inventory_max_retries: int = 3
    inventory_retry_base_delay_ms: int = 100
    cache_failure_threshold: int = 5
    cache_recovery_seconds: float = 60.0
    cache_memory_max_entries: int = 100

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "Settings":
        load_dotenv(env_file)
        defaults = cls()
        return cls(
            app_name=os.getenv("APP_NAME", defaults.app_name),
            api_prefix=os.getenv("API_PREFIX", defaults.api_prefix),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            mongodb_uri=os.getenv("MONGODB_URI", defaults.mongodb_uri),
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            enable_external_services=_env_bool(
                "ENABLE_EXTERNAL_SERVICES", defaults.enable_external_services
            ),
            reservation_duration_ms=max(
                1, _env_int("RESERVATION_DURATION_MS", defaults.reservation_duration_ms)
            ),
            inventory_max_retries=max(
                0, _env_int("INVENTORY_MAX_RETRIES", defaults.inventory_max_retries)
            ),
            inventory_retry_base_delay_ms=max(
                0,
                _env_int("INVENTORY_RETRY_BASE_DELAY_MS", defaults.inventory_retry_base_delay_ms),
            ),
            cache_failure_threshold=max(
                1, _env_int("CACHE_FAILURE_THRESHOLD", defaults.cache_failure_threshold)
            ),
            cache_recovery_seconds=max(
                0.01, _env_float("CACHE_RECOVERY_SECONDS", defaults.cache_recovery_seconds)
            ),
            cache_memory_max_entries=max(
                1, _env_int("CACHE_MEMORY_MAX_ENTRIES", defaults.cache_memory_max_entries)
            ),
        )
