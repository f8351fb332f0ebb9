"""Configuration management for familyvault.

Settings come from environment variables, cast to the requested type and
cached per key. ``.env`` files are loaded by the admin CLI before the first
lookup.
"""

import os
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """Centralized configuration management using environment variables."""

    def __init__(self) -> None:
        self._cache: dict[str, Any] = {}

    def get(self, key: str, default: Any = None, cast_type: type = str) -> Any:
        """Get configuration value from environment variables.

        Args:
            key: Configuration key
            default: Default value if not found
            cast_type: Type to cast the value to (str, int, bool, float)

        Returns:
            Configuration value cast to the specified type
        """
        cache_key = f"{key}:{cast_type.__name__}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        value = os.getenv(key)
        if value is None:
            value = default

        if value is not None:
            try:
                if cast_type is bool:
                    if isinstance(value, str):
                        value = value.lower() in ("true", "1", "yes", "on")
                    else:
                        value = bool(value)
                elif cast_type is not str:
                    value = cast_type(value)
            except (ValueError, TypeError) as e:
                logger.warning("config_cast_failed", key=key, cast_type=cast_type.__name__, error=str(e))
                value = default

        self._cache[cache_key] = value
        return value

    def get_required(self, key: str, cast_type: type = str) -> Any:
        """Get required configuration value.

        Raises:
            ValueError: If the required configuration is not found
        """
        value = self.get(key, cast_type=cast_type)
        if value is None:
            raise ValueError(f"Required configuration '{key}' not found")
        return value

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.get("ENVIRONMENT", "development").lower() in ["development", "dev", "local", "test"]

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.get("ENVIRONMENT", "development").lower() in ["production", "prod"]

    def clear_cache(self) -> None:
        """Clear configuration cache."""
        self._cache.clear()


_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_env(key: str, default: Any = None, cast_type: type = str) -> Any:
    """Get environment variable with type casting."""
    return get_config().get(key, default, cast_type)


def get_required_env(key: str, cast_type: type = str) -> Any:
    """Get required environment variable."""
    return get_config().get_required(key, cast_type)


def get_storage_backend_name() -> str:
    """Get the persistence backend name: ``duckdb`` or ``gcs``."""
    return str(get_env("FAMILYVAULT_STORAGE_BACKEND", "duckdb")).lower()


def get_database_path() -> str:
    """Get the DuckDB database file path."""
    return str(get_env("FAMILYVAULT_DB_PATH", "data/familyvault.duckdb"))


def get_project_id() -> str | None:
    """Get Google Cloud project ID, if configured."""
    return get_env("GOOGLE_CLOUD_PROJECT")


def get_metadata_bucket() -> str:
    """Get the GCS bucket holding metadata documents."""
    return str(get_required_env("GCS_METADATA_BUCKET"))


def get_metadata_prefix() -> str:
    """Get the object prefix for metadata documents in GCS."""
    return str(get_env("GCS_METADATA_PREFIX", "familyvault"))


def get_retry_attempts() -> int:
    """Get total attempts for retried storage operations."""
    return max(1, int(get_env("FAMILYVAULT_RETRY_ATTEMPTS", 3, int)))


def get_retry_base_delay() -> float:
    """Get the first retry delay in seconds."""
    return max(0.0, float(get_env("FAMILYVAULT_RETRY_BASE_DELAY", 0.5, float)))


def get_retry_max_delay() -> float:
    """Get the retry delay cap in seconds."""
    return max(0.0, float(get_env("FAMILYVAULT_RETRY_MAX_DELAY", 8.0, float)))


def get_duplicate_window() -> int:
    """Get how many years either side of the target year duplicate detection scans."""
    return max(0, int(get_env("FAMILYVAULT_DUPLICATE_WINDOW", 1, int)))


def get_shard_cache_ttl() -> float:
    """Get shard cache time-to-live in seconds (0 disables caching)."""
    return max(0.0, float(get_env("FAMILYVAULT_SHARD_CACHE_TTL", 30.0, float)))
