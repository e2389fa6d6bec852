"""Configuration management for the cache mirror."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from .constants import (
    BUFFER_CLEANUP_INTERVAL,
    CHANGE_DETECTION_INTERVAL,
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_CHANGE_DETECTION_WINDOW_HOURS,
    DEFAULT_DRAIN_DELAY_SECONDS,
    DEFAULT_HEALTH_TOLERANCE,
    DEFAULT_KEY_PREFIX,
    DEFAULT_LIGHTWEIGHT_MIN_AGE_SECONDS,
    DEFAULT_LIGHTWEIGHT_WINDOW_HOURS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_PAGES,
    DEFAULT_ORIGIN_TIMEOUT,
    DEFAULT_PAGE_SIZE,
    DEFAULT_QUOTA_WINDOW_SECONDS,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_TARGETED_SYNC_THRESHOLD,
    DRAIN_INTERVAL,
    GROUP_INDEX_TTL,
    HEALTH_CHECK_INTERVAL,
    METADATA_TTL,
    RECORDS_TTL,
    SCHEDULER_POLL_INTERVAL,
)


ENV_PREFIX = "CACHE_MIRROR_"


class OriginConfig(BaseModel):
    """Configuration for the origin platform adapter."""

    base_url: str = Field(
        "http://localhost:8080/api", description="Base URL of the origin REST API"
    )
    records_path: str = Field("records", description="Path of the records resource")
    api_token: str | None = Field(None, description="Bearer token for the origin")
    timeout: float = Field(
        DEFAULT_ORIGIN_TIMEOUT, gt=0, description="Per-call timeout in seconds"
    )
    page_size: int = Field(
        DEFAULT_PAGE_SIZE, ge=1, description="Records requested per page"
    )
    max_pages: int = Field(
        DEFAULT_MAX_PAGES, ge=1, description="Provider page cap during population"
    )
    rate_limit_status_codes: list[int] = Field(
        default_factory=lambda: [429],
        description="HTTP status codes that signal a rate limit",
    )
    rate_limit_markers: list[str] = Field(
        default_factory=lambda: ["rate limit", "limit exceeded", "too many requests"],
        description="Response body fragments that signal a rate limit",
    )


class RecordMappingConfig(BaseModel):
    """Maps raw origin payloads onto cached records."""

    id_field: str = Field("ID", description="Field holding the record ID")
    group_field: str = Field(
        "group_id", description="Dotted path to the owning-group foreign key"
    )
    created_field: str = Field("created_at", description="Creation timestamp field")
    modified_field: str = Field("modified_at", description="Modification timestamp field")
    status_fields: list[str] = Field(
        default_factory=list, description="Boolean fields treated as status flags"
    )


class CacheStoreConfig(BaseModel):
    """Configuration for the cache store."""

    backend: str = Field("sqlite", description="Cache store backend: memory, sqlite")
    db_path: str = Field(
        ".cache-mirror/cache.db", description="SQLite file for the sqlite backend"
    )
    key_prefix: str = Field(DEFAULT_KEY_PREFIX, description="Prefix for cache keys")
    records_ttl: int = Field(RECORDS_TTL, ge=1, description="TTL of the flat collection")
    group_index_ttl: int = Field(
        GROUP_INDEX_TTL, ge=1, description="TTL of the group index"
    )
    metadata_ttl: int = Field(METADATA_TTL, ge=1, description="TTL of cache metadata")


class SyncConfig(BaseModel):
    """Configuration for discrepancy detection and resync."""

    targeted_sync_threshold: int = Field(
        DEFAULT_TARGETED_SYNC_THRESHOLD,
        ge=0,
        description="Largest combined delta repaired record-by-record",
    )
    change_detection_window_hours: int = Field(
        DEFAULT_CHANGE_DETECTION_WINDOW_HOURS,
        ge=1,
        description="Look-back window when no change detection timestamp exists",
    )


class RetryBufferConfig(BaseModel):
    """Configuration for the retry buffer."""

    db_path: str = Field(
        ".cache-mirror/buffer.db", description="SQLite file holding buffered writes"
    )
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)
    backoff_base_seconds: float = Field(DEFAULT_BACKOFF_BASE_SECONDS, gt=0)
    backoff_cap_seconds: float = Field(DEFAULT_BACKOFF_CAP_SECONDS, gt=0)
    drain_delay_seconds: float = Field(
        DEFAULT_DRAIN_DELAY_SECONDS,
        ge=0,
        description="Fixed delay between re-submissions during drain",
    )
    retention_days: int = Field(
        DEFAULT_RETENTION_DAYS, ge=1, description="Retention of completed entries"
    )
    quota_window_seconds: int = Field(
        DEFAULT_QUOTA_WINDOW_SECONDS,
        ge=1,
        description="Reset marker extension when the origin gives no retry-after",
    )


class HealthConfig(BaseModel):
    """Configuration for health checks and recovery."""

    tolerance: int = Field(
        DEFAULT_HEALTH_TOLERANCE,
        ge=0,
        description="Allowed absolute difference between origin and cache counts",
    )
    count_probe_enabled: bool = Field(True, description="Probe the origin count")
    lightweight_min_age_seconds: int = Field(
        DEFAULT_LIGHTWEIGHT_MIN_AGE_SECONDS,
        ge=0,
        description="Skip lightweight sync when the last population is younger",
    )
    lightweight_window_hours: int = Field(
        DEFAULT_LIGHTWEIGHT_WINDOW_HOURS,
        ge=1,
        description="Trailing creation window merged by lightweight sync",
    )


class SchedulerConfig(BaseModel):
    """Intervals (seconds) of the periodic jobs."""

    drain_interval: int = Field(DRAIN_INTERVAL, ge=1)
    buffer_cleanup_interval: int = Field(BUFFER_CLEANUP_INTERVAL, ge=1)
    health_check_interval: int = Field(HEALTH_CHECK_INTERVAL, ge=1)
    change_detection_interval: int = Field(CHANGE_DETECTION_INTERVAL, ge=1)
    population_interval: int = Field(
        0, ge=0, description="Scheduled full population; 0 disables"
    )
    poll_interval: float = Field(SCHEDULER_POLL_INTERVAL, gt=0)


class AppConfig(BaseModel):
    """Main application configuration."""

    origin: OriginConfig = OriginConfig()
    mapping: RecordMappingConfig = RecordMappingConfig()
    cache: CacheStoreConfig = CacheStoreConfig()
    sync: SyncConfig = SyncConfig()
    retry_buffer: RetryBufferConfig = RetryBufferConfig()
    health: HealthConfig = HealthConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


class ConfigManager:
    """Manages application configuration from files and environment."""

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path or self._find_config_file()
        self._config: AppConfig | None = None

    def _find_config_file(self) -> Path | None:
        """Find configuration file in standard locations."""
        search_paths = [
            Path.cwd() / ".cache-mirror" / "config.yaml",  # Local project config
            Path.cwd() / "config" / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "cache-mirror" / "config.yaml",
            Path("/etc/cache-mirror/config.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def load_config(self) -> AppConfig:
        """Load configuration from file or create default."""
        if self._config is not None:
            return self._config

        default_config = self.get_default_config()

        if self.config_path and self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}

            config_data = self._deep_merge_configs(default_config, file_config)
        else:
            config_data = default_config

        config_data = self._apply_env_overrides(config_data)

        self._config = AppConfig(**config_data)
        return self._config

    def _deep_merge_configs(
        self, default_config: dict[str, Any], override_config: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge override config into default config.

        Sections are merged key by key so a user file may override a single
        setting (e.g. ``sync.targeted_sync_threshold``) and keep every other
        default of that section.

        Args:
            default_config: Base configuration with all defaults
            override_config: User-provided overrides

        Returns:
            Merged configuration
        """
        result = copy.deepcopy(default_config)

        for key, value in override_config.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config_data: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variable overrides to config.

        ``CACHE_MIRROR_SYNC_TARGETED_SYNC_THRESHOLD=50`` sets
        ``sync.targeted_sync_threshold``. Values are left as strings and
        coerced by the pydantic models.
        """
        sections = set(AppConfig.model_fields)
        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            config_key = key[len(ENV_PREFIX) :].lower()
            section = next(
                (
                    name
                    for name in sorted(sections, key=len, reverse=True)
                    if config_key.startswith(f"{name}_")
                ),
                None,
            )
            if section is None:
                continue

            field = config_key[len(section) + 1 :]
            section_model = AppConfig.model_fields[section].annotation
            if field not in getattr(section_model, "model_fields", {}):
                continue

            config_data.setdefault(section, {})[field] = value

        return config_data

    def get_complete_config_dict(self) -> dict[str, Any]:
        """Get the complete configuration as a dictionary for display."""
        config = self.load_config()
        return config.model_dump()

    def show_config(self) -> str:
        """Show the complete configuration in YAML format.

        Returns:
            YAML formatted configuration string
        """
        config_dict = self.get_complete_config_dict()
        return yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    def get_default_config(self) -> dict[str, Any]:
        """Get the default configuration as a plain dictionary."""
        return AppConfig().model_dump()

    def create_default_config(self, output_path: Path) -> None:
        """Write the default configuration file."""
        default_config = self.get_default_config()

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)


# Global config manager instance with factory pattern
_config_manager_instance: ConfigManager | None = None


def get_config_manager(config_path: Path | None = None) -> ConfigManager:
    """Get or create the global config manager instance.

    Args:
        config_path: Optional path to config file (only used on first call)

    Returns:
        The global ConfigManager instance
    """
    global _config_manager_instance
    if _config_manager_instance is None:
        _config_manager_instance = ConfigManager(config_path)
    return _config_manager_instance


def set_config_manager(manager: ConfigManager) -> None:
    """Set the config manager instance (primarily for testing).

    Args:
        manager: ConfigManager instance to use globally
    """
    global _config_manager_instance
    _config_manager_instance = manager


def reset_config_manager() -> None:
    """Reset the config manager instance (primarily for testing)."""
    global _config_manager_instance
    _config_manager_instance = None
