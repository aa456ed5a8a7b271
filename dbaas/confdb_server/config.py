"""
Configuration management for the ConfDB item service.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Length limits are always positive; invalid values fall back to defaults
    - A malformed namespace override map never prevents startup

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

DEFAULT_ITEM_KEY_LENGTH_LIMIT = 128
DEFAULT_ITEM_VALUE_LENGTH_LIMIT = 20000


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Non-positive {name}={value}, using default {default}")
        return default
    return value


def parse_value_length_overrides(raw: str | None) -> dict[int, int]:
    """Parse the namespace value-length override map.

    The map is a JSON object of namespace id to length limit, e.g.
    ``{"1": 200, "42": 4096}``. Entries whose key is not an integer or whose
    limit is not a positive integer are dropped.

    Args:
        raw: JSON text (may be None or empty)

    Returns:
        Mapping of namespace id to value length limit
    """
    if not raw or not raw.strip():
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid namespace value length limit override: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error("Namespace value length limit override must be a JSON object")
        return {}

    overrides: dict[int, int] = {}
    for key, limit in data.items():
        try:
            namespace_id = int(key)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring override for non-numeric namespace id {key!r}")
            continue
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            logger.warning(f"Ignoring invalid override {limit!r} for namespace {namespace_id}")
            continue
        overrides[namespace_id] = limit
    return overrides


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_file: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/confdb"
    db_file: str = "confdb.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_file

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/confdb"),
            db_file=os.getenv("CONFDB_DB_FILE", "confdb.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class LimitsConfig:
    """Item payload length limits.

    Key length is always checked against the global limit. Value length uses
    the namespace override when one exists, otherwise the global limit.

    Attributes:
        key_length_limit: Global maximum item key length
        value_length_limit: Global maximum item value length
        value_length_overrides: Namespace id to value length limit
    """

    key_length_limit: int = DEFAULT_ITEM_KEY_LENGTH_LIMIT
    value_length_limit: int = DEFAULT_ITEM_VALUE_LENGTH_LIMIT
    value_length_overrides: Mapping[int, int] = field(default_factory=dict)

    def item_key_length_limit(self) -> int:
        return self.key_length_limit

    def item_value_length_limit(self) -> int:
        return self.value_length_limit

    def namespace_value_length_limit_override(self) -> Mapping[int, int]:
        return self.value_length_overrides

    @classmethod
    def from_env(cls) -> LimitsConfig:
        """Load configuration from environment variables."""
        return cls(
            key_length_limit=_positive_int("ITEM_KEY_LENGTH_LIMIT", DEFAULT_ITEM_KEY_LENGTH_LIMIT),
            value_length_limit=_positive_int(
                "ITEM_VALUE_LENGTH_LIMIT", DEFAULT_ITEM_VALUE_LENGTH_LIMIT
            ),
            value_length_overrides=parse_value_length_overrides(
                os.getenv("NAMESPACE_VALUE_LENGTH_LIMIT_OVERRIDE")
            ),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete service configuration.

    Attributes:
        storage: Local storage configuration
        limits: Item length limits
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            limits=LimitsConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_file:
            raise ValueError("CONFDB_DB_FILE must not be empty")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        if self.limits.key_length_limit <= 0 or self.limits.value_length_limit <= 0:
            raise ValueError("Item length limits must be positive")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "db_file": self.storage.db_file,
                "key_length_limit": self.limits.key_length_limit,
                "value_length_limit": self.limits.value_length_limit,
                "value_length_overrides": len(self.limits.value_length_overrides),
                "log_level": self.observability.log_level,
            },
        )
