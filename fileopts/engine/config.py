"""
FileOpts Configuration — Load and validate fileopts.yaml at startup.

Usage:
    from fileopts.engine.config import load_platform_config, get_platform_config
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from fileopts.engine.errors import FileOptsConfigError

CONFIG_FILENAME = "fileopts.yaml"


# ---------------------------------------------------------------------------
# Pydantic models for fileopts.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///fileopts.db"
    echo: bool = False


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379/0"
    db: int = 6


class LockConfig(BaseModel):
    backend: str = "memory"
    ttl_seconds: int = 30
    timeout_seconds: float = 0.0
    retry_after: int = 1

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("memory", "redis"):
            raise ValueError(f"locks.backend must be memory/redis, got '{v}'")
        return v


class UploadsConfig(BaseModel):
    files_root: str = "files"
    temp_directory: Optional[str] = None
    default_mode: str = "rename"
    max_rename_attempts: int = 1000
    max_upload_size_mb: int = 50

    @field_validator("default_mode")
    @classmethod
    def validate_default_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("rename", "replace", "reject"):
            raise ValueError(f"uploads.default_mode must be rename/replace/reject, got '{v}'")
        return v


class PolicyStoreConfig(BaseModel):
    backend: str = "yaml"
    path: str = "upload_options.yaml"

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("memory", "yaml", "sql"):
            raise ValueError(f"policy_store.backend must be memory/yaml/sql, got '{v}'")
        return v


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".fileopts/logs"
    audit: bool = True
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class FieldConfig(BaseModel):
    """One upload-capable field declared in fileopts.yaml."""
    key: str
    entity_type_label: str = ""
    bundle_label: str = ""
    field_label: str = ""
    upload_location: str = ""
    file_extensions: str = "txt"
    max_filesize_mb: int = 0
    required: bool = False


class PlatformConfig(BaseModel):
    """Root model for fileopts.yaml."""
    name: str = "FileOpts"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    redis: RedisConfig = RedisConfig()
    locks: LockConfig = LockConfig()
    uploads: UploadsConfig = UploadsConfig()
    policy_store: PolicyStoreConfig = PolicyStoreConfig()
    logging: LoggingConfig = LoggingConfig()
    fields: List[FieldConfig] = Field(default_factory=list)

    # Directory the relative paths above are resolved against
    base_dir: Optional[str] = None

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path relative to base_dir."""
        path = Path(value)
        if path.is_absolute() or self.base_dir is None:
            return path
        return Path(self.base_dir) / path


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_platform_config: Optional[PlatformConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for fileopts.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILENAME).exists():
            return parent
    return current


def load_platform_config(config_path: Optional[str] = None) -> PlatformConfig:
    """
    Load and validate fileopts.yaml.

    Args:
        config_path: Explicit path to fileopts.yaml. If None, auto-discovers.

    Returns:
        Validated PlatformConfig instance.

    Raises:
        FileOptsConfigError: The file exists but is not valid YAML or does
            not match the schema.
    """
    global _platform_config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILENAME)

    path = Path(config_path)
    if not path.exists():
        # Return defaults if no config file
        _platform_config = PlatformConfig(base_dir=str(path.parent))
        return _platform_config

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise FileOptsConfigError(f"Invalid YAML in {path}: {e}", path=str(path))

    # Flatten the top-level "platform" key if present
    platform_data: Dict[str, Any] = raw.get("platform", {}) or {}
    config_data = {
        "name": platform_data.get("name", raw.get("name", "FileOpts")),
        "environment": platform_data.get("environment", raw.get("environment", "dev")),
        "database": raw.get("database", {}),
        "redis": raw.get("redis", {}),
        "locks": raw.get("locks", {}),
        "uploads": raw.get("uploads", {}),
        "policy_store": raw.get("policy_store", {}),
        "logging": raw.get("logging", {}),
        "fields": raw.get("fields", []),
        "base_dir": str(path.parent.resolve()),
    }

    try:
        _platform_config = PlatformConfig(**config_data)
    except ValidationError as e:
        raise FileOptsConfigError(
            f"Invalid configuration in {path}",
            path=str(path),
            validation_errors=e.errors(),
        )
    return _platform_config


def get_platform_config() -> PlatformConfig:
    """Get the currently loaded platform config, loading if necessary."""
    global _platform_config
    if _platform_config is None:
        _platform_config = load_platform_config()
    return _platform_config


def set_platform_config(config: Optional[PlatformConfig]) -> None:
    """Replace the cached platform config (tests, embedded use)."""
    global _platform_config
    _platform_config = config


def get_environment() -> str:
    """Get the current platform environment."""
    return get_platform_config().environment
