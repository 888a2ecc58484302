"""
Settings Management

Centralized, type-safe configuration using Pydantic.
Supports environment variables, .env files, and hierarchical config.

Design decisions:
- Using pydantic-settings for validation and type coercion
- Immutable settings after initialization (frozen model)
- Separate concerns: runtime vs. bridging CLI vs. storage vs. observability
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeSettings(BaseSettings):
    """Server process supervision."""

    model_config = SettingsConfigDict(env_prefix="TOOLHOST_RUNTIME_")

    readiness_timeout: float = Field(default=30.0, gt=0)
    # Regex a stdout/stderr line must match to count as the ready signal.
    # None means the first line of output.
    ready_pattern: str | None = Field(default=None)
    stop_timeout: float = Field(default=5.0, gt=0)
    output_buffer_lines: int = Field(default=200, ge=0)

    # Auto-start
    autostart_enabled: bool = Field(default=True)
    autostart_delay: float = Field(default=2.0, ge=0)


class BridgeSettings(BaseSettings):
    """Bridging CLI invocation."""

    model_config = SettingsConfigDict(env_prefix="TOOLHOST_BRIDGE_")

    command: str = Field(default="claude", description="Bridging CLI executable (shell-split)")
    discovery_timeout: float = Field(default=10.0, gt=0)
    execution_timeout: float = Field(default=30.0, gt=0)
    max_output_bytes: int = Field(default=1024 * 1024, ge=1)
    temp_dir: str | None = Field(default=None, description="Where ephemeral artifacts are written")


class StorageSettings(BaseSettings):
    """Persistence backend."""

    model_config = SettingsConfigDict(env_prefix="TOOLHOST_STORAGE_")

    backend: Literal["sqlite", "memory"] = "sqlite"
    database_path: str = Field(
        default=str(Path.home() / ".toolhost" / "toolhost.db"),
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLHOST_OBS_")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: str | None = Field(default=None)


class Settings(BaseSettings):
    """
    Master settings aggregator.

    This is the single source of truth for all configuration.
    Sub-settings are composed here to maintain clear boundaries.
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLHOST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,  # Immutable after creation
    )

    app_name: str = Field(default="toolhost")
    app_version: str = Field(default="0.1.0")
    debug: bool = Field(default=False)

    # API settings
    api_prefix: str = Field(default="/api/mcp-manager")
    cors_origins: list[str] = Field(default=["*"])

    # YAML/JSON file of server definitions seeded into the store at startup
    servers_file: str | None = Field(default=None)

    # Component settings (composed)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Safe to share because settings are frozen.
    """
    return Settings()
