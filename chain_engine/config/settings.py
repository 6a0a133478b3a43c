"""
Environment-aware configuration settings for the chain engine.

Supports dev, test, and prod environments with appropriate defaults.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class StorageSettings(BaseSettings):
    """File storage layout and bounds."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    base_dir: Path = Field(default=Path(".chain_engine"), description="Root directory for all persisted state")
    max_queue_size: int = Field(default=1000, ge=1, description="Maximum queued + in-flight chain ids")
    max_chain_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="Maximum serialized size of one chain definition (10 MiB)"
    )
    lock_timeout: float = Field(default=10.0, description="How long to wait for a file lock (seconds)")
    lock_poll_interval: float = Field(default=0.05, description="File lock retry interval (seconds)")
    stale_metadata_days: int = Field(default=7, description="Age after which one-time task metadata is stale")


class ExecutorSettings(BaseSettings):
    """
    Chain execution budgets.

    chain_timeout is kept shorter than the host window so a chain that runs
    to its limit still leaves safety_margin seconds to report back.
    """

    model_config = SettingsConfigDict(env_prefix="EXECUTOR_")

    task_timeout: float = Field(default=20.0, gt=0, description="Per-task timeout (seconds)")
    chain_timeout: float = Field(default=50.0, gt=0, description="Per-chain timeout (seconds)")
    window_duration: float = Field(default=60.0, gt=0, description="Execution window granted by the host (seconds)")
    safety_margin: float = Field(default=10.0, ge=0, description="Budget left unused at the end of a batch (seconds)")
    batch_max_chains: int = Field(default=3, ge=1, description="Chains drained per execution window")
    slow_task_ratio: float = Field(
        default=0.8,
        gt=0,
        le=1,
        description="Warn when a task uses more than this share of its timeout"
    )
    required_workers: list[str] = Field(
        default_factory=list,
        description="Worker type names that must be registered at startup"
    )

    @model_validator(mode="after")
    def validate_budgets(self) -> "ExecutorSettings":
        """Chain timeout and safety margin must both fit inside the window."""
        if self.chain_timeout >= self.window_duration:
            raise ValueError(
                f"chain_timeout ({self.chain_timeout}s) must be shorter than "
                f"window_duration ({self.window_duration}s)"
            )
        if self.safety_margin >= self.window_duration:
            raise ValueError(
                f"safety_margin ({self.safety_margin}s) must be shorter than "
                f"window_duration ({self.window_duration}s)"
            )
        return self


class LegacyStoreSettings(BaseSettings):
    """Redis connection settings for the legacy key-value store."""

    model_config = SettingsConfigDict(env_prefix="LEGACY_REDIS_")

    enabled: bool = Field(default=False, description="Migrate from the legacy Redis store on startup")
    host: str = Field(default="localhost", description="Redis server hostname")
    port: int = Field(default=6379, description="Redis server port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    key_prefix: str = Field(default="kmp_", description="Prefix prepended to every legacy key")
    socket_timeout: float = Field(default=5.0, description="Socket timeout")
    socket_connect_timeout: float = Field(default=5.0, description="Connection timeout")

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class EventSettings(BaseSettings):
    """Completion event bus settings."""

    model_config = SettingsConfigDict(env_prefix="EVENTS_")

    buffer_size: int = Field(default=64, ge=1, description="Per-subscriber event buffer")
    history_size: int = Field(default=100, ge=0, description="Recent events kept for inspection")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,  # STORAGE_BASE_DIR and storage_base_dir both work
        extra="ignore",        # Ignore unknown environment variables
    )

    # Application
    app_name: str = Field(default="Chain Execution Engine")
    environment: Environment = Field(default=Environment.DEV)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Sub-settings
    storage: StorageSettings = Field(default_factory=StorageSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    legacy: LegacyStoreSettings = Field(default_factory=LegacyStoreSettings)
    events: EventSettings = Field(default_factory=EventSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate and convert environment string to enum."""
        if isinstance(v, Environment):
            return v
        return Environment(v.lower())

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TEST

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PROD


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
