"""
Configuration management based on Pydantic Settings.

Supported sources:
- Environment variables (``TASK_LIFECYCLE_*`` prefixes)
- .env files
- YAML configuration files
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class StoreConfig(BaseSettings):
    """Repository call settings."""

    timeout_seconds: float = Field(default=5.0, gt=0, description="Deadline for each repository call")

    model_config = {"env_prefix": "TASK_LIFECYCLE_STORE_"}


class EventConfig(BaseSettings):
    """Outbound event dispatch settings."""

    enabled: bool = Field(default=True, description="Publish domain events")
    queue_size: int = Field(default=1000, ge=1, description="Bounded outbox queue size")
    publish_timeout_seconds: float = Field(default=5.0, gt=0, description="Deadline for a single publish")
    max_retries: int = Field(default=3, ge=0, description="Retries after a failed publish")
    retry_delay_seconds: float = Field(default=0.1, ge=0, description="Base delay between retries")

    model_config = {"env_prefix": "TASK_LIFECYCLE_EVENTS_"}


class DatabaseConfig(BaseSettings):
    """SQLite settings for the SQL repository."""

    db_path: str = Field(default="./data/tasks.db", description="Path to the SQLite database")
    echo: bool = Field(default=False, description="Echo SQL statements")

    model_config = {"env_prefix": "TASK_LIFECYCLE_DB_"}


class LoggingConfig(BaseSettings):
    """Structured logging settings."""

    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {', '.join(sorted(allowed))}")
        return v.upper()

    model_config = {"env_prefix": "TASK_LIFECYCLE_LOG_"}


class LifecycleConfig(BaseSettings):
    """Top-level engine configuration."""

    environment: str = Field(default="development", description="Environment (development/production/testing)")
    debug: bool = Field(default=False, description="Enable debug mode")

    store: StoreConfig = Field(default_factory=StoreConfig)
    events: EventConfig = Field(default_factory=EventConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "LifecycleConfig":
        """Load configuration from a YAML file."""
        import yaml

        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "LifecycleConfig":
        """Load configuration from environment variables and an optional .env file."""
        env_path = Path(env_file) if env_file else Path(".env")
        if env_path.exists():
            from dotenv import load_dotenv

            load_dotenv(env_path)

        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    model_config = {
        "env_prefix": "TASK_LIFECYCLE_",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }
