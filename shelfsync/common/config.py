"""Configuration models using Pydantic for validation."""

import os
from pathlib import Path
from typing import ClassVar, Dict, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = structlog.get_logger(__name__)


class RetryConfig(BaseModel):
    """Configuration for persistence retry with exponential backoff.

    The delay before retry number ``n`` (0-based) is
    ``min(base_delay * multiplier ** n, max_delay)``.
    """

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total number of write attempts (first try included)",
    )
    base_delay: float = Field(
        default=0.8,
        ge=0.0,
        le=60.0,
        description="Delay in seconds before the first retry",
    )
    multiplier: float = Field(
        default=1.5,
        ge=1.0,
        le=10.0,
        description="Multiplier applied to the delay for each further retry",
    )
    max_delay: float = Field(
        default=3.0,
        ge=0.0,
        le=300.0,
        description="Upper bound for any single delay in seconds",
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "RetryConfig":
        """Ensure the delay cap is not below the base delay."""
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self

    def delay_for(self, retry_number: int) -> float:
        """Return the sleep before retry ``retry_number`` (0-based)."""
        return min(self.base_delay * self.multiplier**retry_number, self.max_delay)


class FileLoggingConfig(BaseModel):
    """Configuration for file-based logging.

    Log files live in config_dir and rotate at midnight; rotated files are
    named <file_name>.YYYY-MM-DD.
    """

    enabled: bool = Field(
        default=False,
        description="Enable file logging (logs to file_name in config_dir)",
    )
    file_name: str = Field(
        default="shelfsync.log",
        min_length=1,
        description="Log file name, relative to config_dir",
    )
    backup_count: int = Field(
        default=7,
        ge=0,
        le=365,
        description="Number of rotated daily files to keep",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    format: str = Field(
        default="json",
        description="Log format: json or text",
    )
    file: FileLoggingConfig = Field(
        default_factory=FileLoggingConfig,
        description="File logging configuration",
    )
    third_party: Dict[str, str] = Field(
        default_factory=dict,
        description="Log levels for third-party libraries (advanced)",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid format: {v}. Must be one of {valid_formats}")
        return v_lower


class SyncConfig(BaseModel):
    """Configuration for periodic library sync."""

    interval_seconds: float = Field(
        default=30.0,
        gt=0,
        le=86400,
        description=(
            "Delay between the end of one sync cycle and the start of the next. "
            "Used only until the sync settings file exists; after that the saved "
            "syncInterval applies (change it with `shelfsync sync --interval`)"
        ),
    )
    settings_file: str = Field(
        default="sync.json",
        description="Persisted sync settings file (relative to config_dir)",
    )


class MatchingConfig(BaseModel):
    """Configuration for cover-to-record title matching."""

    similarity_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum title similarity for a cover to be attached to a record",
    )


class RemoteConfig(BaseModel):
    """Configuration for the remote snapshot store (Drive-style REST API)."""

    base_url: str = Field(
        default="https://www.googleapis.com/drive/v3",
        description="Base URL for metadata and download requests",
    )
    upload_url: str = Field(
        default="https://www.googleapis.com/upload/drive/v3",
        description="Base URL for upload requests",
    )
    timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Request timeout in seconds",
    )


def _get_default_config_dir() -> Path:
    """
    Get default config directory based on environment.

    Priority:
    1. SHELFSYNC_CONFIG_DIR environment variable
    2. $HOME/Shelfsync/config otherwise

    Returns:
        Path to config directory
    """
    env_config_dir = os.environ.get("SHELFSYNC_CONFIG_DIR")
    if env_config_dir:
        return Path(env_config_dir)

    return Path.home() / "Shelfsync" / "config"


class Config(BaseModel):
    """Main configuration class for shelfsync.

    Path Resolution:
    - config_dir: Where the record database, sync settings and logs are stored.
      Resolved from SHELFSYNC_CONFIG_DIR, else $HOME/Shelfsync/config.
    """

    config_dir: Optional[Path] = Field(
        default=None,
        description="Configuration directory (database, sync settings, logs)",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Persistence retry configuration",
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="Periodic sync configuration",
    )
    matching: MatchingConfig = Field(
        default_factory=MatchingConfig,
        description="Cover matching configuration",
    )
    remote: RemoteConfig = Field(
        default_factory=RemoteConfig,
        description="Remote snapshot store configuration",
    )

    DEFAULT_DATABASE_PATH: ClassVar[str] = "shelfsync.db"

    def resolve_paths(self, create_dirs: bool = True) -> "Config":
        """
        Resolve config_dir from environment or defaults.

        Args:
            create_dirs: If True, create directories if they don't exist

        Returns:
            Self with resolved paths (for chaining)
        """
        if self.config_dir is None:
            object.__setattr__(self, "config_dir", _get_default_config_dir())

        if create_dirs:
            self.config_dir.mkdir(parents=True, exist_ok=True)

        logger.debug("paths_resolved", config_dir=str(self.config_dir))
        return self

    def get_database_path(self) -> Path:
        """Get absolute database path, resolved against config_dir."""
        config_dir = self.config_dir or _get_default_config_dir()
        return config_dir / self.DEFAULT_DATABASE_PATH

    def get_sync_settings_path(self) -> Path:
        """Get absolute path of the persisted sync settings file."""
        settings_path = Path(self.sync.settings_file)
        if settings_path.is_absolute():
            return settings_path
        config_dir = self.config_dir or _get_default_config_dir()
        return config_dir / settings_path

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """
        Load configuration from YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML is invalid
            pydantic.ValidationError: If configuration is invalid
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_string: str) -> "Config":
        """
        Load configuration from YAML string.

        Example:
            >>> config = Config.from_yaml_string("sync:\\n  interval_seconds: 60")
            >>> config.sync.interval_seconds
            60.0
        """
        data = yaml.safe_load(yaml_string)
        return cls.model_validate(data or {})
