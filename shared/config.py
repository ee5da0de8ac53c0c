"""Configuration management for the bundle sync service."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PathsConfig(BaseModel):
    """Configuration for file paths."""

    library_dir: str = Field(
        ..., description="Directory holding the .imprint document bundles"
    )
    backup_dir: Optional[str] = Field(
        default=None,
        description="Directory for bundle backups; defaults to the bundle's parent",
    )


class HealthConfig(BaseModel):
    """Configuration for history health validation."""

    temp_suffixes: List[str] = Field(
        default_factory=lambda: [".tmp", ".temp", ".partial"],
        description="Suffixes of dotted temporary files left by interrupted writes",
    )
    stale_history_ratio: Optional[float] = Field(
        default=None,
        description=(
            "History/source size ratio above which a stale-history notice is "
            "reported; disabled when unset"
        ),
    )


class BackupConfig(BaseModel):
    """Configuration for automatic backups."""

    before_migration: bool = Field(
        default=True, description="Back up a bundle before migrating it"
    )
    before_repair: bool = Field(
        default=True, description="Back up a bundle before repairing it"
    )


class WatcherConfig(BaseModel):
    """Configuration for file watching."""

    enabled: bool = Field(default=True, description="Enable file watching")
    debounce_seconds: float = Field(
        default=2, description="Debounce time for bundle changes"
    )
    auto_repair: bool = Field(
        default=False, description="Repair bundles found unhealthy by the watcher"
    )


class ServerConfig(BaseModel):
    """Configuration for the server."""

    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")


class LoggingConfig(BaseModel):
    """Configuration for logging output."""

    level: str = Field(default="INFO", description="Root log level")
    format: str = Field(
        default="%(asctime)s %(levelname)s:%(name)s:%(message)s",
        description="Log record format",
    )


class AppConfig(BaseModel):
    """Application identity stamped into document metadata."""

    version: str = Field(default="0.3.0", description="Application version")


class Config(BaseModel):
    """Main configuration model."""

    paths: PathsConfig
    health: HealthConfig = Field(default_factory=HealthConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    def get_library_path(self) -> Path:
        """Get the library directory as a Path object."""
        return Path(self.paths.library_dir).expanduser().resolve()

    def get_backup_path(self) -> Optional[Path]:
        """Get the backup directory, or None to back up beside each bundle."""
        if not self.paths.backup_dir:
            return None
        return Path(self.paths.backup_dir).expanduser().resolve()


def load_config(
    config_dir: Optional[str] = None,
    app_config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Config:
    """Load the application configuration, applying optional overrides."""
    base_dir = Path(config_dir) if config_dir else Path("config")
    app_path = Path(app_config_path) if app_config_path else base_dir / "app.toml"

    try:
        logger.info(f"Loading app config from: {app_path}")
        with open(app_path, "r") as f:
            app_data = toml.load(f)
    except FileNotFoundError:
        logger.error(f"Application config file not found at {app_path}. Aborting.")
        raise

    if overrides:
        app_data = _deep_merge_config(app_data, overrides)

    return Config(**app_data)


def _deep_merge_config(
    base: Dict[str, Any], override: Dict[str, Any]
) -> Dict[str, Any]:
    """Deep merge configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_config(result[key], value)
        else:
            result[key] = value

    return result
