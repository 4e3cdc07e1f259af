"""
Configuration for the GitHub Compliance Monitor.

Settings are pydantic-settings models. Values come, highest first, from
environment variables (nested with ``__``, e.g. ``SYNC__MAX_CONCURRENCY``),
a ``.env`` file, a YAML config file and the defaults below. String values
of the form ``${NAME}`` in the YAML file are replaced by the environment
variable ``NAME``.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when the configuration is missing or unusable."""


class GitHubSettings(BaseSettings):
    """Connection to the GitHub REST API."""

    token: str = Field(default="", description="Personal access token or app installation token")
    api_url: str = Field(default="https://api.github.com", description="REST API base URL")
    organization: Optional[str] = Field(default=None, description="Organization whose teams are listed")
    timeout: int = Field(default=30, description="Per-request timeout in seconds")
    per_page: int = Field(default=100, ge=1, le=100, description="Items requested per listing call")
    max_pages: int = Field(default=1, ge=1, le=100, description="Pages read per listing call")
    requests_per_second: float = Field(default=10.0, gt=0, description="Client-side request rate cap")


class SyncSettings(BaseSettings):
    """Sync behaviour."""

    max_concurrency: int = Field(
        default=4, ge=1, le=32, description="Repositories processed concurrently within a stage"
    )


class StorageSettings(BaseSettings):
    """Local cache location."""

    database_path: str = Field(default="./.compliance-cache.db", description="SQLite cache file")


class LoggingSettings(BaseSettings):
    """Log output."""

    level: str = Field(default="INFO", description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL")
    file: Optional[str] = Field(default=None, description="Also write logs to this file")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"level must be one of {list(LOG_LEVELS)}")
        return level


def expand_env_vars(data: Any) -> Any:
    """Replace ``${NAME}`` strings anywhere in parsed YAML with the environment value."""
    if isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            return os.environ.get(data[2:-1], "")
        return data
    if isinstance(data, dict):
        return {key: expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [expand_env_vars(value) for value in data]
    return data


class Settings(BaseSettings):
    """Application settings, one section per concern."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    github: GitHubSettings = Field(default_factory=GitHubSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """
        Build settings from a YAML file.

        A missing file yields the defaults.

        Raises:
            ConfigurationError: The file is not valid YAML
        """
        path = Path(path)
        if not path.exists():
            return cls()

        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid config file {path}: {e}") from e

        return cls(**expand_env_vars(raw))


def config_search_paths() -> list[Path]:
    """Config files tried, in order, when none is given explicitly."""
    return [
        Path.cwd() / "config.yaml",
        Path.cwd() / ".github-compliance-monitor.yaml",
        Path.home() / ".config" / "github-compliance-monitor" / "config.yaml",
    ]


@lru_cache
def get_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings once per config path.

    Args:
        config_path: Explicit YAML file; searched for when omitted

    Raises:
        ConfigurationError: ``config_path`` does not exist or is not valid YAML
    """
    if config_path:
        if not Path(config_path).exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        return Settings.from_yaml(config_path)

    found = next((path for path in config_search_paths() if path.exists()), None)
    return Settings.from_yaml(found) if found else Settings()


DEFAULT_CONFIG = """# GitHub Compliance Monitor configuration

github:
  # ${NAME} values are read from the environment
  token: ${GITHUB_TOKEN}

  # Teams are listed for this organization (teams of the token owner if unset)
  # organization: my-org

  api_url: https://api.github.com
  timeout: 30

  # Listing calls read up to max_pages pages of per_page items
  per_page: 100
  max_pages: 1

  requests_per_second: 10

sync:
  # Repositories processed concurrently within a stage
  max_concurrency: 4

storage:
  database_path: ./.compliance-cache.db

logging:
  level: INFO
  file: null
"""


def create_default_config(path: str | Path) -> None:
    """Write the commented default config to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG)
