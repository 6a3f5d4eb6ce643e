from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("/etc/teamcity-backup/config.yaml")
DEFAULT_SERVER_URL = "http://localhost:8111"
DEFAULT_DATA_DIR = Path("/var/lib/teamcity")

# Environment variable -> configuration field.
ENV_OVERRIDES = {
    "TEAMCITY_BASE_URL": "server_url",
    "TEAMCITY_DATA_DIR": "data_dir",
    "TEAMCITY_BACKUP_POLL_TIMEOUT": "poll_timeout",
}


# --- Upload ------------------------------------------------------------------


class UploadSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    multipart_threshold_mb: int = Field(default=100, gt=0)
    multipart_chunksize_mb: int = Field(default=25, ge=5, description="S3 rejects parts smaller than 5 MiB.")
    max_concurrency: int = Field(default=4, gt=0)


# --- Backup run --------------------------------------------------------------


class BackupConfig(BaseModel):
    """Settings for a single backup run."""

    model_config = ConfigDict(extra="forbid")

    server_url: str = Field(default=DEFAULT_SERVER_URL, description="Base URL of the TeamCity server.")
    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="TeamCity data directory holding backup/.")
    credentials_tag: str = "teamcity:backup:credentials_key"
    destination_tag: str = "teamcity:backup:destination_prefix"
    poll_interval: float = Field(default=5.0, gt=0)
    poll_timeout: Optional[float] = Field(default=7200.0, gt=0, description="Seconds to wait for Idle; null waits forever.")
    request_timeout: float = Field(default=30.0, gt=0)
    upload: UploadSettings = UploadSettings()

    @field_validator("server_url")
    @classmethod
    def _normalise_server_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"server_url must be an http(s) URL, got '{value}'")
        return value

    @field_validator("data_dir")
    @classmethod
    def _expand_data_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("credentials_tag", "destination_tag")
    @classmethod
    def _require_tag_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Tag names must not be empty.")
        return value


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> BackupConfig:
    """Build the configuration from defaults, a YAML file, the environment and explicit overrides.

    Later sources win. An explicitly passed ``path`` must exist; the default
    path is optional.
    """
    environ = os.environ if environ is None else environ
    raw: Dict[str, Any] = {}

    config_path = path if path is not None else DEFAULT_CONFIG_PATH
    if config_path.exists():
        raw.update(_read_yaml(config_path))
    elif path is not None:
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    for env_name, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            raw[field_name] = value

    raw.update({key: value for key, value in (overrides or {}).items() if value is not None})

    try:
        return BackupConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read configuration file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping at the top level.")
    return data
