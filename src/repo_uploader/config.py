"""Uploader configuration.

Settings come from ``<user config dir>/config.yaml`` when present and are
then overridden by ``REPO_UPLOADER_*`` environment variables.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

from .constants import CONFIG_FILE, DEFAULT_API_URL, DEFAULT_BRANCH, DEFAULT_WEB_URL, STATE_DIR
from .errors import ConfigError
from .utils import atomic_write_text, get_config_dir


# Environment variable -> config field
ENV_OVERRIDES: Dict[str, str] = {
    "REPO_UPLOADER_API_URL": "api_url",
    "REPO_UPLOADER_WEB_URL": "web_url",
    "REPO_UPLOADER_BRANCH": "default_branch",
    "REPO_UPLOADER_MAX_ATTEMPTS": "max_attempts",
    "REPO_UPLOADER_BASE_DELAY": "base_delay",
    "REPO_UPLOADER_TIMEOUT": "request_timeout",
    "REPO_UPLOADER_BLOB_WORKERS": "blob_workers",
    "REPO_UPLOADER_STATE_DIR": "state_dir",
}


class UploaderConfig(BaseModel):
    """Uploader configuration (stored in config.yaml)."""

    api_url: str = DEFAULT_API_URL
    web_url: str = DEFAULT_WEB_URL
    default_branch: str = Field(DEFAULT_BRANCH, min_length=1)
    max_attempts: int = Field(5, ge=1)
    base_delay: float = Field(2.0, ge=0)  # seconds before the first retry
    request_timeout: float = Field(60.0, gt=0)
    blob_workers: int = Field(1, ge=1)
    state_dir: Optional[Path] = None  # defaults to <config dir>/state
    extra_ignore: List[str] = Field(default_factory=list)

    def resolved_state_dir(self, config_dir: Optional[Path] = None) -> Path:
        if self.state_dir:
            return self.state_dir.expanduser()
        return (config_dir or get_config_dir()) / STATE_DIR


def config_path(config_dir: Optional[Path] = None) -> Path:
    return (config_dir or get_config_dir()) / CONFIG_FILE


def load_config(config_dir: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> UploaderConfig:
    """Load configuration from file and environment.

    Args:
        config_dir: Directory holding config.yaml (defaults to the platform config dir)
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigError: If the file or an override is invalid
    """
    path = config_path(config_dir)
    data: dict = {}
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping in {path}, got {type(data).__name__}")

    env = os.environ if environ is None else environ
    for var, field_name in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            data[field_name] = value

    try:
        return UploaderConfig(**data)
    except SchemaError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def save_config(config: UploaderConfig, config_dir: Optional[Path] = None) -> Path:
    """Save configuration atomically and return the file path."""
    path = config_path(config_dir)
    text = yaml.safe_dump(config.model_dump(mode="json", exclude_none=True), default_flow_style=False)
    atomic_write_text(path, text)
    return path
