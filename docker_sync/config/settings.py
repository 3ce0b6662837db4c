"""
Settings — Load docker-sync configuration from the user config file.

The config file lives in the per-user config directory:

    Linux:   $XDG_CONFIG_HOME/docker-sync/config.json (~/.config/docker-sync)
    macOS:   ~/Library/Application Support/docker-sync/config.json
    Windows: %APPDATA%/docker-sync/config.json

Environment variables override file values:

    DOCKER_SYNC_REPO=alice/docker-sync
    DOCKER_SYNC_MIRROR_HOST=ghcr.nju.edu.cn
    DOCKER_SYNC_GHCR_HOST=ghcr.io
    DOCKER_SYNC_PROXY=http://127.0.0.1:7890
    DOCKER_SYNC_DEADLINE=3600

The access token is not stored here; see persistence.credential_store.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

APP_DIR_NAME = "docker-sync"

# OAuth app used for the device flow
DEFAULT_CLIENT_ID = "Ov23li7Y8uyN0cW2UHeS"

# Env var → settings field
ENV_OVERRIDES = {
    "DOCKER_SYNC_REPO": "repo",
    "DOCKER_SYNC_MIRROR_HOST": "mirror_host",
    "DOCKER_SYNC_GHCR_HOST": "ghcr_host",
    "DOCKER_SYNC_PROXY": "proxy",
    "DOCKER_SYNC_CLIENT_ID": "client_id",
    "DOCKER_SYNC_DEADLINE": "sync_deadline_seconds",
}


def get_user_config_dir() -> Path:
    """Per-user config directory (created on first save)."""
    override = os.environ.get("DOCKER_SYNC_CONFIG_DIR")
    if override:
        return Path(override)

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".config" / APP_DIR_NAME


def write_json_atomic(path: Path, data: Dict[str, Any], mode: Optional[int] = None) -> None:
    """
    Write JSON to ``path`` without ever leaving a partial file.

    Writes a sibling temp file, created with ``mode`` when given, then
    replaces the target in one step.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o666 if mode is None else mode)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        if mode is not None:
            # a stale temp file keeps the mode it was created with
            os.chmod(temp_path, mode)
        json.dump(data, f, indent=4)
        f.write("\n")

    os.replace(temp_path, path)


class Settings(BaseModel):
    """docker-sync configuration."""

    repo: Optional[str] = Field(
        default=None,
        description="owner/name of the sync repository (default: <login>/docker-sync).",
    )
    mirror_host: str = Field(default="ghcr.nju.edu.cn", min_length=1)
    ghcr_host: str = Field(default="ghcr.io", min_length=1)
    proxy: Optional[str] = None
    client_id: str = Field(default=DEFAULT_CLIENT_ID, min_length=1)

    workflow_file: str = "docker-sync.yml"
    workflow_ref: str = "main"

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    sync_deadline_seconds: float = Field(default=1800.0, gt=0)
    poll_interval_seconds: float = Field(default=3.0, gt=0)
    max_poll_interval_seconds: float = Field(default=10.0, gt=0)
    propagation_timeout_seconds: float = Field(default=60.0, ge=0)
    propagation_interval_seconds: float = Field(default=5.0, gt=0)

    @property
    def owner(self) -> Optional[str]:
        """Owner of the sync repo, which is also the mirror namespace."""
        if not self.repo or "/" not in self.repo:
            return None
        return self.repo.split("/", 1)[0].lower()

    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """
        Load settings from the config file, then apply env overrides.

        A missing file yields defaults. An unreadable or invalid file
        raises ConfigurationError.
        """
        path = path or cls.default_path()
        environ = os.environ if environ is None else environ

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Cannot read config {path}: {e}")
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config {path} must contain a JSON object")

        for env_name, field_name in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                logger.debug(f"[config] {field_name} overridden by {env_name}")
                data[field_name] = value

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config {path}: {e}")

    def save(self, path: Optional[Path] = None) -> Path:
        """Persist settings to the config file."""
        path = path or self.default_path()
        write_json_atomic(path, self.model_dump(exclude_none=True))
        logger.info(f"[config] Saved settings → {path}")
        return path

    @staticmethod
    def default_path() -> Path:
        return get_user_config_dir() / "config.json"
