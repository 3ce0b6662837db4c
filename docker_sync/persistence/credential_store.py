"""
Credential Store — JSON persistence for the GitHub access token.

Single-user, single-process: no locking beyond an atomic replace so a
crash mid-write never leaves a truncated file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..config.settings import get_user_config_dir, write_json_atomic
from ..models.credentials import Credentials

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Load, save and clear Credentials.

    Usage:
        store = CredentialStore()
        creds = store.load()
        if creds is None:
            ...
    """

    FILE_NAME = "credentials.json"

    def __init__(self, path: Optional[Path] = None):
        self.path = path or (get_user_config_dir() / self.FILE_NAME)

    def load(self) -> Optional[Credentials]:
        """
        Load stored credentials.

        Returns None when nothing is stored or the file is unreadable.
        """
        if not self.path.exists():
            return None

        logger.debug(f"Loading credentials from {self.path}")
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return Credentials(**data)
        except (OSError, json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {e}")
            return None

    def save(self, credentials: Credentials) -> None:
        """
        Save credentials, readable by the current user only.

        Uses atomic write (write to temp, then replace) to prevent corruption.
        """
        data = credentials.model_dump(mode="json")
        data["scopes"] = sorted(credentials.scopes)
        write_json_atomic(self.path, data, mode=0o600)
        logger.info(f"Credentials saved → {self.path.name}")

    def clear(self) -> bool:
        """Remove stored credentials. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Credentials cleared")
        return True
