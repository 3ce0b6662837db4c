"""
Docker Runtime — Pull the mirrored image with the local docker CLI.

Thin subprocess wrapper. When docker is missing the caller prints the
manual ``docker pull`` command instead of failing the sync.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class DockerRuntime:
    """Local container runtime."""

    def __init__(self, executable: str = "docker", pull_timeout: float = 1800.0):
        self.executable = executable
        self.pull_timeout = pull_timeout

    def available(self) -> bool:
        """Check that the docker CLI is installed and the daemon answers."""
        if shutil.which(self.executable) is None:
            return False
        try:
            result = subprocess.run(
                [self.executable, "version", "--format", "{{.Server.Version}}"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"[docker] Not available: {e}")
            return False
        return result.returncode == 0

    def pull(self, image: str) -> Tuple[bool, Optional[str]]:
        """
        Pull ``image``, streaming docker's own progress to the terminal.

        Returns (success, error_message).
        """
        logger.info(f"[docker] Pulling {image}")
        try:
            result = subprocess.run(
                [self.executable, "pull", image],
                timeout=self.pull_timeout,
            )
        except subprocess.TimeoutExpired:
            return False, f"docker pull timed out after {self.pull_timeout:.0f}s"
        except OSError as e:
            return False, str(e)

        if result.returncode != 0:
            return False, f"docker pull exited with {result.returncode}"
        return True, None

    def tag(self, source: str, target: str) -> Tuple[bool, Optional[str]]:
        """Tag ``source`` as ``target``. Returns (success, error_message)."""
        logger.info(f"[docker] Tagging {source} as {target}")
        try:
            result = subprocess.run(
                [self.executable, "tag", source, target],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return False, str(e)

        if result.returncode != 0:
            return False, result.stderr.strip() or f"docker tag exited with {result.returncode}"
        return True, None
