"""
Sync Repository Bootstrap — Make sure the sync repo and workflow exist.

First use on an account:
1. Create ``<owner>/docker-sync`` (public, auto-initialised)
2. Enable Actions with write permissions so the workflow can push packages
3. Upload the packaged workflow file

Later uses only refresh the workflow file when the packaged template
changed. Permission failures are warnings: the user can fix them in the
repository settings.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from ..errors import GitHubAPIError
from .client import GitHubClient

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
REPO_DESCRIPTION = "Docker image sync repository - mirrors public images to GHCR"


def render_workflow(ghcr_host: str = "ghcr.io", template_name: str = "docker-sync.yml") -> str:
    """Load the workflow template with the package registry filled in."""
    text = (TEMPLATE_DIR / template_name).read_text(encoding="utf-8")
    return text.replace("__GHCR_HOST__", ghcr_host)


class SyncRepoBootstrapper:
    """Create or refresh the sync repository."""

    def __init__(
        self,
        workflow_file: str = "docker-sync.yml",
        branch: str = "main",
        ghcr_host: str = "ghcr.io",
        settle_seconds: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.workflow_file = workflow_file
        self.branch = branch
        self.ghcr_host = ghcr_host
        self.settle_seconds = settle_seconds
        self._sleep = sleep

    @property
    def workflow_path(self) -> str:
        return f".github/workflows/{self.workflow_file}"

    def ensure(self, client: GitHubClient, repo: str) -> bool:
        """
        Bring ``repo`` to a dispatchable state.

        Returns True if anything was written.
        """
        changed = False

        if not client.repo_exists(repo):
            logger.info(f"[bootstrap] Creating sync repository {repo}")
            client.create_repo(repo.split("/", 1)[1], REPO_DESCRIPTION)
            self._configure_actions(client, repo)
            changed = True

        if self._ensure_workflow(client, repo):
            changed = True

        if changed and self.settle_seconds > 0:
            # GitHub needs a moment before a new workflow accepts dispatches
            logger.info(f"[bootstrap] Waiting {self.settle_seconds:.0f}s for GitHub to register the workflow")
            self._sleep(self.settle_seconds)

        return changed

    def _ensure_workflow(self, client: GitHubClient, repo: str) -> bool:
        content = render_workflow(self.ghcr_host)
        existing = client.get_file(repo, self.workflow_path, ref=self.branch)

        if existing is None:
            logger.info(f"[bootstrap] Uploading workflow {self.workflow_path}")
            client.put_file(
                repo,
                self.workflow_path,
                content,
                message="Add docker sync workflow",
                branch=self.branch,
            )
            return True

        if existing.get("decoded") == content:
            logger.debug("[bootstrap] Workflow up to date")
            return False

        logger.info(f"[bootstrap] Updating workflow {self.workflow_path}")
        client.put_file(
            repo,
            self.workflow_path,
            content,
            message="Update docker sync workflow",
            branch=self.branch,
            sha=existing["sha"],
        )
        return True

    def _configure_actions(self, client: GitHubClient, repo: str) -> None:
        try:
            client.set_actions_permissions(repo)
            logger.info(f"[bootstrap] Actions permissions configured on {repo}")
        except GitHubAPIError as e:
            logger.warning(
                f"[bootstrap] Could not set Actions permissions on {repo}: {e}. "
                f"Enable 'Read and write permissions' at https://github.com/{repo}/settings/actions"
            )
