"""
Workflow Dispatcher — Start a sync run and find out which run it was.

GitHub's dispatch endpoint answers 204 with no run id, so after
dispatching we list recent runs of the workflow and pick the newest one
created after the dispatch whose title carries our request id. The run
may take a few seconds to show up in listings; resolution is a short
bounded retry loop.

Dispatch is not idempotent on GitHub's side. Single-flight per
reference is the orchestrator's job.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import httpx
from dateutil import parser as date_parser

from ..errors import DispatchError, DispatchErrorKind, GitHubAPIError
from ..models.credentials import Credentials
from ..models.reference import ImageReference
from ..models.run import SyncRun, utcnow
from .bootstrap import SyncRepoBootstrapper
from .client import GitHubClient

logger = logging.getLogger(__name__)

DEFAULT_REPO_NAME = "docker-sync"


def map_dispatch_error(error: Exception) -> DispatchError:
    """Translate a GitHub/transport failure into a DispatchError."""
    if isinstance(error, DispatchError):
        return error
    if isinstance(error, GitHubAPIError):
        if error.rate_limited:
            kind = DispatchErrorKind.RATE_LIMITED
        elif error.status_code in (401, 403):
            kind = DispatchErrorKind.UNAUTHORIZED
        elif error.status_code in (404, 422):
            kind = DispatchErrorKind.REPOSITORY_NOT_FOUND
        else:
            kind = DispatchErrorKind.UNKNOWN
        return DispatchError(kind, str(error), {"status_code": error.status_code})
    return DispatchError(DispatchErrorKind.UNKNOWN, str(error))


class WorkflowDispatcher:
    """
    Trigger the sync workflow for an image reference.

    Usage:
        dispatcher = WorkflowDispatcher(GitHubClient, repo="alice/docker-sync")
        run = dispatcher.dispatch(reference, credentials)
        print(run.run_id)
    """

    def __init__(
        self,
        client_factory: Callable[[str], GitHubClient],
        repo: Optional[str] = None,
        workflow_file: str = "docker-sync.yml",
        ref: str = "main",
        bootstrapper: Optional[SyncRepoBootstrapper] = None,
        resolve_attempts: int = 10,
        resolve_interval_seconds: float = 1.0,
        clock_skew_seconds: float = 5.0,
        now: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client_factory = client_factory
        self.repo = repo
        self.workflow_file = workflow_file
        self.ref = ref
        self.bootstrapper = bootstrapper
        self.resolve_attempts = resolve_attempts
        self.resolve_interval_seconds = resolve_interval_seconds
        self.clock_skew = timedelta(seconds=clock_skew_seconds)
        self._now = now
        self._sleep = sleep

        self._prepare_lock = threading.Lock()
        self._prepared = False

    def dispatch(self, reference: ImageReference, credentials: Credentials) -> SyncRun:
        """
        Dispatch the workflow for ``reference`` and resolve its run.

        Raises DispatchError.
        """
        client = self.client_factory(credentials.access_token)
        try:
            repo = self._prepare(client)
            request_id = uuid4().hex[:12]
            inputs = {
                "image": reference.source_image,
                "tag": reference.tag,
                "target": reference.mirror_path,
                "request_id": request_id,
            }

            dispatched_at = self._now()
            logger.info(f"[dispatch] {reference.key} → {repo} ({self.workflow_file}, request {request_id})")
            try:
                client.dispatch_workflow(repo, self.workflow_file, self.ref, inputs)
            except (GitHubAPIError, httpx.HTTPError) as e:
                raise map_dispatch_error(e)

            run = self._resolve_run(client, repo, reference, request_id, dispatched_at)
            sync_run = SyncRun(
                reference=reference,
                run_id=int(run["id"]),
                dispatched_at=dispatched_at,
                html_url=run.get("html_url"),
                repo=repo,
            )
            logger.info(f"[dispatch] {reference.key} is run {sync_run.run_id}")
            return sync_run
        finally:
            client.close()

    def resolve_repo(self, client: GitHubClient) -> str:
        """Configured repo, or ``<login>/docker-sync`` for the token owner."""
        if self.repo:
            return self.repo
        login = client.get_user().login
        self.repo = f"{login}/{DEFAULT_REPO_NAME}"
        logger.info(f"[dispatch] Using sync repository {self.repo}")
        return self.repo

    def _prepare(self, client: GitHubClient) -> str:
        """Resolve the repo and run the bootstrap once per dispatcher."""
        with self._prepare_lock:
            try:
                repo = self.resolve_repo(client)
                if self.bootstrapper is not None and not self._prepared:
                    self.bootstrapper.ensure(client, repo)
            except (GitHubAPIError, httpx.HTTPError) as e:
                raise map_dispatch_error(e)
            self._prepared = True
            return repo

    # Isolated so a provider that returns run ids synchronously can skip it.
    def _resolve_run(
        self,
        client: GitHubClient,
        repo: str,
        reference: ImageReference,
        request_id: str,
        dispatched_at: datetime,
    ) -> Dict[str, Any]:
        since = dispatched_at - self.clock_skew

        for attempt in range(1, self.resolve_attempts + 1):
            try:
                runs = client.list_workflow_runs(repo, self.workflow_file, created_since=since)
            except GitHubAPIError as e:
                if not e.transient:
                    raise map_dispatch_error(e)
                logger.warning(f"[dispatch] Listing runs failed (attempt {attempt}): {e}")
                runs = []
            except httpx.TransportError as e:
                logger.warning(f"[dispatch] Listing runs failed (attempt {attempt}): {e}")
                runs = []

            match = self._pick_run(runs, reference, request_id, since)
            if match is not None:
                return match

            if attempt < self.resolve_attempts:
                self._sleep(self.resolve_interval_seconds)

        raise DispatchError(
            DispatchErrorKind.UNKNOWN,
            f"Dispatched {reference.key} but no matching run appeared after "
            f"{self.resolve_attempts} attempt(s)",
            {"request_id": request_id},
        )

    @staticmethod
    def _pick_run(
        runs: List[Dict[str, Any]],
        reference: ImageReference,
        request_id: str,
        since: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Newest run created after ``since`` whose title names this request."""
        # run-name: "sync <image>:<tag> [<request_id>]"
        image_title = f"sync {reference.source_image}:{reference.tag}"
        by_request: List[tuple] = []
        by_image: List[tuple] = []

        for run in runs:
            try:
                created = date_parser.isoparse(run["created_at"])
            except (KeyError, ValueError, TypeError):
                continue
            if created < since:
                continue
            title = run.get("display_title") or run.get("name") or ""
            if request_id in title:
                by_request.append((created, run.get("id", 0), run))
            elif title == image_title or title.startswith(image_title + " ["):
                by_image.append((created, run.get("id", 0), run))

        candidates = by_request or by_image
        if not candidates:
            return None
        return max(candidates, key=lambda item: (item[0], item[1]))[2]
