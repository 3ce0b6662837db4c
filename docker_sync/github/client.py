"""
GitHub Client — Thin wrapper over the GitHub REST API.

Covers the calls the sync flow needs: user lookup, sync repository
setup, workflow dispatch, and run/job/log inspection. Every non-2xx
response raises GitHubAPIError; transport failures surface as httpx
exceptions so callers can decide what is transient.

## Usage

    from docker_sync.github.client import GitHubClient

    with GitHubClient(token) as gh:
        login = gh.get_user().login
        runs = gh.list_workflow_runs("alice/docker-sync", "docker-sync.yml")
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import httpx

from ..errors import GitHubAPIError
from ..models.credentials import parse_scopes

logger = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
USER_AGENT = "docker-sync-cli"


def build_http_client(
    timeout: float = 30.0,
    proxy: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """
    Create an httpx.Client with the tool's defaults.

    Centralises timeout, proxy and User-Agent so every component
    talks to GitHub and the registry the same way.
    """
    base_headers = {"User-Agent": USER_AGENT}
    if headers:
        base_headers.update(headers)
    if proxy:
        logger.info(f"[http] Using proxy {proxy}")
    return httpx.Client(
        timeout=httpx.Timeout(timeout),
        proxy=proxy,
        headers=base_headers,
        follow_redirects=True,
        transport=transport,
    )


def _get_headers(token: str) -> Dict[str, str]:
    """Get GitHub API headers."""
    return {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return resp.reason_phrase


@dataclass
class GitHubUser:
    """The authenticated account and the scopes its token carries."""

    login: str
    scopes: Set[str] = field(default_factory=set)
    # False for fine-grained tokens, which do not report scopes
    scopes_reported: bool = True


class GitHubClient:
    """
    Authenticated GitHub REST client.

    Owns its httpx.Client unless one is passed in.
    """

    def __init__(
        self,
        token: str,
        http: Optional[httpx.Client] = None,
        api_base: str = API_BASE,
        timeout: float = 30.0,
        proxy: Optional[str] = None,
    ):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self._owns_http = http is None
        self.http = http or build_http_client(timeout=timeout, proxy=proxy)

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    # ─── Plumbing ───────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        allow: tuple = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request; non-2xx statuses not in ``allow`` raise GitHubAPIError."""
        url = path if path.startswith("http") else f"{self.api_base}{path}"
        resp = self.http.request(method, url, headers=_get_headers(self.token), **kwargs)
        if resp.is_success or resp.status_code in allow:
            return resp
        raise GitHubAPIError(
            resp.status_code,
            _error_message(resp),
            headers={k.lower(): v for k, v in resp.headers.items()},
        )

    # ─── Account ────────────────────────────────────────────

    def get_user(self) -> GitHubUser:
        """Look up the token owner and the scopes GitHub reports for it."""
        resp = self._request("GET", "/user")
        header = resp.headers.get("x-oauth-scopes")
        return GitHubUser(
            login=resp.json()["login"],
            scopes=parse_scopes(header),
            scopes_reported=header is not None,
        )

    # ─── Repository ─────────────────────────────────────────

    def repo_exists(self, repo: str) -> bool:
        resp = self._request("GET", f"/repos/{repo}", allow=(404,))
        return resp.status_code != 404

    def create_repo(self, name: str, description: str, private: bool = False) -> Dict[str, Any]:
        resp = self._request(
            "POST",
            "/user/repos",
            json={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": True,
                "has_issues": False,
                "has_projects": False,
                "has_wiki": False,
            },
        )
        logger.info(f"[github] Repository created: {name}")
        return resp.json()

    def get_file(self, repo: str, path: str, ref: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Get a file from the repository contents API.

        Returns the API object with an extra ``decoded`` key, or None.
        """
        params = {"ref": ref} if ref else None
        resp = self._request("GET", f"/repos/{repo}/contents/{path}", allow=(404,), params=params)
        if resp.status_code == 404:
            return None
        data = resp.json()
        if data.get("encoding") == "base64" and "content" in data:
            data["decoded"] = base64.b64decode(data["content"]).decode("utf-8")
        return data

    def put_file(
        self,
        repo: str,
        path: str,
        content: str,
        message: str,
        branch: str = "main",
        sha: Optional[str] = None,
    ) -> None:
        """Create or update (when ``sha`` is given) a repository file."""
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha
        self._request("PUT", f"/repos/{repo}/contents/{path}", json=payload)

    def set_actions_permissions(self, repo: str) -> None:
        """Enable Actions and give workflows write access (to push packages)."""
        self._request(
            "PUT",
            f"/repos/{repo}/actions/permissions",
            json={"enabled": True, "allowed_actions": "all"},
        )
        self._request(
            "PUT",
            f"/repos/{repo}/actions/permissions/workflow",
            json={
                "default_workflow_permissions": "write",
                "can_approve_pull_request_reviews": False,
            },
        )

    # ─── Actions ────────────────────────────────────────────

    def dispatch_workflow(
        self,
        repo: str,
        workflow_file: str,
        ref: str,
        inputs: Dict[str, str],
    ) -> None:
        """Trigger a workflow_dispatch event. GitHub answers 204 with no run id."""
        self._request(
            "POST",
            f"/repos/{repo}/actions/workflows/{workflow_file}/dispatches",
            json={"ref": ref, "inputs": inputs},
        )

    def list_workflow_runs(
        self,
        repo: str,
        workflow_file: str,
        event: str = "workflow_dispatch",
        created_since: Optional[datetime] = None,
        per_page: int = 20,
    ) -> List[Dict[str, Any]]:
        """Most recent runs of a workflow, newest first."""
        params: Dict[str, Any] = {"event": event, "per_page": per_page}
        if created_since is not None:
            since = created_since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            params["created"] = f">={since}"
        resp = self._request(
            "GET",
            f"/repos/{repo}/actions/workflows/{workflow_file}/runs",
            params=params,
        )
        return resp.json()["workflow_runs"]

    def get_run(self, repo: str, run_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/repos/{repo}/actions/runs/{run_id}").json()

    def list_run_jobs(self, repo: str, run_id: int) -> List[Dict[str, Any]]:
        resp = self._request("GET", f"/repos/{repo}/actions/runs/{run_id}/jobs")
        return resp.json()["jobs"]

    def get_job_logs(self, repo: str, job_id: int) -> str:
        """Plain-text job log (GitHub redirects to a short-lived blob URL)."""
        return self._request("GET", f"/repos/{repo}/actions/jobs/{job_id}/logs").text
