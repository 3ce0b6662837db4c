"""
GitHub integration — REST client, sync repo bootstrap, dispatch and polling.
"""

from .bootstrap import SyncRepoBootstrapper
from .client import GitHubClient, GitHubUser, build_http_client
from .dispatcher import WorkflowDispatcher
from .poller import RunPoller

__all__ = [
    "GitHubClient",
    "GitHubUser",
    "RunPoller",
    "SyncRepoBootstrapper",
    "WorkflowDispatcher",
    "build_http_client",
]
