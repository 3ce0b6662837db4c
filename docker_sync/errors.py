"""
Errors — Typed failures raised by the sync core.

Every failure the core can produce is one of these types. Each carries a
``kind`` so callers (the CLI composition root) can decide on messages and
exit codes without string matching.

## Usage

    from docker_sync.errors import DispatchError, DispatchErrorKind

    try:
        run = dispatcher.dispatch(reference, credentials)
    except DispatchError as e:
        if e.kind == DispatchErrorKind.RATE_LIMITED:
            ...
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class DockerSyncError(Exception):
    """Base class for all docker-sync errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(DockerSyncError):
    """Raised when configuration is missing or invalid."""
    pass


class InvalidReferenceError(DockerSyncError, ValueError):
    """Raised when an image reference cannot be parsed."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Invalid image reference '{raw}': {reason}")


class InvalidTransitionError(DockerSyncError):
    """Raised when a run would leave a terminal state."""
    pass


class GitHubAPIError(DockerSyncError):
    """Raised for a non-2xx GitHub API response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self.headers = headers or {}
        super().__init__(f"HTTP {status_code}: {message}")

    @property
    def rate_limited(self) -> bool:
        if self.status_code == 429:
            return True
        return self.status_code == 403 and self.headers.get("x-ratelimit-remaining") == "0"

    @property
    def transient(self) -> bool:
        return self.status_code >= 500 or self.rate_limited


# ─── Typed component errors ─────────────────────────────────


class AuthErrorKind(str, Enum):
    DENIED = "denied"
    EXPIRED = "expired"
    TIMEOUT = "timeout"
    PROVIDER = "provider"
    NETWORK = "network"


class ProbeErrorKind(str, Enum):
    NETWORK = "network"
    UNAUTHORIZED = "unauthorized"
    MALFORMED = "malformed"


class DispatchErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    REPOSITORY_NOT_FOUND = "repository_not_found"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class PollErrorKind(str, Enum):
    NETWORK = "network"
    MALFORMED = "malformed"


class _KindError(DockerSyncError):
    """Error with a kind enum prefixed onto its message."""

    def __init__(self, kind: Enum, message: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}", details)


class AuthError(_KindError):
    """Device-flow login failed. Never retried automatically."""

    kind: AuthErrorKind


class ProbeError(_KindError):
    """The mirror could not answer an existence check. Distinct from 'absent'."""

    kind: ProbeErrorKind


class DispatchError(_KindError):
    """The remote workflow could not be started or its run not found."""

    kind: DispatchErrorKind


class PollError(_KindError):
    """Run status could not be observed. The remote run state is unknown."""

    kind: PollErrorKind
