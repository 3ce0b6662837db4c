"""
Credentials Model — GitHub access token with its granted scopes.

Owned by the credential store: the authenticator writes it, the
orchestrator reads it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Set

from pydantic import BaseModel, Field

# Scopes the sync flow needs: dispatch workflows, create the sync repo,
# and let the workflow push packages.
REQUIRED_SCOPES = frozenset({"repo", "workflow", "write:packages"})

# Scopes requested by the device flow.
REQUESTED_SCOPES = ("repo", "workflow", "write:packages", "read:packages")


def parse_scopes(raw: Optional[str]) -> Set[str]:
    """Split a GitHub scope string (comma or space separated)."""
    if not raw:
        return set()
    return {s.strip() for s in raw.replace(",", " ").split() if s.strip()}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Credentials(BaseModel):
    """An access token and what it may do."""

    access_token: str = Field(min_length=1)
    scopes: Set[str] = Field(default_factory=set)
    obtained_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None

    @classmethod
    def issued(
        cls,
        access_token: str,
        scope: Optional[str] = None,
        expires_in: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> "Credentials":
        """Build credentials from a token endpoint response."""
        now = now or _utcnow()
        expires_at = now + timedelta(seconds=int(expires_in)) if expires_in else None
        return cls(
            access_token=access_token,
            scopes=parse_scopes(scope),
            obtained_at=now,
            expires_at=expires_at,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) >= self.expires_at

    def missing_scopes(self, required: Iterable[str] = REQUIRED_SCOPES) -> Set[str]:
        return set(required) - self.scopes

    def is_valid(
        self,
        required: Iterable[str] = REQUIRED_SCOPES,
        now: Optional[datetime] = None,
    ) -> bool:
        """Present, unexpired, and carrying every required scope."""
        if not self.access_token:
            return False
        if self.is_expired(now):
            return False
        return not self.missing_scopes(required)

    def masked_token(self) -> str:
        token = self.access_token
        if len(token) <= 8:
            return "*" * len(token)
        return f"{token[:4]}…{token[-4:]}"


class DeviceSession(BaseModel):
    """
    One in-progress device authorization.

    Created when the flow starts and dropped when it ends; never persisted.
    ``expires_at`` is on the authenticator's monotonic clock.
    """

    model_config = {"frozen": True}

    device_code: str
    user_code: str
    verification_uri: str
    poll_interval: int = 5
    expires_at: float
