"""
Shared fixtures for docker-sync tests.

Nothing here sleeps or touches the real config directory: time comes
from FakeClock, and every test gets its own config dir under tmp_path.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List

import pytest

from docker_sync.models.credentials import REQUIRED_SCOPES, Credentials
from docker_sync.models.reference import ImageReference
from docker_sync.models.run import SyncRun


class FakeClock:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the user config dir at a temp dir and clear env overrides."""
    path = tmp_path / "config"
    monkeypatch.setenv("DOCKER_SYNC_CONFIG_DIR", str(path))
    for name in (
        "DOCKER_SYNC_REPO",
        "DOCKER_SYNC_MIRROR_HOST",
        "DOCKER_SYNC_GHCR_HOST",
        "DOCKER_SYNC_PROXY",
        "DOCKER_SYNC_CLIENT_ID",
        "DOCKER_SYNC_DEADLINE",
    ):
        monkeypatch.delenv(name, raising=False)
    return path


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(access_token="gho_testtoken1234", scopes=set(REQUIRED_SCOPES))


@pytest.fixture
def nginx() -> ImageReference:
    return ImageReference.parse("nginx:alpine")


@pytest.fixture
def make_run():
    """Build a freshly dispatched SyncRun."""

    def _make(reference: ImageReference, run_id: int = 42) -> SyncRun:
        return SyncRun(
            reference=reference,
            run_id=run_id,
            dispatched_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            repo="alice/docker-sync",
        )

    return _make
