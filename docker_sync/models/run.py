"""
Run Models — Remote sync runs, their progress events, and outcomes.

A SyncRun is the local view of one GitHub Actions run correlated to an
image reference. It is created by the dispatcher and mutated only by the
poller; once it reaches a terminal state it never moves again.

    dispatched → queued → in_progress → succeeded | failed | timed_out | cancelled

Every ``sync`` call produces a SyncOutcome, regardless of success or
failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from ..errors import InvalidTransitionError
from .reference import ImageReference


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunState(str, Enum):
    DISPATCHED = "dispatched"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    RunState.SUCCEEDED,
    RunState.FAILED,
    RunState.TIMED_OUT,
    RunState.CANCELLED,
})


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StepEvent:
    """A workflow step observed in a new status."""

    name: str
    status: StepStatus
    timestamp: datetime = field(default_factory=utcnow)
    job: Optional[str] = None


@dataclass(frozen=True)
class RunStateEvent:
    """The run as a whole moved to a new state."""

    state: RunState
    timestamp: datetime = field(default_factory=utcnow)


ProgressEvent = Union[RunStateEvent, StepEvent]


@dataclass
class SyncRun:
    """One in-flight or finished remote workflow run."""

    reference: ImageReference
    run_id: int
    dispatched_at: datetime
    state: RunState = RunState.DISPATCHED
    steps: List[StepEvent] = field(default_factory=list)
    last_poll_at: Optional[datetime] = None
    html_url: Optional[str] = None
    conclusion: Optional[str] = None
    # "owner/name" of the repository the run lives in
    repo: Optional[str] = None

    def transition(self, new_state: RunState) -> bool:
        """
        Move to ``new_state``.

        Returns True if the state changed. Raises InvalidTransitionError
        when the run is already terminal and asked to move elsewhere.
        """
        if new_state == self.state:
            return False
        if self.state.is_terminal:
            raise InvalidTransitionError(
                f"Run {self.run_id} is {self.state.value}, cannot move to {new_state.value}"
            )
        self.state = new_state
        return True

    def failed_steps(self) -> List[StepEvent]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]


class SyncStatus(str, Enum):
    CACHED = "cached"
    SYNCED = "synced"
    FAILED = "failed"


class SyncFailure(str, Enum):
    REMOTE_FAILED = "remote_failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    PROPAGATION_TIMEOUT = "propagation_timeout"


_FAILURE_BY_STATE = {
    RunState.FAILED: SyncFailure.REMOTE_FAILED,
    RunState.CANCELLED: SyncFailure.CANCELLED,
    RunState.TIMED_OUT: SyncFailure.TIMED_OUT,
}


def failure_for_state(state: RunState) -> SyncFailure:
    """Map a non-successful terminal run state to its outcome reason."""
    return _FAILURE_BY_STATE[state]


@dataclass
class SyncOutcome:
    """Result of one ``sync`` call."""

    status: SyncStatus
    reference: ImageReference
    mirror_image: str
    reason: Optional[SyncFailure] = None
    run: Optional[SyncRun] = None
    steps: List[StepEvent] = field(default_factory=list)
    detail: Optional[str] = None
    log_excerpt: List[str] = field(default_factory=list)
    finished_at: datetime = field(default_factory=utcnow)

    @property
    def ok(self) -> bool:
        return self.status != SyncStatus.FAILED

    @classmethod
    def cached(cls, reference: ImageReference, mirror_image: str) -> "SyncOutcome":
        """The image was already at the mirror."""
        return cls(status=SyncStatus.CACHED, reference=reference, mirror_image=mirror_image)

    @classmethod
    def synced(cls, run: SyncRun, mirror_image: str) -> "SyncOutcome":
        """A remote run finished and the image is now visible."""
        return cls(
            status=SyncStatus.SYNCED,
            reference=run.reference,
            mirror_image=mirror_image,
            run=run,
            steps=list(run.steps),
        )

    @classmethod
    def failed(
        cls,
        run: SyncRun,
        mirror_image: str,
        reason: SyncFailure,
        detail: Optional[str] = None,
        log_excerpt: Optional[List[str]] = None,
    ) -> "SyncOutcome":
        """The sync did not produce a visible image."""
        return cls(
            status=SyncStatus.FAILED,
            reference=run.reference,
            mirror_image=mirror_image,
            reason=reason,
            run=run,
            steps=list(run.steps),
            detail=detail,
            log_excerpt=list(log_excerpt or []),
        )

    def to_dict(self) -> dict:
        """JSON-friendly summary for ``--json`` output."""
        return {
            "reference": self.reference.key,
            "status": self.status.value,
            "mirror_image": self.mirror_image,
            "reason": self.reason.value if self.reason else None,
            "run_id": self.run.run_id if self.run else None,
            "run_url": self.run.html_url if self.run else None,
            "detail": self.detail,
            "steps": [
                {"name": s.name, "status": s.status.value, "timestamp": s.timestamp.isoformat()}
                for s in self.steps
            ],
            "log_excerpt": self.log_excerpt,
        }
