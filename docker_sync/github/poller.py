"""
Run Poller — Follow a workflow run until it finishes.

``watch`` is a generator: each poll fetches the run and its jobs, moves
the SyncRun to the mapped state and yields what changed. The generator
ends when the run is terminal or the local deadline passes (the run is
then marked timed_out). Nothing is polled after that.

Polling backs off while nothing changes:

    3s → 4.5s → 6.75s → 10s (cap) ... reset to 3s on any change

## Usage

    poller = RunPoller(GitHubClient)
    for event in poller.watch(run, credentials, deadline=time.monotonic() + 1800):
        print(event)
    print(run.state)
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import httpx

from ..errors import GitHubAPIError, PollError, PollErrorKind
from ..models.credentials import Credentials
from ..models.run import ProgressEvent, RunState, RunStateEvent, StepEvent, StepStatus, SyncRun, utcnow
from ..reliability.backoff import RetriesExhausted, RetryPolicy, call_with_retry
from .client import GitHubClient

logger = logging.getLogger(__name__)

PENDING_STATUSES = {"queued", "waiting", "requested", "pending"}
EXCERPT_KEYWORDS = ("error", "denied", "failed")
LOG_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T[\d:.]+Z\s?")


def map_remote_state(status: Optional[str], conclusion: Optional[str]) -> Optional[RunState]:
    """
    Map GitHub's run ``status``/``conclusion`` to a RunState.

    Returns None for a status we do not recognise.
    """
    if status == "completed":
        if conclusion == "success":
            return RunState.SUCCEEDED
        if conclusion == "cancelled":
            return RunState.CANCELLED
        # A remote timeout is a remote failure; TIMED_OUT is our own deadline.
        return RunState.FAILED
    if status == "in_progress":
        return RunState.IN_PROGRESS
    if status in PENDING_STATUSES:
        return RunState.QUEUED
    return None


def map_step_status(status: Optional[str], conclusion: Optional[str]) -> StepStatus:
    if status == "completed":
        if conclusion in ("success", "skipped", "neutral"):
            return StepStatus.SUCCEEDED
        return StepStatus.FAILED
    if status == "in_progress":
        return StepStatus.RUNNING
    return StepStatus.PENDING


class RunPoller:
    """Poll one run at a time; share an instance freely across threads."""

    def __init__(
        self,
        client_factory: Callable[[str], GitHubClient],
        repo: Optional[str] = None,
        poll_interval: float = 3.0,
        max_poll_interval: float = 10.0,
        growth: float = 1.5,
        retry_policy: Optional[RetryPolicy] = None,
        max_failed_cycles: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.client_factory = client_factory
        self.repo = repo
        self.poll_interval = poll_interval
        self.max_poll_interval = max(poll_interval, max_poll_interval)
        self.growth = growth
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_failed_cycles = max_failed_cycles
        self._clock = clock
        self._sleep = sleep
        self._now = now

    def _repo_for(self, run: SyncRun) -> str:
        repo = run.repo or self.repo
        if not repo:
            raise ValueError(f"Run {run.run_id} has no repository")
        return repo

    # ─── Watch ──────────────────────────────────────────────

    def watch(self, run: SyncRun, credentials: Credentials, deadline: float) -> Iterator[ProgressEvent]:
        """
        Yield progress events for ``run`` until it is terminal.

        ``deadline`` is an absolute time on the poller's clock. Raises
        PollError when the run cannot be observed; ``run.state`` then
        keeps its last known value.
        """
        if run.state.is_terminal:
            return

        repo = self._repo_for(run)
        client = self.client_factory(credentials.access_token)
        try:
            interval = self.poll_interval
            failed_cycles = 0
            seen_steps: Dict[Tuple[str, int, str], StepStatus] = {}

            while True:
                if self._clock() >= deadline:
                    yield self._time_out(run)
                    return

                try:
                    snapshot, jobs = call_with_retry(
                        lambda: self._fetch(client, repo, run.run_id),
                        self.retry_policy,
                        sleep=self._sleep,
                        description=f"poll run {run.run_id}",
                        deadline=deadline,
                        clock=self._clock,
                    )
                    failed_cycles = 0
                except RetriesExhausted as e:
                    failed_cycles += 1
                    logger.warning(
                        f"[poll] Run {run.run_id}: poll cycle failed "
                        f"({failed_cycles}/{self.max_failed_cycles})"
                    )
                    if failed_cycles >= self.max_failed_cycles:
                        raise PollError(
                            PollErrorKind.NETWORK,
                            f"Could not reach GitHub for run {run.run_id}: {e.last_error}",
                            {"run_id": run.run_id},
                        ) from e.last_error
                    snapshot, jobs = None, []
                except GitHubAPIError as e:
                    raise PollError(
                        PollErrorKind.NETWORK,
                        f"GitHub refused status of run {run.run_id}: {e}",
                        {"run_id": run.run_id, "status_code": e.status_code},
                    ) from e
                except ValueError as e:
                    raise PollError(
                        PollErrorKind.MALFORMED,
                        f"Unreadable response for run {run.run_id}: {e}",
                        {"run_id": run.run_id},
                    ) from e

                changed = False
                if snapshot is not None:
                    events = self._apply(run, snapshot, jobs, seen_steps)
                    changed = bool(events)
                    for event in events:
                        yield event

                if run.state.is_terminal:
                    logger.info(f"[poll] Run {run.run_id} finished: {run.state.value}")
                    return

                if changed:
                    interval = self.poll_interval
                else:
                    interval = min(interval * self.growth, self.max_poll_interval)

                remaining = deadline - self._clock()
                if remaining <= 0:
                    yield self._time_out(run)
                    return
                self._sleep(min(interval, remaining))
        finally:
            client.close()

    @staticmethod
    def _fetch(client: GitHubClient, repo: str, run_id: int) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        return client.get_run(repo, run_id), client.list_run_jobs(repo, run_id)

    def _time_out(self, run: SyncRun) -> RunStateEvent:
        logger.warning(f"[poll] Run {run.run_id}: local deadline reached, giving up on {run.reference.key}")
        run.transition(RunState.TIMED_OUT)
        return RunStateEvent(RunState.TIMED_OUT, self._now())

    def _apply(
        self,
        run: SyncRun,
        snapshot: Dict[str, Any],
        jobs: List[Dict[str, Any]],
        seen_steps: Dict[Tuple[str, int, str], StepStatus],
    ) -> List[ProgressEvent]:
        """Fold one snapshot into ``run``; return the events it produced."""
        now = self._now()
        run.last_poll_at = now

        try:
            status = snapshot["status"]
            conclusion = snapshot.get("conclusion")
            step_events = self._diff_steps(jobs, seen_steps, now)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PollError(
                PollErrorKind.MALFORMED,
                f"Unexpected run payload for run {run.run_id}: {e!r}",
                {"run_id": run.run_id},
            ) from e

        new_state = map_remote_state(status, conclusion)
        if new_state is None:
            logger.debug(f"[poll] Run {run.run_id}: unrecognised status '{status}'")
            new_state = run.state

        if snapshot.get("html_url"):
            run.html_url = snapshot["html_url"]
        run.steps.extend(step_events)

        events: List[ProgressEvent] = []
        if run.transition(new_state):
            run.conclusion = conclusion
            logger.info(f"[poll] Run {run.run_id} → {new_state.value}")
            state_event = RunStateEvent(new_state, now)
            # the terminal event is always last
            if new_state.is_terminal:
                events = [*step_events, state_event]
            else:
                events = [state_event, *step_events]
        else:
            events = list(step_events)

        return events

    @staticmethod
    def _diff_steps(
        jobs: List[Dict[str, Any]],
        seen_steps: Dict[Tuple[str, int, str], StepStatus],
        now: datetime,
    ) -> List[StepEvent]:
        events: List[StepEvent] = []
        for job in jobs:
            job_name = job.get("name") or str(job.get("id", ""))
            for step in job.get("steps") or []:
                key = (job_name, int(step.get("number", 0)), step["name"])
                status = map_step_status(step.get("status"), step.get("conclusion"))
                if seen_steps.get(key) == status:
                    continue
                seen_steps[key] = status
                events.append(StepEvent(name=step["name"], status=status, timestamp=now, job=job_name))
        return events

    # ─── Diagnostics ────────────────────────────────────────

    def failure_excerpt(self, run: SyncRun, credentials: Credentials, limit: int = 40) -> List[str]:
        """
        Log lines of a failed run that look like errors.

        Best effort: returns what could be fetched, possibly nothing.
        """
        repo = self._repo_for(run)
        client = self.client_factory(credentials.access_token)
        lines: List[str] = []
        try:
            jobs = client.list_run_jobs(repo, run.run_id)
            failed_jobs = [j for j in jobs if j.get("conclusion") not in ("success", "skipped")] or jobs
            for job in failed_jobs:
                text = client.get_job_logs(repo, job["id"])
                for line in text.splitlines():
                    line = LOG_TIMESTAMP_RE.sub("", line).strip()
                    lowered = line.lower()
                    if line and any(word in lowered for word in EXCERPT_KEYWORDS):
                        lines.append(line)
                        if len(lines) >= limit:
                            return lines
        except (GitHubAPIError, httpx.HTTPError, KeyError) as e:
            logger.warning(f"[poll] Could not fetch logs for run {run.run_id}: {e}")
        finally:
            client.close()
        return lines
