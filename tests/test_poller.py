"""
Tests for the run poller: state mapping, step diffing, back-off,
deadline handling and error classification.
"""

from unittest.mock import MagicMock

import httpx
import pytest

from docker_sync.errors import GitHubAPIError, PollError, PollErrorKind
from docker_sync.github.poller import RunPoller, map_remote_state, map_step_status
from docker_sync.models.run import RunState, RunStateEvent, StepEvent, StepStatus
from docker_sync.reliability.backoff import RetryPolicy


def snapshot(status, conclusion=None):
    return {"id": 42, "status": status, "conclusion": conclusion}


def job(*steps, name="sync"):
    return {
        "id": 100,
        "name": name,
        "steps": [
            {"number": i + 1, "name": step_name, "status": status, "conclusion": conclusion}
            for i, (step_name, status, conclusion) in enumerate(steps)
        ],
    }


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def poller(client, clock):
    return RunPoller(lambda token: client, clock=clock, sleep=clock.sleep)


def script(client, *snapshots, jobs=None):
    """Queue run snapshots (and matching job lists) on the mock client."""
    client.get_run.side_effect = list(snapshots)
    client.list_run_jobs.side_effect = list(jobs) if jobs is not None else [[] for _ in snapshots]


class TestMapping:
    """Tests for GitHub status → local state mapping."""

    @pytest.mark.parametrize("status,conclusion,expected", [
        ("queued", None, RunState.QUEUED),
        ("waiting", None, RunState.QUEUED),
        ("requested", None, RunState.QUEUED),
        ("pending", None, RunState.QUEUED),
        ("in_progress", None, RunState.IN_PROGRESS),
        ("completed", "success", RunState.SUCCEEDED),
        ("completed", "failure", RunState.FAILED),
        ("completed", "timed_out", RunState.FAILED),
        ("completed", "cancelled", RunState.CANCELLED),
        ("completed", "startup_failure", RunState.FAILED),
        ("mystery", None, None),
    ])
    def test_run_state(self, status, conclusion, expected):
        assert map_remote_state(status, conclusion) == expected

    def test_step_status(self):
        assert map_step_status("queued", None) == StepStatus.PENDING
        assert map_step_status("in_progress", None) == StepStatus.RUNNING
        assert map_step_status("completed", "success") == StepStatus.SUCCEEDED
        assert map_step_status("completed", "skipped") == StepStatus.SUCCEEDED
        assert map_step_status("completed", "failure") == StepStatus.FAILED


class TestWatch:
    """Tests for RunPoller.watch."""

    def test_follows_run_to_success(self, poller, client, credentials, nginx, make_run, clock):
        script(
            client,
            snapshot("queued"),
            snapshot("in_progress"),
            snapshot("completed", "success"),
        )
        run = make_run(nginx)

        events = list(poller.watch(run, credentials, deadline=clock() + 600))

        assert [e.state for e in events if isinstance(e, RunStateEvent)] == [
            RunState.QUEUED,
            RunState.IN_PROGRESS,
            RunState.SUCCEEDED,
        ]
        assert run.state == RunState.SUCCEEDED
        assert run.conclusion == "success"
        assert run.last_poll_at is not None
        client.get_run.assert_called_with("alice/docker-sync", 42)
        client.close.assert_called_once()

    def test_only_new_or_changed_steps_are_emitted(self, poller, client, credentials, nginx, make_run, clock):
        script(
            client,
            snapshot("in_progress"),
            snapshot("in_progress"),
            snapshot("completed", "success"),
            jobs=[
                [job(("Set up job", "completed", "success"), ("Copy image", "in_progress", None))],
                [job(("Set up job", "completed", "success"), ("Copy image", "in_progress", None))],
                [job(("Set up job", "completed", "success"), ("Copy image", "completed", "success"))],
            ],
        )
        run = make_run(nginx)

        events = list(poller.watch(run, credentials, deadline=clock() + 600))
        steps = [(e.name, e.status) for e in events if isinstance(e, StepEvent)]

        assert steps == [
            ("Set up job", StepStatus.SUCCEEDED),
            ("Copy image", StepStatus.RUNNING),
            ("Copy image", StepStatus.SUCCEEDED),
        ]
        assert [(s.name, s.status) for s in run.steps] == steps
        assert all(s.job == "sync" for s in run.steps)

    def test_terminal_event_is_last(self, poller, client, credentials, nginx, make_run, clock):
        script(
            client,
            snapshot("completed", "failure"),
            jobs=[[job(("Copy image", "completed", "failure"))]],
        )
        run = make_run(nginx)

        events = list(poller.watch(run, credentials, deadline=clock() + 600))

        assert isinstance(events[-1], RunStateEvent)
        assert events[-1].state == RunState.FAILED
        assert run.failed_steps()[0].name == "Copy image"

    def test_interval_backs_off_and_resets(self, poller, client, credentials, nginx, make_run, clock):
        script(
            client,
            snapshot("queued"),
            snapshot("queued"),
            snapshot("queued"),
            snapshot("queued"),
            snapshot("queued"),
            snapshot("in_progress"),
            snapshot("completed", "success"),
        )
        run = make_run(nginx)

        list(poller.watch(run, credentials, deadline=clock() + 600))

        assert clock.sleeps == [3.0, 4.5, 6.75, 10.0, 10.0, 3.0]

    def test_deadline_times_out_without_further_polls(self, client, credentials, nginx, make_run, clock):
        client.get_run.return_value = snapshot("in_progress")
        client.list_run_jobs.return_value = []
        poller = RunPoller(lambda token: client, poll_interval=3, max_poll_interval=3, clock=clock, sleep=clock.sleep)
        run = make_run(nginx)

        events = list(poller.watch(run, credentials, deadline=clock() + 10))

        assert run.state == RunState.TIMED_OUT
        assert events[-1] == RunStateEvent(RunState.TIMED_OUT, events[-1].timestamp)
        # polls at t=0, 3, 6, 9; the final sleep is clipped to the deadline
        assert client.get_run.call_count == 4
        assert clock.sleeps == [3, 3, 3, 1]

    def test_expired_deadline_makes_no_calls(self, poller, client, credentials, nginx, make_run, clock):
        run = make_run(nginx)

        events = list(poller.watch(run, credentials, deadline=clock() - 1))

        assert [e.state for e in events] == [RunState.TIMED_OUT]
        client.get_run.assert_not_called()

    def test_generator_is_not_restartable(self, poller, client, credentials, nginx, make_run, clock):
        script(client, snapshot("completed", "success"))
        run = make_run(nginx)
        watch = poller.watch(run, credentials, deadline=clock() + 60)

        assert len(list(watch)) == 1
        assert list(watch) == []

    def test_terminal_run_yields_nothing(self, poller, client, credentials, nginx, make_run, clock):
        run = make_run(nginx)
        run.state = RunState.SUCCEEDED

        assert list(poller.watch(run, credentials, deadline=clock() + 60)) == []
        client.get_run.assert_not_called()


class TestWatchErrors:
    """Tests for network and payload failures while polling."""

    def test_transient_errors_retried_within_cycle(self, poller, client, credentials, nginx, make_run, clock):
        client.get_run.side_effect = [
            httpx.ConnectError("blip"),
            GitHubAPIError(502, "bad gateway"),
            snapshot("completed", "success"),
        ]
        client.list_run_jobs.return_value = []
        run = make_run(nginx)

        list(poller.watch(run, credentials, deadline=clock() + 600))

        assert run.state == RunState.SUCCEEDED
        assert clock.sleeps == [1.0, 2.0]

    def test_consecutive_failed_cycles_raise_network(self, client, credentials, nginx, make_run, clock):
        client.get_run.side_effect = httpx.ConnectError("offline")
        poller = RunPoller(
            lambda token: client,
            retry_policy=RetryPolicy(max_attempts=2, backoff_seconds=(1,)),
            max_failed_cycles=3,
            clock=clock,
            sleep=clock.sleep,
        )
        run = make_run(nginx)
        run.state = RunState.IN_PROGRESS

        with pytest.raises(PollError) as exc_info:
            list(poller.watch(run, credentials, deadline=clock() + 600))

        assert exc_info.value.kind == PollErrorKind.NETWORK
        assert client.get_run.call_count == 6
        # last known state kept
        assert run.state == RunState.IN_PROGRESS

    def test_one_failed_cycle_is_tolerated(self, poller, client, credentials, nginx, make_run, clock):
        error = httpx.ConnectError("offline")
        client.get_run.side_effect = [error, error, error, snapshot("completed", "success")]
        client.list_run_jobs.return_value = []
        run = make_run(nginx)

        list(poller.watch(run, credentials, deadline=clock() + 600))

        assert run.state == RunState.SUCCEEDED

    def test_malformed_payload(self, poller, client, credentials, nginx, make_run, clock):
        script(client, {"id": 42})
        run = make_run(nginx)

        with pytest.raises(PollError) as exc_info:
            list(poller.watch(run, credentials, deadline=clock() + 600))

        assert exc_info.value.kind == PollErrorKind.MALFORMED
        assert run.state == RunState.DISPATCHED

    def test_unparseable_json(self, poller, client, credentials, nginx, make_run, clock):
        client.get_run.side_effect = ValueError("Expecting value")
        run = make_run(nginx)

        with pytest.raises(PollError) as exc_info:
            list(poller.watch(run, credentials, deadline=clock() + 600))

        assert exc_info.value.kind == PollErrorKind.MALFORMED

    def test_refused_status_is_not_retried(self, poller, client, credentials, nginx, make_run, clock):
        client.get_run.side_effect = GitHubAPIError(404, "Not Found")
        run = make_run(nginx)

        with pytest.raises(PollError):
            list(poller.watch(run, credentials, deadline=clock() + 600))

        assert client.get_run.call_count == 1


class TestFailureExcerpt:
    """Tests for log excerpts of failed runs."""

    def test_filters_error_lines(self, poller, client, credentials, nginx, make_run):
        client.list_run_jobs.return_value = [{"id": 100, "conclusion": "failure"}]
        client.get_job_logs.return_value = "\n".join([
            "2024-05-01T12:00:01.1234567Z Copying docker.io/library/nginx:alpine",
            "2024-05-01T12:00:02.1234567Z ERROR: denied: permission_denied: write_package",
            "2024-05-01T12:00:03.1234567Z ##[error]Process completed with exit code 1.",
        ])
        run = make_run(nginx)

        lines = poller.failure_excerpt(run, credentials)

        assert lines == [
            "ERROR: denied: permission_denied: write_package",
            "##[error]Process completed with exit code 1.",
        ]

    def test_bounded(self, poller, client, credentials, nginx, make_run):
        client.list_run_jobs.return_value = [{"id": 100, "conclusion": "failure"}]
        client.get_job_logs.return_value = "\n".join(f"error {i}" for i in range(100))

        assert len(poller.failure_excerpt(make_run(nginx), credentials)) == 40

    def test_log_fetch_failure_returns_empty(self, poller, client, credentials, nginx, make_run):
        client.list_run_jobs.side_effect = GitHubAPIError(410, "Gone")

        assert poller.failure_excerpt(make_run(nginx), credentials) == []
