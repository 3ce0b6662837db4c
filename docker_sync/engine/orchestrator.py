"""
Sync Orchestrator — Make one image reference available at the mirror.

This is the main entry point of the sync core. For each reference:

1. Join the in-flight sync for the same reference, if any
2. Probe the mirror; present → cached (no login, no dispatch)
3. Make sure we hold usable GitHub credentials (device flow if not)
4. Dispatch the sync workflow and follow the run to completion
5. Re-probe until the image is visible, or report a propagation timeout

Different references sync in parallel. The same reference is synced at
most once at a time; concurrent callers share the outcome.

## Usage

    from docker_sync.engine.orchestrator import SyncOrchestrator

    orchestrator = SyncOrchestrator.from_settings(Settings.load())
    outcome = orchestrator.sync(ImageReference.parse("nginx:alpine"), on_event=print)
    if outcome.ok:
        print(outcome.mirror_image)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

import httpx

from ..auth.device_flow import DeviceFlowAuthenticator, Presenter
from ..config.settings import Settings
from ..errors import AuthError, AuthErrorKind, ConfigurationError, ProbeError
from ..github.bootstrap import SyncRepoBootstrapper
from ..github.client import GitHubClient, build_http_client
from ..github.dispatcher import WorkflowDispatcher
from ..github.poller import RunPoller
from ..models.credentials import Credentials
from ..models.reference import ImageReference
from ..models.run import (
    ProgressEvent,
    RunState,
    RunStateEvent,
    SyncFailure,
    SyncOutcome,
    SyncRun,
    failure_for_state,
)
from ..persistence.credential_store import CredentialStore
from ..registry.prober import RegistryProber
from .active_runs import ActiveRun, ActiveRunRegistry

logger = logging.getLogger(__name__)

EventCallback = Callable[[ProgressEvent], None]


class SyncOrchestrator:
    """
    Coordinates probe, login, dispatch and polling for image references.

    Safe to call ``sync`` from several threads at once.
    """

    def __init__(
        self,
        prober: RegistryProber,
        dispatcher: WorkflowDispatcher,
        poller: RunPoller,
        store: CredentialStore,
        authenticator: Optional[DeviceFlowAuthenticator],
        mirror_host: str,
        owner: str,
        registry: Optional[ActiveRunRegistry] = None,
        deadline_seconds: float = 1800.0,
        propagation_timeout: float = 60.0,
        propagation_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.prober = prober
        self.dispatcher = dispatcher
        self.poller = poller
        self.store = store
        self.authenticator = authenticator
        self.mirror_host = mirror_host
        self.owner = owner
        self.registry = registry if registry is not None else ActiveRunRegistry()
        self.deadline_seconds = deadline_seconds
        self.propagation_timeout = propagation_timeout
        self.propagation_interval = propagation_interval
        self._clock = clock
        self._sleep = sleep
        self._auth_lock = threading.Lock()
        self._http: Optional[httpx.Client] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[CredentialStore] = None,
        presenter: Optional[Presenter] = None,
        deadline_seconds: Optional[float] = None,
    ) -> "SyncOrchestrator":
        """Wire every component from settings, sharing one HTTP client."""
        if not settings.repo or not settings.owner:
            raise ConfigurationError("No sync repository configured (set 'repo' or log in first)")

        store = store or CredentialStore()
        http = build_http_client(timeout=settings.http_timeout_seconds, proxy=settings.proxy)

        def client_factory(token: str) -> GitHubClient:
            return GitHubClient(token, http=http)

        bootstrapper = SyncRepoBootstrapper(
            workflow_file=settings.workflow_file,
            branch=settings.workflow_ref,
            ghcr_host=settings.ghcr_host,
        )
        orchestrator = cls(
            prober=RegistryProber(settings.owner, http=http),
            dispatcher=WorkflowDispatcher(
                client_factory,
                repo=settings.repo,
                workflow_file=settings.workflow_file,
                ref=settings.workflow_ref,
                bootstrapper=bootstrapper,
            ),
            poller=RunPoller(
                client_factory,
                repo=settings.repo,
                poll_interval=settings.poll_interval_seconds,
                max_poll_interval=settings.max_poll_interval_seconds,
            ),
            store=store,
            authenticator=DeviceFlowAuthenticator(settings.client_id, store, presenter=presenter, http=http),
            mirror_host=settings.mirror_host,
            owner=settings.owner,
            deadline_seconds=deadline_seconds or settings.sync_deadline_seconds,
            propagation_timeout=settings.propagation_timeout_seconds,
            propagation_interval=settings.propagation_interval_seconds,
        )
        orchestrator._http = http
        return orchestrator

    def close(self) -> None:
        if self._http is not None:
            self._http.close()

    def mirror_image(self, reference: ImageReference) -> str:
        return reference.mirror_image(self.mirror_host, self.owner)

    # ─── Sync ───────────────────────────────────────────────

    def sync(self, reference: ImageReference, on_event: Optional[EventCallback] = None) -> SyncOutcome:
        """
        Make ``reference`` available at the mirror.

        Returns a SyncOutcome for every completed attempt, including
        remote failures and timeouts. Raises AuthError, ProbeError,
        DispatchError or PollError when the attempt could not be made
        or followed.
        """
        entry, created = self.registry.attach_or_create(reference.key)
        if not created:
            logger.info(f"[sync] {reference.key} already in flight, attaching", extra={"reference": reference.key})
            for event in entry.follow():
                if on_event is not None:
                    on_event(event)
            return entry.result()

        try:
            outcome = self._sync_as_creator(reference, entry, on_event)
        except BaseException as e:
            entry.fail(e)
            raise
        else:
            entry.finish(outcome)
        finally:
            self.registry.release(entry)

        return outcome

    def _sync_as_creator(
        self,
        reference: ImageReference,
        entry: ActiveRun,
        on_event: Optional[EventCallback],
    ) -> SyncOutcome:
        def emit(event: ProgressEvent) -> None:
            entry.publish(event)
            if on_event is not None:
                on_event(event)

        mirror_image = self.mirror_image(reference)

        if self.prober.exists(reference, self.mirror_host):
            logger.info(f"[sync] {reference.key} cached at {mirror_image}", extra={"reference": reference.key})
            return SyncOutcome.cached(reference, mirror_image)

        credentials = self.ensure_credentials()
        run = self.dispatcher.dispatch(reference, credentials)
        log_extra = {"reference": reference.key, "run_id": run.run_id}
        logger.info(f"[sync] {reference.key} dispatched as run {run.run_id}", extra=log_extra)
        emit(RunStateEvent(RunState.DISPATCHED, run.dispatched_at))

        deadline = self._clock() + self.deadline_seconds
        for event in self.poller.watch(run, credentials, deadline):
            emit(event)

        if run.state == RunState.SUCCEEDED:
            return self._confirm_visible(run, mirror_image)

        reason = failure_for_state(run.state)
        excerpt: List[str] = []
        if run.state == RunState.FAILED:
            excerpt = self.poller.failure_excerpt(run, credentials)
        logger.warning(f"[sync] {reference.key} run {run.run_id} ended {run.state.value}", extra=log_extra)
        return SyncOutcome.failed(
            run,
            mirror_image,
            reason,
            detail=self._failure_detail(run),
            log_excerpt=excerpt,
        )

    def _confirm_visible(self, run: SyncRun, mirror_image: str) -> SyncOutcome:
        """Re-probe until the mirror serves the image or we give up."""
        reference = run.reference
        give_up_at = self._clock() + self.propagation_timeout
        last_error: Optional[ProbeError] = None

        while True:
            try:
                if self.prober.exists(reference, self.mirror_host):
                    logger.info(
                        f"[sync] {reference.key} synced → {mirror_image}",
                        extra={"reference": reference.key, "run_id": run.run_id},
                    )
                    return SyncOutcome.synced(run, mirror_image)
            except ProbeError as e:
                last_error = e
                logger.warning(f"[sync] Probe after run {run.run_id} failed: {e}")

            remaining = give_up_at - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.propagation_interval, remaining))

        detail = f"Run {run.run_id} succeeded but {mirror_image} is not visible after {self.propagation_timeout:.0f}s"
        if last_error is not None:
            detail += f" (last probe error: {last_error})"
        logger.warning(f"[sync] {detail}", extra={"reference": reference.key, "run_id": run.run_id})
        return SyncOutcome.failed(run, mirror_image, SyncFailure.PROPAGATION_TIMEOUT, detail=detail)

    @staticmethod
    def _failure_detail(run: SyncRun) -> str:
        if run.state == RunState.TIMED_OUT:
            return f"Run {run.run_id} did not finish before the deadline; it may still be running remotely"
        failed = [s.name for s in run.failed_steps()]
        if failed:
            return f"Run {run.run_id} {run.state.value} at step: {', '.join(dict.fromkeys(failed))}"
        return f"Run {run.run_id} {run.state.value}"

    # ─── Credentials ────────────────────────────────────────

    def ensure_credentials(self) -> Credentials:
        """
        Stored credentials if valid, otherwise a fresh device-flow login.

        Only one login runs at a time; threads waiting on it reuse its
        result.
        """
        with self._auth_lock:
            credentials = self.store.load()
            if credentials is not None and credentials.is_valid():
                return credentials

            if credentials is not None:
                missing = credentials.missing_scopes()
                if missing:
                    logger.warning(f"[auth] Stored token lacks scopes: {', '.join(sorted(missing))}")
                else:
                    logger.info("[auth] Stored token expired")

            if self.authenticator is None:
                raise AuthError(AuthErrorKind.EXPIRED, "Not logged in; run 'docker-sync auth login'")
            return self.authenticator.login()
