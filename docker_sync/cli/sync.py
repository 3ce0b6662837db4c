"""
CLI sync command — mirror images and pull them locally.

Usage:
    docker-sync sync nginx:alpine
    docker-sync sync nginx:alpine redis:7 --no-pull
    docker-sync sync ghcr.io/org/tool:1.2 --json
"""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

import click

from ..errors import AuthError, DockerSyncError, InvalidReferenceError
from ..models.reference import ImageReference
from ..models.run import ProgressEvent, RunStateEvent, StepStatus, SyncOutcome, SyncStatus
from .common import EXIT_AUTH, EXIT_FAILED, EXIT_OK, ensure_logged_in, ensure_repo, load_settings, present_device_code

MAX_PARALLEL_SYNCS = 4

STATE_ICONS = {
    "dispatched": "🚀",
    "queued": "⏳",
    "in_progress": "🔄",
    "succeeded": "✅",
    "failed": "❌",
    "cancelled": "⛔",
    "timed_out": "⌛",
}
STEP_ICONS = {
    StepStatus.RUNNING: "▶",
    StepStatus.SUCCEEDED: "✓",
    StepStatus.FAILED: "✗",
}


def format_event(event: ProgressEvent, prefix: str = "") -> Optional[str]:
    """One progress line, or None for events not worth showing."""
    if isinstance(event, RunStateEvent):
        icon = STATE_ICONS.get(event.state.value, "•")
        return f"{prefix}{icon} run {event.state.value.replace('_', ' ')}"
    icon = STEP_ICONS.get(event.status)
    if icon is None:
        return None
    return f"{prefix}  {icon} {event.name}"


def _echo_outcome(raw: str, outcome: SyncOutcome) -> None:
    if outcome.status == SyncStatus.CACHED:
        click.secho(f"✅ {raw}: already mirrored → {outcome.mirror_image}", fg="green")
    elif outcome.status == SyncStatus.SYNCED:
        click.secho(f"✅ {raw}: synced → {outcome.mirror_image}", fg="green")
    else:
        click.secho(f"❌ {raw}: {outcome.reason.value.replace('_', ' ')}", fg="red")
        if outcome.detail:
            click.echo(f"   {outcome.detail}")
        if outcome.run is not None and outcome.run.html_url:
            click.echo(f"   {outcome.run.html_url}")
        if outcome.log_excerpt:
            click.secho("   📋 Error details:", fg="red")
            for line in outcome.log_excerpt:
                click.echo(f"     {line}")


def _pull(raw: str, outcome: SyncOutcome, tag_source: bool) -> bool:
    from ..runtime.docker import DockerRuntime

    runtime = DockerRuntime()
    if not runtime.available():
        click.echo(f"ℹ️  Docker not available. Pull manually with:\n   docker pull {outcome.mirror_image}")
        return True

    ok, error = runtime.pull(outcome.mirror_image)
    if not ok:
        click.secho(f"❌ docker pull {outcome.mirror_image} failed: {error}", fg="red")
        return False

    if tag_source:
        ok, error = runtime.tag(outcome.mirror_image, raw)
        if not ok:
            click.secho(f"❌ docker tag failed: {error}", fg="red")
            return False
        click.echo(f"🏷  Tagged as {raw}")
    return True


@click.command("sync")
@click.argument("images", nargs=-1, required=True)
@click.option("--no-pull", is_flag=True, help="Only mirror; do not docker pull afterwards")
@click.option("--tag-source", is_flag=True, help="Tag the pulled image with the original name")
@click.option("--deadline", type=click.FloatRange(min=1), default=None, help="Give up waiting after SECONDS")
@click.option("--quiet", "-q", is_flag=True, help="Only print the final result")
@click.option("--json", "as_json", is_flag=True, help="Output results as JSON (implies --no-pull)")
@click.pass_context
def sync(
    ctx: click.Context,
    images: Tuple[str, ...],
    no_pull: bool,
    tag_source: bool,
    deadline: Optional[float],
    quiet: bool,
    as_json: bool,
) -> None:
    """Mirror IMAGES through GitHub Actions and pull them from the mirror."""
    from ..engine.orchestrator import SyncOrchestrator
    from ..persistence.credential_store import CredentialStore

    references: Dict[str, ImageReference] = {}
    for raw in images:
        try:
            references[raw] = ImageReference.parse(raw)
        except InvalidReferenceError as e:
            raise click.BadParameter(str(e), param_hint="IMAGES")

    settings = load_settings()
    store = CredentialStore()

    try:
        if not settings.repo:
            ensure_repo(settings, ensure_logged_in(settings, store))
    except AuthError as e:
        click.secho(f"❌ Login failed: {e}", fg="red", err=True)
        raise SystemExit(EXIT_AUTH)
    except DockerSyncError as e:
        raise click.ClickException(str(e))

    orchestrator = SyncOrchestrator.from_settings(
        settings,
        store=store,
        presenter=present_device_code,
        deadline_seconds=deadline,
    )
    show_progress = not (quiet or as_json)
    many = len(references) > 1

    def run_one(raw: str) -> Tuple[str, Optional[SyncOutcome], Optional[DockerSyncError]]:
        reference = references[raw]
        prefix = f"[{raw}] " if many else ""

        def on_event(event: ProgressEvent) -> None:
            line = format_event(event, prefix)
            if show_progress and line:
                click.echo(line)

        if show_progress:
            click.echo(f"{prefix}🔍 Checking {orchestrator.mirror_image(reference)}")
        try:
            return raw, orchestrator.sync(reference, on_event=on_event), None
        except DockerSyncError as e:
            return raw, None, e

    try:
        with ThreadPoolExecutor(max_workers=min(MAX_PARALLEL_SYNCS, len(references))) as pool:
            results = list(pool.map(run_one, list(references)))
    finally:
        orchestrator.close()

    exit_code = EXIT_OK
    report: List[dict] = []
    for raw, outcome, error in results:
        if error is not None:
            exit_code = EXIT_AUTH if isinstance(error, AuthError) or exit_code == EXIT_AUTH else EXIT_FAILED
            report.append({"reference": raw, "status": "error", "error": str(error)})
            if not as_json:
                click.secho(f"❌ {raw}: {error}", fg="red", err=True)
            continue

        entry = outcome.to_dict()
        entry["input"] = raw
        report.append(entry)
        if not as_json:
            _echo_outcome(raw, outcome)

        if not outcome.ok:
            if exit_code == EXIT_OK:
                exit_code = EXIT_FAILED
            continue
        if not no_pull and not as_json:
            if not _pull(raw, outcome, tag_source) and exit_code == EXIT_OK:
                exit_code = EXIT_FAILED

    if as_json:
        click.echo(json.dumps(report, indent=2))

    if exit_code != EXIT_OK:
        raise SystemExit(exit_code)
