"""
Shared CLI helpers — settings loading, login prompt, and sync repo setup.
"""

from __future__ import annotations

import os
import sys
import webbrowser
from typing import Optional

import click

from ..auth.device_flow import DeviceFlowAuthenticator
from ..config.settings import Settings
from ..errors import ConfigurationError
from ..github.client import GitHubClient, build_http_client
from ..github.dispatcher import DEFAULT_REPO_NAME
from ..models.credentials import Credentials, DeviceSession
from ..persistence.credential_store import CredentialStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_AUTH = 2


def load_settings(environ: Optional[dict] = None) -> Settings:
    try:
        return Settings.load(environ=environ)
    except ConfigurationError as e:
        raise click.ClickException(str(e))


def _has_display() -> bool:
    if sys.platform.startswith("linux"):
        return bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))
    return True


def present_device_code(session: DeviceSession) -> None:
    """Show the device code and open the browser where there is one."""
    click.echo()
    click.secho("📋 Authorize docker-sync on GitHub:", fg="yellow")
    click.echo(f"  1. Open:        {click.style(session.verification_uri, fg='cyan')}")
    click.echo(f"  2. Enter code:  {click.style(session.user_code, fg='green', bold=True)}")
    click.echo()
    if _has_display():
        webbrowser.open(session.verification_uri)
    click.echo("⏳ Waiting for authorization...")


def build_authenticator(settings: Settings, store: CredentialStore) -> DeviceFlowAuthenticator:
    http = build_http_client(timeout=settings.http_timeout_seconds, proxy=settings.proxy)
    return DeviceFlowAuthenticator(settings.client_id, store, presenter=present_device_code, http=http)


def ensure_logged_in(settings: Settings, store: CredentialStore) -> Credentials:
    """Stored credentials if still usable, otherwise run the device flow."""
    credentials = store.load()
    if credentials is not None and credentials.is_valid():
        return credentials
    return build_authenticator(settings, store).login()


def ensure_repo(settings: Settings, credentials: Credentials) -> str:
    """
    Fill in ``settings.repo`` from the token owner and persist it.

    The repo owner is the mirror namespace, so it must be known before
    anything is probed.
    """
    if settings.repo:
        return settings.repo
    with GitHubClient(
        credentials.access_token,
        timeout=settings.http_timeout_seconds,
        proxy=settings.proxy,
    ) as gh:
        login = gh.get_user().login
    settings.repo = f"{login}/{DEFAULT_REPO_NAME}"

    # env overrides stay out of the file
    stored = load_settings(environ={})
    stored.repo = settings.repo
    stored.save()
    click.echo(f"📦 Sync repository: {settings.repo}")
    return settings.repo
