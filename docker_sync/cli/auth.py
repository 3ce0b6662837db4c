"""
CLI auth commands — GitHub login state.

Usage:
    docker-sync auth login
    docker-sync auth status [--verify]
    docker-sync auth token ghp_xxx
    docker-sync auth logout
"""

from __future__ import annotations

import logging

import click
import httpx

from ..errors import AuthError, GitHubAPIError
from ..github.client import GitHubClient
from ..models.credentials import REQUESTED_SCOPES, Credentials
from ..persistence.credential_store import CredentialStore
from .common import EXIT_AUTH, build_authenticator, ensure_repo, load_settings

logger = logging.getLogger(__name__)


@click.group("auth")
def auth() -> None:
    """Log in to GitHub and inspect the stored token."""


@auth.command("login")
def auth_login() -> None:
    """Log in with the GitHub device flow."""
    settings = load_settings()
    store = CredentialStore()

    click.echo("🔐 Connecting to GitHub...")
    try:
        credentials = build_authenticator(settings, store).login()
    except AuthError as e:
        click.secho(f"❌ Login failed: {e}", fg="red", err=True)
        raise SystemExit(EXIT_AUTH)

    click.secho("✅ Logged in", fg="green")
    missing = credentials.missing_scopes()
    if missing:
        click.secho(f"⚠️  Token lacks scopes: {', '.join(sorted(missing))}", fg="yellow")

    try:
        ensure_repo(settings, credentials)
    except (GitHubAPIError, httpx.HTTPError) as e:
        click.secho(f"⚠️  Could not look up your GitHub account: {e}", fg="yellow")


@auth.command("logout")
def auth_logout() -> None:
    """Forget the stored token."""
    if CredentialStore().clear():
        click.echo("👋 Logged out")
    else:
        click.echo("Not logged in.")


@auth.command("status")
@click.option("--verify", is_flag=True, help="Check the token against GitHub")
def auth_status(verify: bool) -> None:
    """Show the stored token and its scopes."""
    settings = load_settings()
    credentials = CredentialStore().load()

    if credentials is None:
        click.echo("Not logged in. Run: docker-sync auth login")
        raise SystemExit(EXIT_AUTH)

    click.echo("\n🔐 GitHub Authentication\n")
    click.echo(f"  Token:      {credentials.masked_token()}")
    click.echo(f"  Scopes:     {', '.join(sorted(credentials.scopes)) or '(none)'}")
    click.echo(f"  Obtained:   {credentials.obtained_at.isoformat()[:19]}")
    if credentials.expires_at:
        click.echo(f"  Expires:    {credentials.expires_at.isoformat()[:19]}")
    click.echo(f"  Repository: {settings.repo or '(not set)'}")

    valid = credentials.is_valid()
    if credentials.is_expired():
        click.secho("  ❌ Token expired", fg="red")
    elif not valid:
        missing = ", ".join(sorted(credentials.missing_scopes()))
        click.secho(f"  ❌ Missing scopes: {missing}", fg="red")

    if verify and valid:
        try:
            with GitHubClient(
                credentials.access_token,
                timeout=settings.http_timeout_seconds,
                proxy=settings.proxy,
            ) as gh:
                user = gh.get_user()
            click.secho(f"  ✅ Verified as {user.login}", fg="green")
        except GitHubAPIError as e:
            click.secho(f"  ❌ GitHub rejected the token: {e}", fg="red")
            valid = False
        except httpx.HTTPError as e:
            raise click.ClickException(f"Could not reach GitHub: {e}")

    click.echo()
    if not valid:
        raise SystemExit(EXIT_AUTH)


@auth.command("token")
@click.argument("token")
def auth_token(token: str) -> None:
    """Store a personal access token instead of using the device flow."""
    settings = load_settings()

    try:
        with GitHubClient(token, timeout=settings.http_timeout_seconds, proxy=settings.proxy) as gh:
            user = gh.get_user()
    except GitHubAPIError as e:
        click.secho(f"❌ GitHub rejected the token: {e}", fg="red", err=True)
        raise SystemExit(EXIT_AUTH)
    except httpx.HTTPError as e:
        raise click.ClickException(f"Could not reach GitHub: {e}")

    scopes = user.scopes
    if not user.scopes_reported:
        # fine-grained tokens carry permissions, not scopes
        logger.warning("[auth] Token reports no scopes; assuming it was granted the required permissions")
        scopes = set(REQUESTED_SCOPES)

    credentials = Credentials(access_token=token, scopes=scopes)
    CredentialStore().save(credentials)
    click.secho(f"✅ Token stored for {user.login}", fg="green")

    missing = credentials.missing_scopes()
    if missing:
        click.secho(f"⚠️  Token lacks scopes: {', '.join(sorted(missing))}", fg="yellow")

    if not settings.repo:
        ensure_repo(settings, credentials)
