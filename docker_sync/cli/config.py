"""
CLI config commands — view and edit the settings file.

Usage:
    docker-sync config show [--json]
    docker-sync config set mirror_host ghcr.nju.edu.cn
    docker-sync config unset proxy
"""

from __future__ import annotations

import json
import os

import click
from pydantic import ValidationError

from ..config.settings import ENV_OVERRIDES, Settings
from .common import load_settings


def _require_known_key(key: str) -> str:
    key = key.replace("-", "_")
    if key not in Settings.model_fields:
        known = ", ".join(sorted(Settings.model_fields))
        raise click.BadParameter(f"Unknown setting '{key}'. Known settings: {known}", param_hint="KEY")
    return key


@click.group("config")
def config() -> None:
    """Show or change docker-sync settings."""


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def config_show(as_json: bool) -> None:
    """Show effective settings (file plus environment overrides)."""
    settings = load_settings()
    data = settings.model_dump()

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    overridden = {field for env, field in ENV_OVERRIDES.items() if os.environ.get(env)}
    click.echo(f"\n⚙️  Settings ({Settings.default_path()})\n")
    for key, value in data.items():
        line = f"  {key:30} {value if value is not None else '(not set)'}"
        if key in overridden:
            line += click.style("  [env]", fg="cyan")
        click.echo(line)
    click.echo()


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set KEY to VALUE in the settings file."""
    key = _require_known_key(key)
    stored = load_settings(environ={})

    data = stored.model_dump(exclude_none=True)
    data[key] = value
    try:
        updated = Settings(**data)
    except ValidationError as e:
        raise click.BadParameter(str(e.errors()[0]["msg"]), param_hint="VALUE")

    path = updated.save()
    click.secho(f"✓ {key} = {getattr(updated, key)}  ({path})", fg="green")


@config.command("unset")
@click.argument("key")
def config_unset(key: str) -> None:
    """Reset KEY to its default."""
    key = _require_known_key(key)
    stored = load_settings(environ={})

    data = stored.model_dump(exclude_none=True)
    data.pop(key, None)
    updated = Settings(**data)

    path = updated.save()
    default = getattr(updated, key)
    click.secho(f"✓ {key} reset to {default if default is not None else '(not set)'}  ({path})", fg="green")
