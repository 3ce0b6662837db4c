"""
docker-sync — CLI Entry Point

Usage:
    docker-sync sync IMAGE... [--no-pull] [--tag-source] [--deadline SECONDS] [--quiet] [--json]
    docker-sync auth login|logout|status|token TOKEN
    docker-sync config show|set KEY VALUE|unset KEY
    python -m docker_sync.main sync nginx:alpine
"""

from __future__ import annotations

# Load .env FIRST, before anything reads DOCKER_SYNC_* variables
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

from typing import Optional

import click

from . import __version__
from .logging_config import setup_logging
from .cli.auth import auth
from .cli.config import config
from .cli.sync import sync


@click.group()
@click.option("-v", "--verbose", count=True, help="More log output (-v info, -vv debug)")
@click.version_option(__version__, prog_name="docker-sync")
@click.pass_context
def cli(ctx: click.Context, verbose: int) -> None:
    """docker-sync — Mirror public container images through GitHub Actions."""
    ctx.ensure_object(dict)

    level: Optional[str] = None
    if verbose >= 2:
        level = "DEBUG"
    elif verbose == 1:
        level = "INFO"
    setup_logging(level)
    ctx.obj["verbose"] = verbose


cli.add_command(sync)
cli.add_command(auth)
cli.add_command(config)


if __name__ == "__main__":
    cli()
