"""Root CLI group, version flag and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from switchboard import __version__
from switchboard.commands.chat import chat
from switchboard.commands.history import history
from switchboard.config import ConfigError, LoggingConfig, load_config

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(settings: LoggingConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.level)
    logging.basicConfig(level=level, format=_LOG_FORMAT, filename=settings.file)


@click.group()
@click.version_option(version=__version__, prog_name="switchboard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to switchboard.yaml (default: ./switchboard.yaml if present).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Switchboard - drive an agent CLI over its stream-json protocol."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    _configure_logging(config.logging, verbose)
    ctx.obj = {"config": config}


cli.add_command(chat)
cli.add_command(history)
