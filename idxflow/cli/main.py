"""CLI entry point for idxflow."""

from pathlib import Path

import click

from idxflow import __version__
from idxflow.cli import config as config_commands
from idxflow.cli import signin as signin_commands


@click.group()
@click.version_option(version=__version__, prog_name="idxflow")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.yaml (default: ~/.idxflow/config.yaml).",
)
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    help="Override the configured protocol log level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """idxflow - Interaction Code Authentication Flow Client."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


cli.add_command(config_commands.config)
cli.add_command(signin_commands.signin)
