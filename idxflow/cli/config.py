"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from idxflow.core.config import DEFAULT_CONFIG_FILE, AppConfig, get_default_config_yaml, load_config

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or formatted text.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        click.echo(f"{key}: {value}")


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


def config_path_from(ctx: click.Context) -> Path:
    obj = ctx.find_root().obj or {}
    return obj.get("config_path") or DEFAULT_CONFIG_FILE


def get_config(ctx: click.Context) -> AppConfig:
    """Load configuration using the path given on the command line, if any."""
    return load_config(config_path_from(ctx))


@click.group()
def config() -> None:
    """Manage idxflow configuration."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing configuration file.")
@click.option("--issuer", help="Authorization server issuer URL")
@click.option("--client-id", help="OAuth2 client ID")
@click.option("--redirect-uri", help="Redirect URI registered for the client")
@click.option("--scope", "scopes", multiple=True, help="Scope to request (repeatable)")
@json_option
@click.pass_context
def config_init(
    ctx: click.Context,
    force: bool,
    issuer: str | None,
    client_id: str | None,
    redirect_uri: str | None,
    scopes: tuple[str, ...],
    output_json: bool,
) -> None:
    """Create a configuration file.

    Without options, writes the commented default template. With options,
    writes a file containing the given client settings.

    Examples:

        # Write the default template
        idxflow config init

        # Write client settings directly
        idxflow config init --issuer https://example.okta.com/oauth2/default \\
            --client-id 0oa123 --redirect-uri com.example:/callback
    """
    path = config_path_from(ctx)

    if path.exists() and not force:
        error_result(f"Configuration already exists at {path}. Use --force to overwrite.", output_json)

    if issuer or client_id or redirect_uri or scopes:
        app_config = AppConfig(config_path=path)
        app_config.client.issuer = issuer or ""
        app_config.client.client_id = client_id or ""
        app_config.client.redirect_uri = redirect_uri or ""
        if scopes:
            app_config.client.scopes = list(scopes)
        app_config.save(path)
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(get_default_config_yaml())

    if output_json:
        output_result({"status": "created", "path": str(path)}, as_json=True)
    else:
        click.echo(f"Configuration written to: {path}")


@config.command("show")
@json_option
@click.pass_context
def config_show(ctx: click.Context, output_json: bool) -> None:
    """Show the effective configuration (file plus environment)."""
    app_config = get_config(ctx)
    data = app_config.to_dict()
    if data["client"].get("client_secret"):
        data["client"]["client_secret"] = "[REDACTED]"

    if output_json:
        output_result(data, as_json=True)
        return

    for section, values in data.items():
        click.echo(f"{section}:")
        for key, value in values.items():
            click.echo(f"  {key}: {value}")

    missing = app_config.client.missing
    if missing:
        click.echo("")
        click.echo(f"Missing client settings: {', '.join(missing)}")


@config.command("path")
@click.pass_context
def config_path(ctx: click.Context) -> None:
    """Print the configuration file path."""
    click.echo(str(config_path_from(ctx)))
