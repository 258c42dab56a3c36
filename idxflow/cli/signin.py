"""Interactive sign-in command.

Walks whatever remediation steps the server asks for, prompting for each
form field, until a token is issued.
"""

from __future__ import annotations

import asyncio
from typing import Any

import click

from idxflow.cli.config import error_result, get_config, json_option, output_result
from idxflow.core.idx import (
    Field,
    HTTPTransport,
    IDXAuthenticationFlow,
    IDXFlowError,
    InternalError,
    InvalidContext,
    InvalidRedirectUrl,
    RedirectResult,
    RemediationOption,
    Response,
    Token,
)
from idxflow.core.logging import configure_logging

REDIRECT_IDP = "redirect-idp"


def _show_messages(response: Response) -> None:
    for message in response.messages:
        prefix = "Error" if message.is_error else "Note"
        click.echo(f"{prefix}: {message.text}", err=True)


def _choose_remediation(response: Response) -> RemediationOption:
    """Pick the next step. Messages for the response are shown by the caller first."""
    options = list(response.remediations)
    if not options:
        raise click.ClickException("Sign-in cannot continue: the server offered no further steps")
    if len(options) == 1:
        return options[0]

    names = [option.name for option in options]
    choice = click.prompt("Choose a step", type=click.Choice(names), default=names[0])
    return response.remediations[choice]


def _collect_values(option: RemediationOption, identifier: str | None) -> dict[str, Any]:
    """Prompt for every field the user is allowed to fill in."""
    values: dict[str, Any] = {}
    for name, fld, required in option.iter_fields():
        if name == "identifier" and identifier:
            values[name] = identifier
        else:
            _prompt_field(values, name, fld, required)
    return values


def _prompt_field(values: dict[str, Any], name: str, fld: Field, required: bool) -> None:
    if not fld.mutable or not fld.visible:
        return
    label = fld.label or name

    if fld.options:
        labels = [o.label for o in fld.options]
        values[name] = click.prompt(label, type=click.Choice(labels), default=labels[0])
        chosen = fld.selected(values[name])
        # The chosen option may ask for more, e.g. a phone method type
        for sub in chosen.form if chosen is not None else ():
            if sub.name and sub.value is None:
                _prompt_field(values, f"{name}.{sub.name}", sub, sub.required)
    elif fld.type == "boolean":
        values[name] = click.confirm(label, default=bool(fld.value))
    else:
        value = click.prompt(
            label,
            hide_input=fld.secret,
            default=None if required else "",
            show_default=False,
        )
        if value:
            values[name] = value


async def _follow_redirect(flow: IDXAuthenticationFlow, option: RemediationOption) -> Token | Response:
    click.echo(f"Continue signing in with your identity provider: {option.href}", err=True)
    redirect_url = click.prompt("Paste the URL you were redirected to")

    result = flow.redirect_result(redirect_url)
    if result == RedirectResult.AUTHENTICATED:
        return await flow.exchange_code_async(redirect_url)
    if result == RedirectResult.REMEDIATION_REQUIRED:
        return await flow.resume_async()
    if result == RedirectResult.INVALID_REDIRECT_URL:
        raise InvalidRedirectUrl()
    raise InvalidContext("Redirect does not belong to this sign-in attempt")


async def run_signin(
    flow: IDXAuthenticationFlow,
    identifier: str | None = None,
    options: dict[str, str] | None = None,
) -> Token:
    """Drive the flow interactively until a token is issued."""
    response = await flow.start_async(options)

    while not response.is_login_successful:
        _show_messages(response)
        option = _choose_remediation(response)

        if option.name == REDIRECT_IDP:
            outcome = await _follow_redirect(flow, option)
            if isinstance(outcome, Token):
                return outcome
            response = outcome
            continue

        response = await option.proceed_async(_collect_values(option, identifier))

    return await response.exchange_code_async()


def _token_summary(token: Token) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "token_type": token.token_type,
        "expires_in": token.expires_in,
        "scope": token.scope,
        "has_refresh_token": token.refresh_token is not None,
    }
    try:
        claims = token.claims
    except InternalError:
        claims = {}
    if claims.get("sub"):
        summary["subject"] = claims["sub"]
    return summary


@click.command("signin")
@click.option("--identifier", "-u", help="Username to identify with")
@click.option("--recovery-token", help="Recovery token to start the flow with")
@click.option("--state", help="Custom state value for the interact request")
@json_option
@click.pass_context
def signin(
    ctx: click.Context,
    identifier: str | None,
    recovery_token: str | None,
    state: str | None,
    output_json: bool,
) -> None:
    """Sign in through the Identity Engine interaction code flow.

    The steps presented depend entirely on the server's sign-on policy.

    Examples:

        # Sign in, prompting for everything
        idxflow signin

        # Supply the username up front and print tokens as JSON
        idxflow signin -u alice@example.com --json
    """
    app_config = get_config(ctx)
    obj = ctx.find_root().obj or {}

    protocol_logger = configure_logging(
        level=obj.get("log_level") or app_config.logging.level,
        trace_enabled=app_config.logging.trace_enabled,
        log_file=app_config.logging.log_file,
    )

    try:
        client_config = app_config.client.to_client_config()
    except ValueError as e:
        error_result(f"{e}. Run 'idxflow config init' to create a configuration.", output_json)

    transport = obj.get("transport")
    owned_transport = None
    if transport is None:
        owned_transport = HTTPTransport(
            protocol_logger=protocol_logger,
            timeout=app_config.http.timeout,
            verify=app_config.http.verify_ssl,
        )
        transport = owned_transport

    options: dict[str, str] = {}
    if state:
        options["state"] = state
    if recovery_token:
        options["recovery_token"] = recovery_token

    flow = IDXAuthenticationFlow(client_config, transport=transport, protocol_logger=protocol_logger)
    try:
        token = asyncio.run(run_signin(flow, identifier, options))
    except click.ClickException as e:
        error_result(e.message, output_json)
    except IDXFlowError as e:
        error_result(f"{type(e).__name__}: {e}", output_json)
    finally:
        if owned_transport is not None:
            owned_transport.close()

    if output_json:
        output_result(token.to_dict(), as_json=True)
        return

    click.echo("Signed in successfully!")
    output_result(_token_summary(token))
