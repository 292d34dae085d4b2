"""CLI entry point for services-auth."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .config import Config, load_config
from .oauth.debug import debug_set_token
from .oauth.errors import (
    InvalidURLError,
    NotInitializedError,
    ServicesAuthError,
    WrongStateError,
)
from .oauth.manager import ServicesAuthManager
from .oauth.store import ServiceTokenLog
from .oauth.tokens import InvalidServiceTokenError, ServiceToken
from .output import OutputHandler, service_token_summary

logger = logging.getLogger("svcauth")

RESTART_HELP = "Start a new flow with 'svcauth login AUTH_URL'."


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, verbose: bool) -> None:
    """services-auth - Obtain service tokens from a services authorization server."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> Config | NoReturn:
    """Get config from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_config(ctx.obj["env_path"])
    except ValueError as e:
        output.error(e, error_type="ConfigError", help_text="Fix the variable in your environment or .env file.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error


def build_manager(config: Config) -> ServicesAuthManager:
    """Create a manager backed by the configured token log."""
    return ServicesAuthManager(
        ServiceTokenLog(store_dir=config.store_dir),
        http_timeout=config.http_timeout,
        push_timeout=config.push_timeout,
    )


@main.command()
@click.argument("auth_url")
@click.option("--callback-url", help="Redirect URL received after authorization (prompted if omitted)")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL without opening a browser")
@click.pass_context
def login(ctx: click.Context, auth_url: str, callback_url: str | None, no_browser: bool) -> None:
    """Authorize against AUTH_URL and store the issued service token."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    manager = build_manager(config)

    try:
        result = manager.init_flow(auth_url)
    except InvalidURLError as e:
        output.error(e, help_text="Use an http(s) URL such as https://services.example.com")
        return

    if not result.secure_url:
        output.warning("The authorization server does not use HTTPS.")

    output.info(f"Open this URL to authorize:\n{result.url}")
    if not no_browser and not webbrowser.open(result.url):
        output.info("Could not open browser. Please open the URL manually.")

    if callback_url is None:
        callback_url = click.prompt("Redirect URL", err=True)

    try:
        token_id = asyncio.run(manager.complete_flow(callback_url))
    except (WrongStateError, NotInitializedError) as e:
        output.error(e, help_text=RESTART_HELP)
        return
    except ServicesAuthError as e:
        output.error(e)
        return

    output.success({"token_id": token_id}, f"Stored service token {token_id}")


@main.command()
@click.pass_context
def tokens(ctx: click.Context) -> None:
    """List stored service tokens."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    manager = build_manager(config)

    async def collect() -> list[ServiceToken]:
        return [token async for token in manager.list_tokens()]

    try:
        stored = asyncio.run(collect())
    except ServicesAuthError as e:
        output.error(e, help_text="The token log could not be read. Remove it to start over.")
        return

    if ctx.obj["json_mode"]:
        output.success([service_token_summary(t) for t in stored])
        return

    if not stored:
        output.info("No service tokens stored.")
        return

    rows = [
        [
            t.token_id[:16],
            t.authentication_url,
            ", ".join(f"{s.service_type}={s.service_endpoint}" for s in t.supported_services),
        ]
        for t in stored
    ]
    output.table(["TOKEN ID", "AUTH URL", "SERVICES"], rows)


@main.group(hidden=True)
def debug() -> None:
    """Debug commands (bypass the authorization flow)."""


@debug.command("set-token")
@click.argument("auth_url")
@click.argument("access_token")
@click.option("--service", "-s", "services", multiple=True, required=True, help="Supported service as TYPE=ENDPOINT")
@click.pass_context
def debug_set_token_cmd(ctx: click.Context, auth_url: str, access_token: str, services: tuple[str, ...]) -> None:
    """Store ACCESS_TOKEN for AUTH_URL without running the flow."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    mapping: dict[str, str] = {}
    for entry in services:
        service_type, sep, endpoint = entry.partition("=")
        if not sep or not service_type or not endpoint:
            raise click.BadParameter(f"expected TYPE=ENDPOINT, got {entry!r}", param_hint="--service")
        mapping[service_type] = endpoint

    store = ServiceTokenLog(store_dir=config.store_dir)
    payload = {"access_token": access_token, "services": mapping}

    try:
        token_id = asyncio.run(debug_set_token(store, auth_url, payload))
    except (InvalidServiceTokenError, ServicesAuthError) as e:
        output.error(e)
        return

    output.success({"token_id": token_id}, f"Stored service token {token_id}")


if __name__ == "__main__":
    main()
