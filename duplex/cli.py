"""Command-line interface for Duplex Sync.

Commands:
- auth login: Sign in (device code by default, --browser for the PKCE flow)
- auth logout: Remove stored credentials
- auth status: Show who is signed in
- sync: Upload every changed conversation once
- run: Start the background agent
"""

import sys
from datetime import datetime
from typing import Optional

import click

from . import __version__
from .auth import LoginManager, SecureTokenStorage, WorkOSAuthClient
from .auth.workos_client import DeviceCodeResponse
from .config import Config, setup_logging

__all__ = ["cli", "main"]


def _login_manager(config: Config) -> LoginManager:
    client = WorkOSAuthClient(
        config.auth.resolve_client_id(),
        api_url=config.auth.workos_api_url,
    )
    return LoginManager(
        client,
        SecureTokenStorage(),
        browser_timeout=config.auth.browser_timeout_seconds,
    )


def _show_device_code(response: DeviceCodeResponse) -> None:
    click.echo()
    click.echo(f"  Your code: {click.style(response.user_code, bold=True)}")
    click.echo()
    click.echo(f"  Open {response.verification_uri} and enter the code,")
    click.echo(f"  or go directly to {response.verification_uri_complete}")
    click.echo()
    click.echo("Waiting for authorization...")


@click.group()
@click.version_option(__version__, prog_name="duplex")
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Duplex - sync coding agent conversations."""
    config = Config.load()
    if debug:
        config.debug_mode = True
    setup_logging(config.debug_mode)
    ctx.obj = config


@cli.group()
def auth() -> None:
    """Manage authentication."""


@auth.command()
@click.option("--browser", is_flag=True, help="Sign in through the browser instead of a device code.")
@click.pass_obj
def login(config: Config, browser: bool) -> None:
    """Sign in to Duplex."""
    manager = _login_manager(config)
    if browser:
        click.echo("Opening your browser to sign in...")
        state = manager.login_browser()
    else:
        state = manager.login_device(echo=_show_device_code)

    if not state.logged_in:
        raise click.ClickException(state.error or "Login failed")

    who = state.user_email or state.user_id
    click.echo(click.style(f"Signed in as {who}", fg="green"))
    if state.organization_id:
        click.echo(f"Organization: {state.organization_id}")


@auth.command()
@click.pass_obj
def logout(config: Config) -> None:
    """Remove stored credentials."""
    if not _login_manager(config).logout():
        raise click.ClickException("Could not remove stored credentials")
    click.echo("Signed out.")


@auth.command()
@click.pass_obj
def status(config: Config) -> None:
    """Show the signed-in account."""
    current = _login_manager(config).status()
    if current.error:
        raise click.ClickException(f"Cannot read credentials: {current.error}")
    if not current.logged_in:
        click.echo("Not signed in. Run 'duplex auth login'.")
        return

    click.echo(f"Signed in as {current.user_email or current.user_id}")
    if current.organization_id:
        click.echo(f"Organization: {current.organization_id}")
    expires = datetime.fromtimestamp(current.expires_at).strftime("%Y-%m-%d %H:%M:%S")
    if current.expired:
        click.echo(f"Access token expired at {expires} (it will refresh on next use)")
    else:
        click.echo(f"Access token valid until {expires}")


@cli.command()
@click.pass_obj
def sync(config: Config) -> None:
    """Upload every changed conversation once."""
    from .main import DuplexSyncApp

    with DuplexSyncApp(config) as app:
        synced = app.sync_once()
        counts = app.engine.status_counts()

    click.echo(f"Synced {synced} conversations")
    click.echo(
        f"complete: {counts.complete}  pending: {counts.pending}  "
        f"error: {counts.error}"
    )
    if counts.error:
        click.echo("Some files failed; check the log. Run 'duplex auth status' if uploads are rejected.")


@cli.command()
@click.pass_obj
def run(config: Config) -> None:
    """Run the background sync agent until interrupted."""
    from .main import run_agent

    if not run_agent(config):
        click.echo("Duplex Sync is already running.")


def main(argv: Optional[list[str]] = None) -> None:
    """Console entry point."""
    cli.main(args=argv, prog_name="duplex")


if __name__ == "__main__":
    main(sys.argv[1:])
