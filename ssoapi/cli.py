"""Command-line interface for the SSO service.

Runs one client operation per invocation against a service listening on a
Unix socket and prints the result as JSON.

Usage::

    ssoapi login a@b.com --password secret
    ssoapi accounts
    ssoapi --socket /tmp/sso.sock switch 1b2c3d
    ssoapi --verbose --json-logs active

"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, TypeVar

import typer

from ssoapi.ipc import (
    CALLBACK_TIMEOUT,
    SSO_SERVICE_PACKAGE,
    ClientConfig,
    Failure,
    Result,
    ServiceTarget,
    SsoApiClient,
    connect,
)
from ssoapi.logging_utils import configure_logging
from ssoapi.models import Account

# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    socket: Path | None = None
    package: str = SSO_SERVICE_PACKAGE
    timeout: float = CALLBACK_TIMEOUT
    verbose: bool = False
    json_logs: bool = False

    @property
    def target(self) -> ServiceTarget:
        """Service target derived from the package name."""
        return ServiceTarget(
            package=self.package,
            class_name=f"{self.package}.SsoService",
            action=f"{self.package}.SSO_SERVICE",
        )


app = typer.Typer(
    name="ssoapi",
    help="CLI client for the SSO service.",
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    ctx: typer.Context,
    socket: Annotated[Path | None, typer.Option("--socket", "-s", help="Service socket path")] = None,
    package: Annotated[str, typer.Option("--package", help="Service package name")] = SSO_SERVICE_PACKAGE,
    timeout: Annotated[float, typer.Option("--timeout", "-t", help="Operation timeout in seconds")] = CALLBACK_TIMEOUT,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")] = False,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Log as single-line JSON")] = False,
) -> None:
    """Configure the service target, timeouts and logging."""
    if timeout <= 0:
        raise typer.BadParameter("--timeout must be > 0")
    ctx.obj = _CliConfig(socket=socket, package=package, timeout=timeout, verbose=verbose, json_logs=json_logs)
    if verbose or json_logs:
        configure_logging(verbose=verbose, json_logs=json_logs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_json(data: object) -> None:
    """Print JSON to stdout."""
    typer.echo(json.dumps(data, default=str))


def _emit_failure(failure: Failure) -> None:
    """Write a Failure to stderr as JSON."""
    err = {"kind": failure.kind.value, "message": failure.message}
    typer.echo(json.dumps({"error": err}, default=str), err=True)


def _account_dict(account: Account) -> dict[str, object]:
    return dataclasses.asdict(account)


def _make_client(config: _CliConfig) -> SsoApiClient:
    return connect(config.socket, target=config.target, config=ClientConfig(callback_timeout=config.timeout))


T = TypeVar("T")


def _run(config: _CliConfig, op: Callable[[SsoApiClient], Awaitable[T]]) -> T:
    """Run *op* against a fresh client and release the Link afterwards."""

    async def _go() -> T:
        async with _make_client(config) as client:
            return await op(client)

    return asyncio.run(_go())


def _finish_account(result: Result[Account]) -> None:
    if isinstance(result, Failure):
        _emit_failure(result)
        raise typer.Exit(1)
    _print_json(_account_dict(result.value))


def _finish_none(result: Result[None]) -> None:
    if isinstance(result, Failure):
        _emit_failure(result)
        raise typer.Exit(1)
    _print_json({"ok": True})


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


_Password = Annotated[str, typer.Option("--password", "-p", prompt=True, hide_input=True, help="Account password")]


@app.command()
def login(ctx: typer.Context, mail: Annotated[str, typer.Argument(help="Account e-mail")], password: _Password) -> None:
    """Sign in and add the account to the service."""
    _finish_account(_run(ctx.obj, lambda c: c.login(mail, password)))


@app.command()
def register(
    ctx: typer.Context, mail: Annotated[str, typer.Argument(help="Account e-mail")], password: _Password
) -> None:
    """Create an account and sign it in."""
    _finish_account(_run(ctx.obj, lambda c: c.register(mail, password)))


@app.command("fetch-token")
def fetch_token(
    ctx: typer.Context, mail: Annotated[str, typer.Argument(help="Account e-mail")], password: _Password
) -> None:
    """Fetch a session token without adding the account to the service."""
    _finish_account(_run(ctx.obj, lambda c: c.fetch_token(mail, password)))


@app.command("account-info")
def account_info(
    ctx: typer.Context,
    guid: Annotated[str, typer.Argument(help="Account guid")],
    token: Annotated[str, typer.Option("--token", prompt=True, hide_input=True, help="Session token")],
) -> None:
    """Fetch account details for an existing session."""
    _finish_account(_run(ctx.obj, lambda c: c.fetch_account_info(guid, token)))


@app.command()
def logout(ctx: typer.Context, guid: Annotated[str, typer.Argument(help="Account guid")]) -> None:
    """Sign out one account."""
    _finish_none(_run(ctx.obj, lambda c: c.logout(guid)))


@app.command("logout-all")
def logout_all(ctx: typer.Context) -> None:
    """Sign out every account."""
    _finish_none(_run(ctx.obj, lambda c: c.logout_all()))


@app.command("switch")
def switch(ctx: typer.Context, guid: Annotated[str, typer.Argument(help="Account guid")]) -> None:
    """Make an account the active one."""
    _finish_none(_run(ctx.obj, lambda c: c.switch_account(guid)))


@app.command()
def active(ctx: typer.Context) -> None:
    """Show the active account (``null`` when there is none)."""
    account = _run(ctx.obj, lambda c: c.get_active_account())
    _print_json(_account_dict(account) if account is not None else None)


@app.command()
def accounts(ctx: typer.Context) -> None:
    """List every signed-in account."""
    result = _run(ctx.obj, lambda c: c.get_all_accounts())
    _print_json([_account_dict(a) for a in result])
