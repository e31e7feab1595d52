"""CLI entrypoint for the Yeil token client."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, TypeVar

import typer

from . import formatter
from .addresses import AddressResolver
from .cache import CacheKey
from .exceptions import ReadError, WriteError, YeilClientError
from .lifecycle import TransactionLifecycle, TxStatus
from .logger import setup_logging
from .session import TokenSession
from .settings import ClientSettings

T = TypeVar("T")

app = typer.Typer(
    add_completion=False,
    no_args_is_help=False,
    add_help_option=True,
    pretty_exceptions_enable=True,
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
    help="Read and manage the Yeil proof-of-reserve token across networks.",
)


def _settings(ctx: typer.Context) -> ClientSettings:
    settings = ctx.obj
    if not isinstance(settings, ClientSettings):
        raise typer.BadParameter("settings were not initialised")
    return settings


def _run(coro: Awaitable[T]) -> T:
    """Run a coroutine, turning client errors into a readable exit."""
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except ReadError as exc:
        formatter.console.print(f"[red]Data unavailable:[/] {exc.message}. Retry later.")
        raise typer.Exit(code=1) from exc
    except WriteError as exc:
        formatter.console.print(f"[red]{type(exc).__name__}:[/] {exc.message}")
        raise typer.Exit(code=1) from exc
    except YeilClientError as exc:
        formatter.console.print(f"[red]Error:[/] {exc.message}")
        raise typer.Exit(code=1) from exc


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to a TOML config file (can include [yeil_client] table).",
        ),
    ] = None,
    network_id: Annotated[
        int | None,
        typer.Option("--network", "-n", help="Network (chain) id to use."),
    ] = None,
    rpc_url: Annotated[
        str | None,
        typer.Option("--rpc", help="RPC endpoint for the selected network."),
    ] = None,
    account: Annotated[
        str | None,
        typer.Option("--account", "-a", help="Account to read balances for."),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Override logging verbosity (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).",
        ),
    ] = None,
    show_config: Annotated[
        bool,
        typer.Option(
            "--show-config",
            help="Print effective config (with secrets redacted) and exit.",
        ),
    ] = False,
):
    """Load configuration shared by every command."""
    if config_path:
        os.environ["YEIL_CONFIG"] = str(config_path)

    init_kwargs: dict[str, int | str] = {}
    if network_id is not None:
        init_kwargs["network_id"] = network_id
    if account is not None:
        init_kwargs["account"] = account
    if log_level is not None:
        init_kwargs["log_level"] = log_level.upper()

    settings = ClientSettings(**init_kwargs)
    if rpc_url is not None:
        settings.rpc_urls[settings.network_id] = rpc_url

    setup_logging(settings.log_level)

    if show_config:
        typer.echo(json.dumps(settings.as_safe_dict(), indent=2, default=str))
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)

    ctx.obj = settings


@app.command()
def networks(ctx: typer.Context):
    """List networks with a complete deployment."""
    settings = _settings(ctx)
    resolver = AddressResolver.from_overrides(settings.address_overrides)
    formatter.print_networks(resolver, settings.rpc_urls)


@app.command()
def info(ctx: typer.Context):
    """Show token metadata, supply, reserves and backing status."""
    settings = _settings(ctx)

    async def run() -> None:
        session = TokenSession.from_settings(settings)
        try:
            snapshot = await session.refresh_token()
        finally:
            await session.close()
        formatter.print_token(snapshot, settings.display_precision)

    _run(run())


@app.command()
def balance(
    ctx: typer.Context,
    account: Annotated[
        str | None, typer.Argument(help="Account to query (defaults to --account).")
    ] = None,
    snapshot_id: Annotated[
        int | None, typer.Option("--snapshot-id", help="Read at a snapshot.")
    ] = None,
):
    """Show an account balance, optionally at a snapshot."""
    settings = _settings(ctx)

    async def run() -> None:
        session = TokenSession.from_settings(settings)
        try:
            snapshot = await session.refresh_token()
            record = await session.refresh_balance(account, snapshot_id)
        finally:
            await session.close()
        formatter.print_amount(
            "Balance", record, snapshot.symbol, snapshot_id=snapshot_id
        )

    _run(run())


@app.command()
def allowance(
    ctx: typer.Context,
    spender: Annotated[str, typer.Argument(help="Spender address.")],
    owner: Annotated[
        str | None, typer.Option("--owner", help="Owner (defaults to --account).")
    ] = None,
):
    """Show how much a spender may move on behalf of an owner."""
    settings = _settings(ctx)

    async def run() -> None:
        session = TokenSession.from_settings(settings)
        try:
            snapshot = await session.refresh_token()
            record = await session.refresh_allowance(spender, owner)
        finally:
            await session.close()
        formatter.print_amount("Allowance", record, snapshot.symbol)

    _run(run())


@app.command("supply-at")
def supply_at(
    ctx: typer.Context,
    snapshot_id: Annotated[int, typer.Argument(help="Snapshot id.")],
):
    """Show total supply recorded at a snapshot."""
    settings = _settings(ctx)

    async def run() -> None:
        session = TokenSession.from_settings(settings)
        try:
            snapshot = await session.refresh_token()
            record = await session.refresh_supply_at(snapshot_id)
        finally:
            await session.close()
        formatter.print_amount(
            "Total supply", record, snapshot.symbol, snapshot_id=snapshot_id
        )

    _run(run())


# ----------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------
WaitOption = Annotated[
    bool,
    typer.Option("--wait/--no-wait", help="Wait for confirmation and refresh."),
]


def _write(
    settings: ClientSettings,
    submit: Callable[[TokenSession], Awaitable[TransactionLifecycle]],
    wait: bool,
) -> None:
    async def run() -> None:
        session = TokenSession.from_settings(settings)
        try:
            await session.refresh_token()
            lifecycle = await submit(session)
            formatter.print_transaction(lifecycle)
            if not wait:
                return

            report = await session.wait(lifecycle)
            formatter.print_transaction(lifecycle)
            formatter.print_refresh(report)

            snapshot_id = session.snapshot_id(lifecycle)
            if snapshot_id is not None:
                formatter.console.print(f"[bold]New snapshot id:[/] {snapshot_id}")
            _print_refreshed(session)
            if lifecycle.status is TxStatus.FAILED:
                raise typer.Exit(code=1)
        finally:
            await session.close()

    _run(run())


def _print_refreshed(session: TokenSession) -> None:
    account = session.context.account
    snapshot = session.token()
    if not account or snapshot is None:
        return
    record = session.cache.get(CacheKey.balance(session.context.network_id, account))
    if record is not None:
        formatter.print_amount("Your balance", record, snapshot.symbol)


@app.command()
def transfer(
    ctx: typer.Context,
    to: Annotated[str, typer.Argument(help="Recipient address.")],
    amount: Annotated[str, typer.Argument(help="Amount in token units, e.g. 1.5")],
    wait: WaitOption = True,
):
    """Transfer tokens from the signing account."""
    _write(_settings(ctx), lambda s: s.transfer(to, amount), wait)


@app.command()
def approve(
    ctx: typer.Context,
    spender: Annotated[str, typer.Argument(help="Spender address.")],
    amount: Annotated[str, typer.Argument(help="Amount in token units.")],
    wait: WaitOption = True,
):
    """Approve a spender."""
    _write(_settings(ctx), lambda s: s.approve(spender, amount), wait)


@app.command("transfer-from")
def transfer_from(
    ctx: typer.Context,
    owner: Annotated[str, typer.Argument(help="Address tokens are taken from.")],
    to: Annotated[str, typer.Argument(help="Recipient address.")],
    amount: Annotated[str, typer.Argument(help="Amount in token units.")],
    wait: WaitOption = True,
):
    """Move tokens using an allowance."""
    _write(_settings(ctx), lambda s: s.transfer_from(owner, to, amount), wait)


@app.command()
def mint(
    ctx: typer.Context,
    to: Annotated[str, typer.Argument(help="Recipient address.")],
    amount: Annotated[str, typer.Argument(help="Amount in token units.")],
    wait: WaitOption = True,
):
    """Mint tokens (contract owner only)."""
    _write(_settings(ctx), lambda s: s.mint(to, amount), wait)


@app.command()
def burn(
    ctx: typer.Context,
    owner: Annotated[str, typer.Argument(help="Address to burn from.")],
    amount: Annotated[str, typer.Argument(help="Amount in token units.")],
    wait: WaitOption = True,
):
    """Burn tokens (contract owner only)."""
    _write(_settings(ctx), lambda s: s.burn(owner, amount), wait)


@app.command()
def snapshot(ctx: typer.Context, wait: WaitOption = True):
    """Record a balance snapshot (contract owner only)."""
    _write(_settings(ctx), lambda s: s.snapshot(), wait)


def run() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    run()
