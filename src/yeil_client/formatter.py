"""Rich console output for the CLI."""

from __future__ import annotations

from collections.abc import Mapping

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .addresses import AddressResolver
from .constants import NETWORK_NAMES
from .lifecycle import TransactionLifecycle, TxStatus
from .refresh import RefreshReport
from .types import BalanceRecord, TokenSnapshot

console = Console()

_STATUS_STYLES = {
    TxStatus.IDLE: "dim",
    TxStatus.SUBMITTED: "yellow",
    TxStatus.CONFIRMING: "yellow",
    TxStatus.CONFIRMED: "green",
    TxStatus.FAILED: "red",
}


def network_label(network_id: int) -> str:
    name = NETWORK_NAMES.get(network_id)
    return f"{name} ({network_id})" if name else str(network_id)


def _truncate_address(address: str) -> str:
    """Truncate address for display."""
    return f"{address[:10]}...{address[-4:]}"


def print_networks(resolver: AddressResolver, rpc_urls: Mapping[int, str]) -> None:
    table = Table(title="Supported networks")
    table.add_column("Network", style="cyan")
    table.add_column("Token")
    table.add_column("Proof of reserve")
    table.add_column("RPC", style="dim")

    for network_id in resolver.supported_networks():
        record = resolver.addresses_for(network_id)
        assert record is not None
        table.add_row(
            network_label(network_id),
            record.token_contract,
            record.oracle_contract,
            rpc_urls.get(network_id, "-"),
        )
    console.print(table)


def print_token(snapshot: TokenSnapshot, precision: int | None = None) -> None:
    """Print token metadata and backing status as a panel."""
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Key", style="dim")
    table.add_column("Value", style="cyan")
    table.add_row("Network", network_label(snapshot.network_id))
    table.add_row("Name", snapshot.name)
    table.add_row("Symbol", snapshot.symbol)
    table.add_row("Decimals", str(snapshot.decimals))
    table.add_row(
        "Total supply", f"{snapshot.format(snapshot.total_supply, precision)}"
    )
    table.add_row(
        "Verified reserves",
        f"{snapshot.format(snapshot.verified_reserves, precision)}",
    )
    table.add_row("Reserve feed", _truncate_address(snapshot.oracle_address))

    backed = (
        Text("FULLY BACKED", style="bold green")
        if snapshot.is_fully_backed
        else Text("UNDER-COLLATERALISED", style="bold red")
    )
    console.print(
        Panel(
            Group(table, Text(""), backed),
            title=f"[bold]{snapshot.symbol}[/]",
            border_style="green" if snapshot.is_fully_backed else "red",
        )
    )


def print_amount(
    label: str,
    record: BalanceRecord,
    symbol: str | None = None,
    snapshot_id: int | None = None,
) -> None:
    suffix = f" {symbol}" if symbol else ""
    at = f" @ snapshot {snapshot_id}" if snapshot_id is not None else ""
    console.print(f"[dim]{label}{at}:[/] [bold cyan]{record.formatted}{suffix}[/]")
    console.print(f"[dim]raw: {record.raw}[/]")


def print_transaction(lifecycle: TransactionLifecycle) -> None:
    state = lifecycle.state
    style = _STATUS_STYLES[state.status]
    console.print(
        f"[bold]{lifecycle.call.function}[/] on {network_label(lifecycle.call.network_id)}: "
        f"[{style}]{state.status.value}[/]"
    )
    if state.tx_hash:
        console.print(f"[dim]hash:[/] {state.tx_hash}")
    if state.reason:
        console.print(f"[red]reason:[/] {state.reason}")
    if lifecycle.receipt is not None and state.status is TxStatus.CONFIRMED:
        console.print(f"[dim]block:[/] {lifecycle.receipt.get('blockNumber')}")


def print_refresh(report: RefreshReport | None) -> None:
    if report is None:
        return
    if report.ok:
        console.print(f"[green]Refreshed {len(report.refreshed)} value(s)[/]")
        return
    for key, error in report.failed.items():
        console.print(
            f"[yellow]Could not refresh {key.kind.value}[/] ({error}); data may be stale"
        )
