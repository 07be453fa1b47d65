"""Operator CLI for the dealer-contracts service."""

import click
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from typing import Optional

from .. import __version__
from ..config import settings
from ..contracts.exceptions import ContractError
from ..contracts.models import ContractStatus
from ..service import ContractServices

console = Console()

STATUS_COLORS = {
    "draft": "dim",
    "pending_signatures": "yellow",
    "partially_signed": "blue",
    "fully_signed": "cyan",
    "completed": "green",
    "cancelled": "red",
    "signed": "green",
    "declined": "red",
    "expired": "dim red",
    "viewed": "blue",
    "sent": "yellow",
}


def get_services(db_path: Optional[str] = None) -> ContractServices:
    """Build the services against the configured (or given) database."""
    return ContractServices.from_settings(settings, db_path=Path(db_path) if db_path else None)


def _colored(value: str) -> str:
    style = STATUS_COLORS.get(value, "")
    return f"[{style}]{value}[/{style}]" if style else value


def _fmt(dt) -> str:
    return dt.strftime("%Y-%m-%d %H:%M") if dt else "-"


@click.group()
@click.version_option(version=__version__, prog_name="dealer-contracts")
def cli():
    """Dealer Contracts - contract digitization and e-signature collection.

    \b
    Quick Start:
      dealer-contracts migrate                         # Create/upgrade the database
      dealer-contracts list -t <tenant>                # Contracts of a tenant
      dealer-contracts show -t <tenant> <contract-id>  # Signers and history
      dealer-contracts serve                           # Run the HTTP API
    """
    pass


@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def migrate(db_path: Optional[str]):
    """Run pending database migrations."""
    from ..storage.migrations import run_migrations

    path = db_path or settings.db_path
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    count = run_migrations(str(path))
    if count:
        console.print(f"[green]Applied {count} migration(s)[/green]")
    else:
        console.print("[dim]No pending migrations[/dim]")


@cli.command("list")
@click.option("--tenant", "-t", "tenant_id", required=True, help="Tenant ID")
@click.option("--status", "-s", type=click.Choice([s.value for s in ContractStatus]), help="Filter by status")
@click.option("--sale", "sale_id", help="Filter by sale ID")
@click.option("--lead", "lead_id", help="Filter by lead ID")
@click.option("--limit", "-n", default=50, help="Max contracts to show")
@click.option("--db", "db_path", help="Custom database path")
def list_contracts(
    tenant_id: str,
    status: Optional[str],
    sale_id: Optional[str],
    lead_id: Optional[str],
    limit: int,
    db_path: Optional[str],
):
    """List contracts for a tenant, newest first."""
    services = get_services(db_path)
    contracts = services.repository.list_contracts(
        tenant_id,
        sale_id=sale_id,
        lead_id=lead_id,
        status=ContractStatus(status) if status else None,
        limit=limit,
    )

    if not contracts:
        console.print("[yellow]No contracts found matching criteria.[/yellow]")
        return

    table = Table(title=f"Contracts ({len(contracts)}) - {tenant_id}")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan", max_width=30)
    table.add_column("Type")
    table.add_column("Status", justify="center")
    table.add_column("Signed", justify="right")
    table.add_column("Created")

    for contract in contracts:
        table.add_row(
            contract.id,
            contract.name[:30],
            contract.contract_type.value,
            _colored(contract.status.value),
            f"{contract.signed_count}/{len(contract.signatures)}",
            _fmt(contract.created_at),
        )

    console.print(table)


@cli.command()
@click.argument("contract_id")
@click.option("--tenant", "-t", "tenant_id", required=True, help="Tenant ID")
@click.option("--db", "db_path", help="Custom database path")
def show(contract_id: str, tenant_id: str, db_path: Optional[str]):
    """Show a contract with its signers and status history."""
    services = get_services(db_path)
    try:
        contract = services.repository.get(tenant_id, contract_id)
    except ContractError as e:
        raise click.ClickException(str(e))

    lines = [
        f"[bold]{contract.name}[/bold] ({contract.contract_type.value})",
        f"Status: {_colored(contract.status.value)}",
        f"Digitization: {contract.digitization.status.value} "
        f"({len(contract.digitization.signature_fields)} signature boxes)",
        f"Original: [cyan]{contract.original_document_url}[/cyan]",
    ]
    if contract.final_document_url:
        lines.append(f"Final: [green]{contract.final_document_url}[/green]")
    if contract.last_assembly_error:
        lines.append(f"[red]Last assembly error: {contract.last_assembly_error}[/red]")
    console.print(Panel.fit("\n".join(lines), title=contract.id))

    if contract.signatures:
        table = Table(title="Signers")
        table.add_column("Role")
        table.add_column("Name", style="cyan")
        table.add_column("Type")
        table.add_column("Status", justify="center")
        table.add_column("Signed")
        table.add_column("Expires")
        for sig in contract.signatures:
            table.add_row(
                sig.signer.value,
                sig.signer_name,
                sig.signature_type.value,
                _colored(sig.status.value),
                _fmt(sig.signed_at),
                _fmt(sig.expires_at),
            )
        console.print(table)

    if contract.status_history:
        history = Table(title="History")
        history.add_column("When")
        history.add_column("From")
        history.add_column("To")
        history.add_column("Reason", max_width=40)
        for change in contract.status_history:
            history.add_row(
                _fmt(change.changed_at),
                change.from_status.value,
                _colored(change.to_status.value),
                change.reason,
            )
        console.print(history)


@cli.command("sweep-expired")
@click.option("--db", "db_path", help="Custom database path")
def sweep_expired(db_path: Optional[str]):
    """Mark signing sessions past their expiry as expired."""
    services = get_services(db_path)
    count = services.sweeper.run_once()
    if count:
        console.print(f"[green]Expired {count} signing session(s)[/green]")
    else:
        console.print("[dim]No stale signing sessions[/dim]")


@cli.command("retry-completion")
@click.argument("contract_id")
@click.option("--tenant", "-t", "tenant_id", required=True, help="Tenant ID")
@click.option("--db", "db_path", help="Custom database path")
def retry_completion(contract_id: str, tenant_id: str, db_path: Optional[str]):
    """Re-run final assembly for a fully signed contract."""
    services = get_services(db_path)
    try:
        contract = services.completion.retry(tenant_id, contract_id)
    except ContractError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]Contract {contract.id} is {contract.status.value}[/green]")
    console.print(f"Final document: [cyan]{contract.final_document_url}[/cyan]")


@cli.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", default=None, type=int, help="Port")
def serve(host: Optional[str], port: Optional[int]):
    """Run the HTTP API."""
    import uvicorn
    from ..api.main import create_app

    uvicorn.run(create_app(), host=host or settings.host, port=port or settings.port)


if __name__ == "__main__":
    cli()
