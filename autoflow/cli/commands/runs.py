"""autoflow runs: List runs from the ledger database."""

import asyncio
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from autoflow.config import config
from autoflow.types import RunStatus

console = Console()

_STATUS_COLOR = {"completed": "green", "failed": "red", "running": "yellow", "pending": "yellow"}


async def _list(database_url: str, tenant_id: str, status: Optional[RunStatus], limit: int) -> list:
    from autoflow.core.ledger import RunLedger
    from autoflow.db.database import init_db, make_engine, make_session_factory
    from autoflow.db.repository import Repository

    engine = make_engine(database_url)
    try:
        await init_db(engine)
        ledger = RunLedger(repository=Repository(make_session_factory(engine)))
        return await ledger.list_runs(tenant_id, status=status, limit=limit)
    finally:
        await engine.dispose()


def list_runs(
    tenant_id: str = typer.Option(..., "--tenant", help="Tenant id"),
    status: Optional[RunStatus] = typer.Option(None, "--status", help="Only runs in this status"),
    limit: int = typer.Option(50, "--limit", "-n", help="Max rows"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="Override AUTOFLOW_DATABASE_URL"),
):
    """Show recent runs for a tenant, newest first."""
    try:
        records = asyncio.run(_list(database_url or config.database_url, tenant_id, status, limit))
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        console.print("[dim]Is the database running? Check AUTOFLOW_DATABASE_URL.[/dim]")
        raise typer.Exit(1)

    if not records:
        console.print(f"[dim]No runs for tenant {tenant_id}.[/dim]")
        return

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim")
    table.add_column("Run key")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Visited", justify="right")
    table.add_column("Created")
    for r in records:
        color = _STATUS_COLOR.get(r.status.value, "white")
        table.add_row(
            r.key,
            f"[{color}]{r.status.value}[/{color}]",
            r.failure_reason.value if r.failure_reason else "",
            str(len(r.visited_node_ids)),
            r.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)
