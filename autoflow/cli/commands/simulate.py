"""autoflow simulate: Run editor workflows against one message, in memory.

Nothing is sent: outbound messages are captured by an InMemoryGateway and
contacts live in an InMemoryStore.  Useful for checking branch wiring before
publishing.
"""

import asyncio
import uuid
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from autoflow.config import config
from autoflow.core.runtime import build_runtime
from autoflow.db.memory import InMemoryStore
from autoflow.types import Contact, InboundEvent
from autoflow.workflows.editor import load_workflow_file

console = Console()

_TENANT = "simulator"

_OUTCOME_STYLE = {
    "passed": "green",
    "delivered": "green",
    "no_match": "yellow",
    "skipped": "dim",
    "retrying": "yellow",
    "failed": "red",
}


async def _simulate(path: Path, text: str, contact_id: str, tags: list[str]) -> tuple:
    contacts = InMemoryStore([Contact(tenant_id=_TENANT, whatsapp_id=contact_id, tags=tags)])
    runtime = build_runtime(config, contact_store=contacts, callbacks=[])
    for version in load_workflow_file(path, _TENANT, implicit_default_arm=config.implicit_default_arm):
        await runtime.workflow_manager.publish_version(version)

    event = InboundEvent(
        tenant_id=_TENANT,
        contact_whatsapp_id=contact_id,
        text=text,
        event_id=f"sim-{uuid.uuid4().hex[:8]}",
    )
    records = await runtime.coordinator.handle_event(event)
    final_contact = await contacts.get_contact(_TENANT, contact_id)
    return records, runtime.gateway.delivered, final_contact


def simulate_message(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Editor JSON or YAML file"),
    text: str = typer.Option(..., "--text", "-t", help="Inbound message text"),
    contact: str = typer.Option("+15550000000", "--contact", "-c", help="Contact WhatsApp id"),
    tag: Optional[list[str]] = typer.Option(None, "--tag", help="Tag the contact already has (repeatable)"),
):
    """Simulate one inbound message and print the node trace and outbound sends."""
    records, sent, final_contact = asyncio.run(_simulate(path, text, contact, tag or []))

    if not records:
        console.print("[yellow]No workflow matched this message.[/yellow]")
        raise typer.Exit()

    for record in records:
        color = "green" if record.status.value == "completed" else "red"
        console.print(
            f"\n[bold]{record.run_key.workflow_id}[/bold] "
            f"[{color}]{record.status.value.upper()}[/{color}]"
            + (f" [dim]({record.failure_reason.value})[/dim]" if record.failure_reason else "")
        )
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim")
        table.add_column("#", width=3)
        table.add_column("Node")
        table.add_column("Outcome")
        table.add_column("Attempts", justify="right")
        table.add_column("Error")
        for i, visit in enumerate(record.visits, 1):
            style = _OUTCOME_STYLE.get(visit.outcome.value, "white")
            table.add_row(
                str(i),
                visit.node_id,
                f"[{style}]{visit.outcome.value}[/{style}]",
                str(visit.attempts),
                f"[dim]{visit.error or ''}[/dim]",
            )
        console.print(table)

    console.print("[bold]Outbound messages[/bold]")
    if not sent:
        console.print("  [dim]none[/dim]")
    for message in sent:
        console.print(f"  [cyan]{message.message_type}[/cyan] → {message.contact_whatsapp_id}: {message.body}")
    console.print(f"[bold]Contact tags:[/bold] {', '.join(final_contact.tags) or '[dim]none[/dim]'}")
