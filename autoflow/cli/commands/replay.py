"""autoflow replay: Manually re-run a FAILED run.

Nodes the earlier attempt already delivered are skipped, and message sends
reuse their original idempotency keys, so the gateway never sees a new send
for a message that already went out.
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from autoflow.config import config
from autoflow.exceptions import RunNotFound, RunStateError

console = Console()


async def _replay(run_key: str, database_url: str):
    from autoflow.actions.gateway import HttpMessagingGateway
    from autoflow.core.runtime import build_runtime
    from autoflow.db.database import init_db, make_engine, make_session_factory
    from autoflow.db.repository import Repository

    engine = make_engine(database_url)
    gateway = HttpMessagingGateway(
        config.gateway_url,
        token=config.gateway_token,
        timeout_seconds=config.gateway_timeout_seconds,
    )
    try:
        await init_db(engine)
        runtime = build_runtime(
            config, repository=Repository(make_session_factory(engine)), gateway=gateway
        )
        return await runtime.coordinator.replay(run_key)
    finally:
        await gateway.close()
        await engine.dispose()


def replay_run(
    run_key: str = typer.Argument(..., help="Run key, e.g. <workflow_id>:v1:<contact>:<event_id>"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="Override AUTOFLOW_DATABASE_URL"),
):
    """Replay a FAILED run under its original run key.

    Example:
        autoflow replay 3f2c...:v2:+15550001111:wamid.HBgM
    """
    try:
        record = asyncio.run(_replay(run_key, database_url or config.database_url))
    except (RunNotFound, RunStateError, ValueError) as exc:
        console.print(f"[red]Cannot replay:[/red] {exc}")
        raise typer.Exit(1)
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        console.print("[dim]Is the database running? Check AUTOFLOW_DATABASE_URL.[/dim]")
        raise typer.Exit(1)

    color = "green" if record.status.value == "completed" else "red"
    body = (
        f"[bold]Status:[/bold] [{color}]{record.status.value.upper()}[/{color}]\n"
        f"[bold]Visited:[/bold] {', '.join(record.visited_node_ids) or '-'}"
    )
    if record.last_error:
        body += f"\n[bold]Last error:[/bold] [dim]{record.last_error}[/dim]"
    console.print(Panel(body, title=f"[bold blue]Replay {record.key}[/bold blue]", border_style="blue"))
