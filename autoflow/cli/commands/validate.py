"""autoflow validate: Check editor workflow files before publishing."""

from pathlib import Path

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from autoflow.config import config
from autoflow.exceptions import WorkflowValidationError
from autoflow.workflows.editor import load_workflow_file
from autoflow.workflows.validator import WorkflowValidator

console = Console()


def validate_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Editor JSON or YAML file"),
    explicit_defaults: bool = typer.Option(
        False, "--explicit-defaults", help="Do not treat the last condition arm as the default arm"
    ),
):
    """Validate every workflow in PATH. Exits 1 if any graph is invalid."""
    try:
        versions = load_workflow_file(path, "cli", implicit_default_arm=not explicit_defaults)
    except WorkflowValidationError as exc:
        console.print(f"[red]✗[/red] {exc}")
        for v in exc.violations:
            console.print(f"  [dim]{getattr(v, 'message', v)}[/dim]")
        raise typer.Exit(1)

    validator = WorkflowValidator()
    failed = 0
    for version in versions:
        violations = validator.validate(version, max_nodes=config.max_workflow_nodes)
        if not violations:
            console.print(
                f"[green]✓[/green] {version.name} "
                f"[dim]({len(version.nodes)} nodes, {len(version.edges)} edges)[/dim]"
            )
            continue
        failed += 1
        console.print(f"[red]✗[/red] {version.name}")
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim")
        table.add_column("Code")
        table.add_column("Nodes")
        table.add_column("Message")
        for v in violations:
            table.add_row(v.code.value, ", ".join(v.node_ids) or "-", v.message)
        console.print(table)

    if failed:
        raise typer.Exit(1)
