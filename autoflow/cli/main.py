"""autoflow CLI: Typer application."""

import typer
from rich.console import Console

from autoflow.config import configure_logging
from autoflow.version import __version__

app = typer.Typer(
    name="autoflow",
    help="autoflow: WhatsApp workflow automation engine.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level for engine output"),
):
    """autoflow CLI."""
    if version:
        console.print(f"autoflow v{__version__}")
        raise typer.Exit()
    configure_logging(log_level)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# ── Authoring ──────────────────────────────────────────────────────────────────
from autoflow.cli.commands import simulate, validate  # noqa: E402

app.command(name="validate", help="Validate editor workflow files")(validate.validate_file)
app.command(name="simulate", help="Run workflows against one message, in memory")(simulate.simulate_message)

# ── Operations ─────────────────────────────────────────────────────────────────
from autoflow.cli.commands import replay, runs, serve  # noqa: E402

app.command(name="runs", help="List runs from the ledger")(runs.list_runs)
app.command(name="replay", help="Manually re-run a FAILED run")(replay.replay_run)
app.command(name="serve", help="Start the webhook API server")(serve.serve)


if __name__ == "__main__":
    app()
