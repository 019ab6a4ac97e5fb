"""autoflow serve: Start the webhook API server."""

import typer
from rich.console import Console

from autoflow.config import config

console = Console()


def serve(
    host: str = typer.Option(config.host, help="Host to bind to"),
    port: int = typer.Option(config.port, help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Hot reload for development"),
):
    """Start the autoflow API server."""
    import uvicorn
    console.print(f"[green]Starting autoflow on {host}:{port}[/green]")
    uvicorn.run("autoflow.api.main:create_app", factory=True, host=host, port=port, reload=reload)
