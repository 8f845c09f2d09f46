"""
Studio Sync CLI - Command-line interface.

Submit generation requests, inspect the local store and drain the
offline queue from the terminal.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from studio_sync.app import StudioApp, build_app
from studio_sync.connectivity.monitor import ConnectivityMonitor
from studio_sync.core.config import load_config
from studio_sync.core.exceptions import StudioSyncError, format_exception
from studio_sync.core.models import ArtifactRecord, ArtifactStatus, RequestPayload, RequestType
from studio_sync.generation.client import script_prompt

app = typer.Typer(
    name="studio-sync",
    help="Studio Sync - offline-resilient generation queue",
    no_args_is_help=True,
)
console = Console()

T = TypeVar("T")

STATUS_STYLES = {
    ArtifactStatus.QUEUED: "yellow",
    ArtifactStatus.COMPLETED: "green",
    ArtifactStatus.FAILED: "red",
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _run(action: Callable[[StudioApp], Awaitable[T]], *, online: bool = True) -> T:
    """Build the app, run one action against it and close it again."""
    try:
        config = load_config()
    except StudioSyncError as e:
        console.print(f"[red]{format_exception(e)}[/red]")
        raise typer.Exit(2)
    _configure_logging(config.log_level)

    async def main() -> T:
        monitor = ConnectivityMonitor(
            initially_online=online, recovery_window=config.recovery_window_seconds
        )
        async with build_app(config, monitor=monitor) as studio:
            return await action(studio)

    try:
        return asyncio.run(main())
    except StudioSyncError as e:
        console.print(f"[red]{format_exception(e)}[/red]")
        raise typer.Exit(1)


def _print_artifact(artifact: ArtifactRecord) -> None:
    style = STATUS_STYLES[artifact.status]
    lines = [
        f"[bold]Artifact[/bold] {artifact.id}",
        f"Type: {artifact.request_type.value}",
        f"Status: [{style}]{artifact.status.value}[/{style}]",
    ]
    if artifact.payload is not None and artifact.payload.text:
        lines.append("")
        lines.append(artifact.payload.text)
    if artifact.error_message:
        lines.append(f"Error: {artifact.error_message}")
    console.print(Panel.fit("\n".join(lines)))


@app.command("submit-image")
def submit_image(
    prompt: str = typer.Argument(..., help="Image description"),
    aspect_ratio: str = typer.Option("1:1", "--aspect-ratio", "-a", help="Aspect ratio"),
    offline: bool = typer.Option(False, "--offline", help="Queue instead of calling the service"),
):
    """Generate an image, or queue it when offline."""
    payload = RequestPayload(prompt=prompt, aspect_ratio=aspect_ratio)
    artifact = _run(
        lambda studio: studio.submission.submit(RequestType.GENERATE_IMAGE, payload),
        online=not offline,
    )
    _print_artifact(artifact)


@app.command("submit-script")
def submit_script(
    topic: str = typer.Argument(..., help="Video topic"),
    platform: str = typer.Option("TikTok", "--platform", "-p", help="TikTok or YouTube"),
    offline: bool = typer.Option(False, "--offline", help="Queue instead of calling the service"),
):
    """Write a short video script, or queue it when offline."""
    payload = RequestPayload(prompt=script_prompt(topic, platform), topic=topic, platform=platform)
    artifact = _run(
        lambda studio: studio.submission.submit(RequestType.GENERATE_SCRIPT, payload),
        online=not offline,
    )
    _print_artifact(artifact)


@app.command()
def artifacts(
    status: Optional[ArtifactStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
):
    """List stored artifacts, oldest first."""
    records = _run(lambda studio: studio.store.artifacts.get_all_by_time())
    if status:
        records = [r for r in records if r.status == status]

    table = Table(title=f"Artifacts ({len(records)})")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status")
    table.add_column("Prompt")
    table.add_column("Created", style="dim")

    for record in records:
        style = STATUS_STYLES[record.status]
        table.add_row(
            record.id,
            record.request_type.value,
            f"[{style}]{record.status.value}[/{style}]",
            record.prompt_text[:60],
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command()
def queue():
    """List queued requests and dead letters."""

    async def load(studio: StudioApp):
        return await studio.store.queue.get_all_by_time(), await studio.store.dead_letters.get_all_by_time()

    pending, dead = _run(load)

    table = Table(title=f"Sync Queue ({len(pending)})")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Retries", justify="right")
    table.add_column("Last Error", style="red")
    for request in pending:
        table.add_row(
            request.id, request.request_type.value, str(request.retry_count), request.last_error or ""
        )
    console.print(table)

    if dead:
        dead_table = Table(title=f"Given Up ({len(dead)})")
        dead_table.add_column("ID", style="cyan")
        dead_table.add_column("Type", style="magenta")
        dead_table.add_column("Error", style="red")
        for letter in dead:
            dead_table.add_row(letter.id, letter.request_type.value, letter.error_message)
        console.print(dead_table)


@app.command()
def sync():
    """Run one sync pass over the queue."""
    report = _run(lambda studio: studio.engine.process_sync_queue())

    table = Table(title="Sync Report", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in report.to_summary().items():
        table.add_row(key, str(value))
    console.print(table)

    if report.failed:
        raise typer.Exit(1)


@app.command()
def resurrect(
    artifact_id: str = typer.Argument(..., help="ID of a failed artifact"),
):
    """Put a given-up request back in the sync queue."""
    artifact = _run(lambda studio: studio.engine.resurrect(artifact_id))
    _print_artifact(artifact)


@app.command()
def version():
    """Show Studio Sync version."""
    from studio_sync import __version__

    console.print(f"Studio Sync v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
