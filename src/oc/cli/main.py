"""
CLI for the object cache.

Commands:
    oc serve - Run the HTTP gateway (with periodic reclamation)
    oc sweep - Run one reclamation cycle now
    oc stats - Show tracked keys and stored bytes
    oc user add USERNAME / oc user remove USERNAME - Manage credentials
    oc config - Show current configuration
    oc version - Print version
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from oc import __version__
from oc.config import Settings, clear_settings_cache, get_settings
from oc.inventory import SizeInventory
from oc.logging import setup_logging
from oc.runtime import open_services
from oc.stores.base import IndexCredentialDirectory
from oc.types import LAST_USED_PREFIX, CycleReport, CycleStatus

app = typer.Typer(
    name="oc",
    help="Object cache - authenticated blob cache with idle expiration and LRU eviction",
    no_args_is_help=True,
)
user_app = typer.Typer(help="Manage gateway credentials", no_args_is_help=True)
app.add_typer(user_app, name="user")

console = Console()
error_console = Console(stderr=True)


def _load_settings() -> Settings:
    """Load settings or exit with the validation errors."""
    try:
        clear_settings_cache()
        settings = get_settings()
    except ValidationError as e:
        error_console.print(f"[red]Error:[/red] Configuration is invalid.\n{e}")
        raise typer.Exit(1)
    setup_logging(log_level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)
    return settings


def _print_report(report: CycleReport) -> None:
    style = {
        CycleStatus.COMPLETE: "green",
        CycleStatus.PARTIAL: "yellow",
        CycleStatus.FAILED: "red",
    }[report.status]

    table = Table(title=f"Cycle {report.cycle_id}", show_header=True)
    table.add_column("Phase", style="cyan")
    table.add_column("Skipped")
    table.add_column("Examined", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Purged", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Anomalies", justify="right")
    table.add_column("Bytes", justify="right")

    for phase in report.phases:
        if phase.bytes_before is not None:
            size = f"{phase.bytes_before} -> {phase.bytes_after}"
        else:
            size = "[dim]-[/dim]"
        table.add_row(
            phase.phase.value,
            "yes" if phase.skipped else "no",
            str(phase.examined),
            str(len(phase.deleted)),
            str(len(phase.purged)),
            str(len(phase.failures)),
            str(len(phase.anomalies)),
            size,
        )

    console.print(table)
    console.print(f"[bold]Status:[/bold] [{style}]{report.status.value}[/{style}]")
    if report.error:
        console.print(f"[bold]Error:[/bold] {report.error}")
    for failure in report.failures:
        console.print(
            f"  [red]failed[/red] {failure.phase.value} {failure.operation} "
            f"{failure.key}: {failure.error}"
        )
    if report.eviction.over_budget:
        console.print("[yellow]Cache is still over its size budget.[/yellow]")


@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind host")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="Bind port")] = None,
    no_sweep: Annotated[
        bool, typer.Option("--no-sweep", help="Do not run reclamation in-process")
    ] = False,
) -> None:
    """Run the HTTP gateway."""
    import uvicorn

    from oc.gateway.app import create_app

    settings = _load_settings()
    gateway = create_app(settings, start_scheduler=not no_sweep)
    uvicorn.run(
        gateway,
        host=host or settings.HOST,
        port=port or settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


@app.command()
def sweep(
    now: Annotated[
        Optional[int],
        typer.Option("--now", help="Current time in ms since the epoch (default: wall clock)"),
    ] = None,
    max_idle_ms: Annotated[
        Optional[int], typer.Option("--max-idle-ms", help="Override MAX_IDLE_MS")
    ] = None,
    max_size_bytes: Annotated[
        Optional[int], typer.Option("--max-size-bytes", help="Override MAX_SIZE_BYTES")
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON")] = False,
) -> None:
    """Run one reclamation cycle against the configured cache.

    Exits with status 1 if the cycle was aborted.
    """
    settings = _load_settings()
    overrides: dict[str, int] = {}
    if max_idle_ms is not None:
        overrides["MAX_IDLE_MS"] = max_idle_ms
    if max_size_bytes is not None:
        overrides["MAX_SIZE_BYTES"] = max_size_bytes
    if overrides:
        settings = settings.model_copy(update=overrides)

    async def _run() -> CycleReport:
        async with open_services(settings) as services:
            return await services.coordinator.run_cycle(now)

    report = asyncio.run(_run())

    if as_json:
        console.print_json(json.dumps(report.to_dict()))
    else:
        _print_report(report)

    if report.status == CycleStatus.FAILED:
        raise typer.Exit(1)


@app.command()
def stats() -> None:
    """Show tracked keys, stored blobs and total bytes."""
    settings = _load_settings()

    async def _collect() -> tuple[int, int, int]:
        async with open_services(settings) as services:
            tracked = await services.index.count(LAST_USED_PREFIX)
            occupancy = await SizeInventory(
                services.blobs, settings.LIST_PAGE_SIZE
            ).compute_occupancy()
            return tracked, occupancy.blob_count, occupancy.total_bytes

    tracked, blob_count, total_bytes = asyncio.run(_collect())

    budget = (
        f"{settings.MAX_SIZE_BYTES} bytes" if settings.size_eviction_enabled else "disabled"
    )
    console.print(
        Panel(
            f"[bold]Tracked keys:[/bold] {tracked}\n"
            f"[bold]Stored blobs:[/bold] {blob_count}\n"
            f"[bold]Total bytes:[/bold] {total_bytes}\n"
            f"[bold]Size budget:[/bold] {budget}",
            title="[bold cyan]Object Cache[/bold cyan]",
            border_style="cyan",
        )
    )


@user_app.command("add")
def user_add(
    username: Annotated[str, typer.Argument(help="Username")],
    password: Annotated[
        str,
        typer.Option("--password", prompt=True, hide_input=True, confirmation_prompt=True),
    ],
) -> None:
    """Add a user or change their password."""
    if not username or ":" in username:
        error_console.print("[red]Error:[/red] Username must be non-empty without ':'.")
        raise typer.Exit(1)

    settings = _load_settings()

    async def _add() -> None:
        async with open_services(settings) as services:
            await IndexCredentialDirectory(services.index).set_password(username, password)

    asyncio.run(_add())
    console.print(f"[green]User {username} saved.[/green]")


@user_app.command("remove")
def user_remove(username: Annotated[str, typer.Argument(help="Username")]) -> None:
    """Remove a user."""
    settings = _load_settings()

    async def _remove() -> None:
        async with open_services(settings) as services:
            await IndexCredentialDirectory(services.index).remove(username)

    asyncio.run(_remove())
    console.print(f"[green]User {username} removed.[/green]")


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = _load_settings()

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    if not settings.expiration_enabled:
        console.print("[yellow]Idle expiration is disabled.[/yellow]")
    if not settings.size_eviction_enabled:
        console.print("[yellow]Size-bound eviction is disabled.[/yellow]")


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"object-cache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
