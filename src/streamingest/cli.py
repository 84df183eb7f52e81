"""CLI entry point for streamingest.

Provides commands:
  - ingest: Upload a video file into a collection and reconcile its status
  - status: Display record counts by status and the latest records
  - reconcile: Resume reconciliation for records still processing
  - delete: Permanently remove a record and its remote video
  - config: Manage the Cloudflare API token and account id
"""

from __future__ import annotations

import asyncio
import contextlib
import getpass
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Annotated, AsyncIterator, Optional

import httpx
import keyring
import typer
from keyring.errors import KeyringError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from streamingest.config import (
    ACCOUNT_KEY,
    SERVICE_NAME,
    TOKEN_KEY,
    CollectionRegistry,
    get_credentials,
    load_ingest_config,
)
from streamingest.database import Database
from streamingest.exceptions import StreamIngestError
from streamingest.models import IngestConfig, ReconcileOutcome, VideoRecord, VideoStatus

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="streamingest - Upload videos to Cloudflare Stream and track their processing",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage Cloudflare credentials (API token, account id)")
app.add_typer(config_app, name="config")

_STATUS_STYLES = {
    "processing": "yellow",
    "ready": "green",
    "error": "red",
}

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", help="Path to ingest_config.json"),
]
DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", "-d", help="Path to SQLite database (overrides config)"),
]


@app.callback()
def app_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load(config_path: Path | None, db_path: Path | None) -> tuple[IngestConfig, CollectionRegistry, Path]:
    try:
        config, registry = load_ingest_config(config_path)
    except (StreamIngestError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    return config, registry, db_path or Path(config.db_path)


@contextlib.asynccontextmanager
async def _runtime(config: IngestConfig, db_path: Path) -> AsyncIterator[dict]:
    """Build the client, store, reconciler and scheduler for one command."""
    from streamingest.upload.client import CloudflareStreamClient
    from streamingest.upload.reconciler import PollScheduler, StatusReconciler
    from streamingest.upload.state import AsyncVideoStore

    credentials = get_credentials()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    timeout = httpx.Timeout(config.request_timeout_seconds)

    async with CloudflareStreamClient(
        credentials.account_id, credentials.api_token, timeout=config.request_timeout_seconds
    ) as client, httpx.AsyncClient(timeout=timeout) as transfer_http, AsyncVideoStore(
        str(db_path)
    ) as store:
        reconciler = StatusReconciler(client, store, config)
        async with PollScheduler(reconciler) as scheduler:
            yield {
                "client": client,
                "transfer_http": transfer_http,
                "store": store,
                "reconciler": reconciler,
                "scheduler": scheduler,
            }


def _status_cell(status: str) -> str:
    style = _STATUS_STYLES.get(status, "")
    return f"[{style}]{status}[/{style}]" if style else status


@app.command()
def ingest(
    path: Annotated[
        Path,
        typer.Argument(help="Video file to upload", exists=True, dir_okay=False, readable=True),
    ],
    collection: Annotated[
        str,
        typer.Option("--collection", "-c", help="Registered collection key"),
    ],
    wait: Annotated[
        bool,
        typer.Option("--wait", help="Wait for the remote platform to finish processing"),
    ] = False,
    config_path: ConfigOption = None,
    db_path: DbOption = None,
) -> None:
    """Upload a video and reconcile its processing status."""
    from streamingest.upload.orchestrator import IngestionOrchestrator
    from streamingest.upload.progress import TransferProgressTracker

    config, registry, db = _load(config_path, db_path)
    if collection not in registry:
        console.print(
            f"[red]Error:[/red] Collection [bold]{collection}[/bold] is not registered.\n"
            f"Known collections: {', '.join(registry.keys) or '(none)'}"
        )
        raise typer.Exit(code=1)

    size = path.stat().st_size
    console.print(
        Panel(
            f"Uploading [bold]{path.name}[/bold] ({size:,} bytes) to "
            f"[bold]{collection}[/bold]",
            title="Ingest",
        )
    )

    async def _run() -> tuple[VideoRecord, ReconcileOutcome | None]:
        async with _runtime(config, db) as rt:
            orchestrator = IngestionOrchestrator(
                rt["client"], rt["store"], registry, rt["scheduler"], rt["transfer_http"]
            )
            with TransferProgressTracker(path.name, size) as tracker:
                result = await orchestrator.ingest(
                    collection, path, requester=getpass.getuser(), on_progress=tracker.update
                )
                if not wait:
                    result.handle.cancel()
                    return result.record, None
                tracker.set_status("processing")
                outcome = await result.handle.wait()
            record = await rt["store"].get_by_remote_id(result.record.remote_resource_id)
            return record or result.record, outcome

    try:
        record, outcome = asyncio.run(_run())
    except StreamIngestError as e:
        console.print(f"[red]Ingest failed:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Ingested Video")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Record id", str(record.id))
    table.add_row("Stream id", record.remote_resource_id)
    table.add_row("View URL", record.view_url)
    table.add_row("Status", _status_cell(record.status.value))
    if record.duration_seconds:
        table.add_row("Duration", f"{record.duration_seconds:.1f}s")
    if record.download_url:
        table.add_row("Download URL", record.download_url)
    console.print(table)

    if outcome is ReconcileOutcome.GAVE_UP:
        console.print(
            "[yellow]Still processing when the polling budget ran out.[/yellow] "
            "Run [bold]streamingest reconcile[/bold] later."
        )
    elif outcome is ReconcileOutcome.ERROR:
        raise typer.Exit(code=1)


@app.command()
def status(
    config_path: ConfigOption = None,
    db_path: DbOption = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Number of records to list"),
    ] = 20,
) -> None:
    """Display record counts by status and the most recent records."""
    _, _, db = _load(config_path, db_path)
    if not db.exists():
        console.print(
            f"[yellow]Database not found:[/yellow] {db}\n"
            "Run [bold]streamingest ingest PATH --collection KEY[/bold] first."
        )
        raise typer.Exit(code=1)

    with Database(db) as database:
        counts = database.get_status_counts()
        records = database.list_records()

    console.print(Panel(f"Database: [bold]{db}[/bold]", title="Video Status"))

    count_table = Table(title="Videos by Status")
    count_table.add_column("Status", style="bold")
    count_table.add_column("Count", justify="right")
    for s in VideoStatus:
        count_table.add_row(_status_cell(s.value), str(counts.get(s.value, 0)))
    console.print(count_table)

    if records:
        recent = Table(title=f"Latest Records (showing {min(limit, len(records))})")
        recent.add_column("Id", justify="right")
        recent.add_column("Collection")
        recent.add_column("File", style="cyan", no_wrap=True)
        recent.add_column("Stream id")
        recent.add_column("Status")
        for record in records[:limit]:
            recent.add_row(
                str(record.id),
                record.collection_key,
                record.filename,
                record.remote_resource_id,
                _status_cell(record.status.value),
            )
        console.print(recent)


@app.command()
def reconcile(
    config_path: ConfigOption = None,
    db_path: DbOption = None,
) -> None:
    """Resume reconciliation for every record still processing."""
    from streamingest.upload.recovery import ReconcileRecovery

    config, _, db = _load(config_path, db_path)

    async def _run() -> dict[str, ReconcileOutcome | None]:
        async with _runtime(config, db) as rt:
            result = await ReconcileRecovery(rt["store"], rt["scheduler"]).run()
            for error in result.errors:
                console.print(f"[red]{error}[/red]")
            outcomes: dict[str, ReconcileOutcome | None] = {}
            with console.status(f"Reconciling {len(result.handles)} video(s)..."):
                for handle in result.handles:
                    outcomes[handle.remote_resource_id] = await handle.wait()
            return outcomes

    try:
        outcomes = asyncio.run(_run())
    except StreamIngestError as e:
        console.print(f"[red]Reconcile failed:[/red] {e}")
        raise typer.Exit(code=1)

    if not outcomes:
        console.print("[green]No videos awaiting a terminal status.[/green]")
        return

    table = Table(title="Reconcile Summary")
    table.add_column("Stream id")
    table.add_column("Outcome")
    for uid, outcome in outcomes.items():
        label = outcome.value if outcome else "cancelled"
        table.add_row(uid, _status_cell(label))
    console.print(table)


@app.command()
def delete(
    record_id: Annotated[int, typer.Argument(help="Local record id")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip the confirmation prompt"),
    ] = False,
    config_path: ConfigOption = None,
    db_path: DbOption = None,
) -> None:
    """Permanently remove a record and delete its remote video."""
    from streamingest.upload.orchestrator import IngestionOrchestrator

    config, registry, db = _load(config_path, db_path)
    if not yes:
        typer.confirm(f"Delete record {record_id} and its remote video?", abort=True)

    async def _run() -> bool:
        async with _runtime(config, db) as rt:
            orchestrator = IngestionOrchestrator(
                rt["client"], rt["store"], registry, rt["scheduler"], rt["transfer_http"]
            )
            return await orchestrator.delete_video(record_id)

    try:
        deleted = asyncio.run(_run())
    except StreamIngestError as e:
        console.print(f"[red]Delete failed:[/red] {e}")
        raise typer.Exit(code=1)

    if not deleted:
        console.print(f"[yellow]No record with id {record_id}.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Record {record_id} deleted")


class Credential(str, Enum):
    API_TOKEN = "api-token"
    ACCOUNT_ID = "account-id"


# name -> (keyring key, environment variable, environment checked first, secret)
_CREDENTIALS: dict[Credential, tuple[str, str, bool, bool]] = {
    Credential.API_TOKEN: (TOKEN_KEY, "CLOUDFLARE_API_TOKEN", False, True),
    Credential.ACCOUNT_ID: (ACCOUNT_KEY, "CLOUDFLARE_ACCOUNT_ID", True, False),
}


def _mask(value: str) -> str:
    """Keep the last four characters of a secret."""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


@config_app.command("set")
def set_credential(
    name: Annotated[Credential, typer.Argument(help="Which credential to store")],
    value: Annotated[str, typer.Argument(help="Credential value")],
) -> None:
    """Store a Cloudflare credential in the system keyring."""
    if not value.strip():
        console.print(f"[red]Error:[/red] {name.value} cannot be empty")
        raise typer.Exit(code=1)

    key = _CREDENTIALS[name][0]
    try:
        keyring.set_password(SERVICE_NAME, key, value.strip())
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to store {name.value}: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Stored {name.value} in system keyring (service: {SERVICE_NAME})")


@config_app.command("show")
def show_credentials() -> None:
    """Show which credentials are configured and where they come from."""
    table = Table(title="Cloudflare Credentials")
    table.add_column("Credential", style="cyan")
    table.add_column("Value")
    table.add_column("Source", style="dim")

    missing = False
    for name, (key, env_var, env_first, secret) in _CREDENTIALS.items():
        sources = [("keyring", keyring.get_password(SERVICE_NAME, key)), (env_var, os.environ.get(env_var))]
        if env_first:
            sources.reverse()
        source, value = next(((s, v) for s, v in sources if v), ("-", None))
        if value is None:
            missing = True
            table.add_row(name.value, "[yellow]not set[/yellow]", source)
        else:
            table.add_row(name.value, _mask(value) if secret else value, source)

    console.print(table)
    if missing:
        console.print("Set missing values with: [bold]streamingest config set NAME VALUE[/bold]")
        raise typer.Exit(code=1)


@config_app.command("remove")
def remove_credential(
    name: Annotated[Credential, typer.Argument(help="Which credential to remove")],
) -> None:
    """Delete a stored credential from the system keyring."""
    key = _CREDENTIALS[name][0]
    try:
        if not keyring.get_password(SERVICE_NAME, key):
            console.print(f"[yellow]No {name.value} in keyring.[/yellow] Nothing to remove.")
            return
        keyring.delete_password(SERVICE_NAME, key)
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to remove {name.value}: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Removed {name.value} from system keyring")
