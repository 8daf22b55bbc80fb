"""CLI entrypoint for toastsync tools."""

import asyncio
import json
from datetime import date as date_type
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console

from toastsync.config import Env, FirebaseConfig, load_firebase_config, load_upload_config

app = typer.Typer(
    name="toastsync",
    help="Sync Toastmasters snapshot data to Cloud Storage and Firestore",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

# Default config paths (relative to package root: src/toastsync/cli.py -> repo root)
PACKAGE_ROOT = Path(__file__).parent.parent.parent
DEFAULT_FIREBASE_CONFIG = PACKAGE_ROOT / "configs" / "firebase.yaml"
DEFAULT_UPLOAD_CONFIG = PACKAGE_ROOT / "configs" / "upload.yaml"

# GCS_BUCKET, GCS_PREFIX, GCP_PROJECT_ID and TOASTSYNC_CACHE_DIR may come from a .env file
load_dotenv()


def _validate_date(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        date_type.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid date format: {value}. Expected YYYY-MM-DD") from None
    if len(value) != 10:
        raise typer.BadParameter(f"Invalid date format: {value}. Expected YYYY-MM-DD")
    return value


def _fail(message: str, code: int = 2):
    err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=code)


def _resolve_firebase_config(path: Path, env: Env, project_id: str | None = None) -> FirebaseConfig:
    """Firebase config for env; a missing config file falls back to default credentials."""
    if path.exists():
        firebase_config = load_firebase_config(path, env)
    else:
        firebase_config = FirebaseConfig()
    if project_id and not firebase_config.project_id:
        firebase_config = firebase_config.model_copy(update={"project_id": project_id})
    return firebase_config


@app.command()
def upload(
    date: Annotated[
        str | None,
        typer.Option("--date", "-d", help="Upload a single snapshot date (YYYY-MM-DD)", callback=_validate_date),
    ] = None,
    since: Annotated[
        str | None, typer.Option(help="Earliest date to upload (inclusive)", callback=_validate_date)
    ] = None,
    until: Annotated[
        str | None, typer.Option(help="Latest date to upload (inclusive)", callback=_validate_date)
    ] = None,
    incremental: Annotated[
        bool, typer.Option("--incremental/--force", help="Skip files unchanged since the last upload")
    ] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="List what would be uploaded")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Report every file")] = False,
    concurrency: Annotated[
        int | None, typer.Option(min=1, help="Maximum concurrent uploads per date")
    ] = None,
    cache_dir: Annotated[Path | None, typer.Option(help="Local cache directory")] = None,
    config: Annotated[
        Path, typer.Option("--config", "-c", help="Upload config path")
    ] = DEFAULT_UPLOAD_CONFIG,
    firebase_config: Annotated[Path, typer.Option(help="Firebase config path")] = DEFAULT_FIREBASE_CONFIG,
    env: Annotated[Env, typer.Option(help="Environment: prod or dev")] = "dev",
    as_json: Annotated[bool, typer.Option("--json", help="Print a JSON summary")] = False,
):
    """Upload local snapshot directories to Cloud Storage."""
    from toastsync.firebase.client import create_bucket_client
    from toastsync.logging_setup import configure_logging
    from toastsync.pipeline._shared import UploadOptions
    from toastsync.pipeline.progress import ConsoleProgressReporter
    from toastsync.pipeline.summary import (
        determine_upload_exit_code,
        format_upload_summary,
        print_upload_table,
    )
    from toastsync.pipeline.upload import UploadEngine

    if date and (since or until):
        _fail("--date cannot be combined with --since or --until")
    if since and until and since > until:
        _fail(f"--since ({since}) must not be after --until ({until})")

    configure_logging(verbose, err_console)
    upload_cfg = load_upload_config(config)
    cache = cache_dir or upload_cfg.cache_dir
    gcs = upload_cfg.gcs

    bucket_client = None
    if not dry_run:
        fb_config = _resolve_firebase_config(firebase_config, env, gcs.project_id)
        bucket_client = create_bucket_client(fb_config, gcs.bucket)

    if not as_json:
        console.print(f"[bold]Target: gs://{gcs.bucket}/{gcs.prefix}[/bold]")
        console.print(f"  Cache: {cache}")
        if dry_run:
            console.print("[yellow]DRY RUN - nothing will be uploaded[/yellow]")

    engine = UploadEngine(
        cache_dir=cache,
        bucket_name=gcs.bucket,
        prefix=gcs.prefix,
        bucket_client=bucket_client,
        progress=ConsoleProgressReporter(err_console),
    )
    options = UploadOptions(
        date=date,
        since=since,
        until=until,
        incremental=incremental,
        dry_run=dry_run,
        verbose=verbose,
        concurrency=concurrency or upload_cfg.concurrency,
    )
    result = asyncio.run(engine.upload(options))

    if as_json:
        summary = format_upload_summary(result, gcs.bucket, gcs.prefix, dry_run)
        typer.echo(json.dumps(summary, indent=2))
    else:
        print_upload_table(result, console)

    raise typer.Exit(code=int(determine_upload_exit_code(result)))


@app.command("sync-firestore")
def sync_firestore(
    date: Annotated[
        str | None,
        typer.Option("--date", "-d", help="Sync a single snapshot date (YYYY-MM-DD)", callback=_validate_date),
    ] = None,
    env: Annotated[Env, typer.Option(help="Environment: prod or dev")] = "dev",
    config: Annotated[
        Path, typer.Option("--config", "-c", help="Firebase config path")
    ] = DEFAULT_FIREBASE_CONFIG,
    upload_config: Annotated[Path, typer.Option(help="Upload config path")] = DEFAULT_UPLOAD_CONFIG,
    cache_dir: Annotated[Path | None, typer.Option(help="Local cache directory")] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Validate only, don't write")] = False,
    skip_existing: Annotated[
        bool, typer.Option(help="Skip snapshots already fully written")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging")] = False,
):
    """Write local snapshots into Firestore using chunked batch writes."""
    from toastsync.firebase.batch_writer import BatchWriteEngine
    from toastsync.firebase.client import create_document_store
    from toastsync.logging_setup import configure_logging
    from toastsync.pipeline.snapshot_sync import sync_snapshots_to_firestore

    configure_logging(verbose, err_console)
    upload_cfg = load_upload_config(upload_config)
    cache = cache_dir or upload_cfg.cache_dir

    console.print(f"[bold]Loading config for {env}...[/bold]")
    firebase_cfg = _resolve_firebase_config(config, env, upload_cfg.gcs.project_id)

    engine = None
    if not dry_run:
        console.print(f"[bold]Connecting to Firestore ({env})...[/bold]")
        console.print(f"  Collection: {firebase_cfg.collection}\n")
        engine = BatchWriteEngine(
            create_document_store(firebase_cfg),
            config=upload_cfg.batch_write,
            collection=firebase_cfg.collection,
        )

    result = asyncio.run(
        sync_snapshots_to_firestore(
            engine,
            cache,
            date=date,
            dry_run=dry_run,
            skip_existing=skip_existing,
            console=console,
        )
    )

    console.print(f"\n[green]Written: {len(result.snapshots_written)} snapshots[/green]")
    console.print(f"  Districts: {result.districts_written}")
    if result.snapshots_skipped:
        console.print(f"  Skipped: {len(result.snapshots_skipped)}")
    if result.snapshots_partial:
        console.print(f"[yellow]Partial: {', '.join(result.snapshots_partial)}[/yellow]")
    if result.failed:
        console.print("\n[red]Failures:[/red]")
        for fail in result.failed[:10]:
            console.print(f"  {fail['id']}: {fail.get('error', 'Unknown')}")

    if result.failed or result.snapshots_partial:
        raise typer.Exit(code=1)


@app.command()
def version():
    """Show version information."""
    from toastsync import __version__

    console.print(f"toastsync version {__version__}")


if __name__ == "__main__":
    app()
