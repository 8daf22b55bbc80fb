"""Upload result reporting: JSON summary, exit codes and a console table."""

from enum import IntEnum
from typing import Any, Callable

from rich.console import Console
from rich.table import Table

from toastsync.pipeline._shared import UploadResult
from toastsync.timestamps import utc_timestamp


class ExitCode(IntEnum):
    SUCCESS = 0
    PARTIAL_FAILURE = 1
    COMPLETE_FAILURE = 2


def determine_upload_exit_code(result: UploadResult) -> ExitCode:
    """
    Map an upload result onto the process exit code.

    Auth errors are always a complete failure, even after some uploads.
    Nothing processed, or everything failed, is a complete failure too.
    """
    if result.auth_error:
        return ExitCode.COMPLETE_FAILURE
    if result.success:
        return ExitCode.SUCCESS
    processed = len(result.files_processed)
    if processed == 0 or len(result.files_failed) == processed:
        return ExitCode.COMPLETE_FAILURE
    return ExitCode.PARTIAL_FAILURE


_STATUS_BY_EXIT_CODE = {
    ExitCode.SUCCESS: "success",
    ExitCode.PARTIAL_FAILURE: "partial",
    ExitCode.COMPLETE_FAILURE: "failed",
}


def format_upload_summary(
    result: UploadResult,
    bucket: str,
    prefix: str,
    dry_run: bool,
    now: Callable[[], str] = utc_timestamp,
) -> dict[str, Any]:
    """Build the JSON summary printed at the end of an upload."""
    summary: dict[str, Any] = {
        "timestamp": now(),
        "status": _STATUS_BY_EXIT_CODE[determine_upload_exit_code(result)],
        "dates": list(result.dates),
        "dryRun": dry_run,
        "files": {
            "total": len(result.files_processed),
            "uploaded": len(result.files_uploaded),
            "failed": len(result.files_failed),
            "skipped": len(result.files_skipped),
        },
        "destination": {"bucket": bucket, "prefix": prefix},
        "errors": [e.to_dict() for e in result.errors],
        "duration_ms": result.duration_ms,
    }
    if result.auth_error is not None:
        summary["authError"] = result.auth_error
    if result.manifest_write_error is not None:
        summary["manifestWriteError"] = result.manifest_write_error
    return summary


def print_upload_table(result: UploadResult, console: Console, limit: int = 10):
    """Show counts and the first few errors of an upload."""
    table = Table(title="Upload summary", show_header=True)
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_row("[green]uploaded[/green]", str(len(result.files_uploaded)))
    table.add_row("[dim]skipped[/dim]", str(len(result.files_skipped)))
    table.add_row("[red]failed[/red]", str(len(result.files_failed)))
    console.print(table)

    if result.errors:
        console.print("\n[red]Errors:[/red]")
        for err in result.errors[:limit]:
            console.print(f"  {err.file}: {err.error}")
        if len(result.errors) > limit:
            console.print(f"  ... and {len(result.errors) - limit} more")
