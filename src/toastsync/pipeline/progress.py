"""Progress notifications for upload runs."""

from typing import Literal, Protocol

from rich.console import Console

FileStatus = Literal["uploaded", "skipped", "failed"]


class ProgressReporter(Protocol):
    def on_date_complete(self, index: int, total: int, date: str, file_count: int) -> None: ...

    def on_file_processed(self, remote_path: str, status: FileStatus) -> None: ...

    def on_complete(self, uploaded: int, skipped: int, failed: int, duration_ms: int) -> None: ...


class NullProgressReporter:
    """Reporter that ignores every event."""

    def on_date_complete(self, index: int, total: int, date: str, file_count: int) -> None:
        pass

    def on_file_processed(self, remote_path: str, status: FileStatus) -> None:
        pass

    def on_complete(self, uploaded: int, skipped: int, failed: int, duration_ms: int) -> None:
        pass


_STATUS_STYLES = {"uploaded": "green", "skipped": "dim", "failed": "red"}


class ConsoleProgressReporter:
    """Prints progress to a rich console (stderr, so JSON output stays clean)."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def on_date_complete(self, index: int, total: int, date: str, file_count: int) -> None:
        self.console.print(f"[bold][{index}/{total}][/bold] {date}: {file_count} files")

    def on_file_processed(self, remote_path: str, status: FileStatus) -> None:
        style = _STATUS_STYLES.get(status, "white")
        self.console.print(f"  [{style}]{status:>8}[/{style}] {remote_path}")

    def on_complete(self, uploaded: int, skipped: int, failed: int, duration_ms: int) -> None:
        color = "red" if failed else "green"
        self.console.print(
            f"\n[{color}]Upload complete in {duration_ms / 1000:.1f}s[/{color}]"
            f"  uploaded: {uploaded}  skipped: {skipped}  failed: {failed}"
        )
