"""Shared types for upload pipelines."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class UploadOptions:
    """Options for a single upload run."""

    date: str | None = None
    since: str | None = None
    until: str | None = None
    incremental: bool = False
    dry_run: bool = False
    verbose: bool = False
    concurrency: int = 10


@dataclass
class UploadError:
    """A failure attributed to one file (or directory)."""

    file: str
    error: str
    timestamp: str

    def to_dict(self) -> dict[str, str]:
        return {"file": self.file, "error": self.error, "timestamp": self.timestamp}


@dataclass
class UploadResult:
    """Results from an upload operation."""

    success: bool = False
    dates: list[str] = field(default_factory=list)
    files_processed: list[str] = field(default_factory=list)
    files_uploaded: list[str] = field(default_factory=list)
    files_failed: list[str] = field(default_factory=list)
    files_skipped: list[str] = field(default_factory=list)
    errors: list[UploadError] = field(default_factory=list)
    duration_ms: int = 0
    auth_error: bool | None = None
    manifest_write_error: bool | None = None


@dataclass
class SnapshotSyncResult:
    """Results from syncing local snapshots into Firestore."""

    snapshots_written: list[str] = field(default_factory=list)
    snapshots_partial: list[str] = field(default_factory=list)
    snapshots_skipped: list[str] = field(default_factory=list)
    districts_written: int = 0
    failed: list[dict[str, Any]] = field(default_factory=list)
