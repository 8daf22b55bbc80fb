"""Pipeline for uploading local snapshot directories to Cloud Storage.

Local structure:
    {cache_dir}/snapshots/{YYYY-MM-DD}/...   (any depth)

Remote structure:
    {prefix}/{YYYY-MM-DD}/...

Incremental runs consult the upload manifest: a file whose size and mtime
match its entry is skipped without reading it; otherwise its checksum is
compared against the entry before uploading.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Protocol

from toastsync.errors import (
    ErrorKind,
    PreflightError,
    classify_error,
    describe_error,
    matches_auth_message,
)
from toastsync.pipeline._shared import UploadError, UploadOptions, UploadResult
from toastsync.pipeline.filesystem import FileSystem, LocalFileSystem, sha256_hex
from toastsync.pipeline.manifest import ManifestEntry, UploadManifest, UploadManifestStore
from toastsync.pipeline.pool import run_with_concurrency
from toastsync.pipeline.progress import FileStatus, NullProgressReporter, ProgressReporter
from toastsync.timestamps import utc_timestamp

logger = logging.getLogger(__name__)

DATE_DIR_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

CONTENT_TYPES = {
    ".json": "application/json",
    ".csv": "text/csv",
}


class BucketClient(Protocol):
    """The slice of an object store the upload engine needs."""

    async def check_access(self) -> None: ...

    async def upload(
        self, remote_path: str, data: bytes, content_type: str, metadata: dict[str, str]
    ) -> None: ...


@dataclass
class LocalFile:
    """A file found under a snapshot date directory."""

    local_path: Path
    relative_path: str
    remote_path: str
    size: int
    mtime_ms: int


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")


class UploadEngine:
    """
    Syncs snapshot directories from the local cache to a bucket.

    Args:
        cache_dir: Cache root holding ``snapshots/`` and the upload manifest
        bucket_name: Destination bucket, used in messages
        prefix: Object prefix under which dates are uploaded
        bucket_client: Remote bucket; may be None for dry runs
        fs: Filesystem access (local disk by default)
        hasher: Content checksum function
        progress: Receives date, file and completion notifications
        now: Timestamp source for manifest entries and errors
        clock: Monotonic clock in seconds, used for durations
    """

    def __init__(
        self,
        cache_dir: Path,
        bucket_name: str,
        prefix: str,
        bucket_client: BucketClient | None = None,
        fs: FileSystem | None = None,
        hasher: Callable[[bytes], str] = sha256_hex,
        progress: ProgressReporter | None = None,
        now: Callable[[], str] = utc_timestamp,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache_dir = cache_dir
        self.bucket_name = bucket_name
        self.prefix = prefix.strip("/")
        self.bucket_client = bucket_client
        self.fs = fs or LocalFileSystem()
        self.manifest_store = UploadManifestStore(cache_dir, self.fs)
        self.hasher = hasher
        self.progress = progress or NullProgressReporter()
        self._now = now
        self._clock = clock

    @property
    def snapshots_dir(self) -> Path:
        return self.cache_dir / "snapshots"

    def build_remote_path(self, date: str, relative_path: str) -> str:
        return f"{self.prefix}/{date}/{relative_path}"

    async def get_available_dates(self) -> list[str]:
        """Snapshot dates in the local cache, newest first."""
        if not await self.fs.exists(self.snapshots_dir):
            logger.warning("Snapshots directory does not exist: %s", self.snapshots_dir)
            return []
        entries = await self.fs.list_dir(self.snapshots_dir)
        dates = [e.name for e in entries if e.is_dir and DATE_DIR_PATTERN.match(e.name)]
        return sorted(dates, reverse=True)

    async def _resolve_dates(self, options: UploadOptions) -> tuple[list[str], UploadError | None]:
        if options.date:
            snapshot_dir = self.snapshots_dir / options.date
            if not await self.fs.exists(snapshot_dir):
                logger.error("Snapshot directory not found for date %s", options.date)
                return [options.date], UploadError(
                    file=str(snapshot_dir),
                    error=f"Snapshot directory not found for date: {options.date}",
                    timestamp=self._now(),
                )
            return [options.date], None

        dates = await self.get_available_dates()
        if options.since:
            dates = [d for d in dates if d >= options.since]
        if options.until:
            dates = [d for d in dates if d <= options.until]

        if not dates:
            logger.warning("No snapshot dates found to upload")
            return [], UploadError(
                file=str(self.snapshots_dir),
                error="No snapshot dates found to upload",
                timestamp=self._now(),
            )
        return dates, None

    async def _preflight(self) -> None:
        """Check the bucket once so bad credentials fail before any work."""
        if self.bucket_client is None:
            raise PreflightError("GCS preflight check failed: no bucket client configured")
        try:
            await self.bucket_client.check_access()
        except Exception as e:
            message = describe_error(e)
            if classify_error(e) is ErrorKind.AUTH or matches_auth_message(e):
                raise PreflightError(
                    f"GCS preflight check failed: credentials are invalid or expired ({message}). "
                    "Run 'gcloud auth application-default login' or set "
                    "GOOGLE_APPLICATION_CREDENTIALS to a valid service account key.",
                    auth_error=True,
                ) from e
            if "bucket does not exist" in message.lower():
                raise PreflightError(
                    f"GCS preflight check failed: bucket '{self.bucket_name}' does not exist "
                    f"({message}). Check the GCS_BUCKET setting."
                ) from e
            raise PreflightError(f"GCS preflight check failed: {message}") from e

    async def _collect_files(self, directory: Path, base_dir: Path) -> list[LocalFile]:
        files = []
        for entry in await self.fs.list_dir(directory):
            path = directory / entry.name
            if entry.is_dir:
                files.extend(await self._collect_files(path, base_dir))
            elif entry.is_file:
                stat = await self.fs.stat(path)
                relative = PurePosixPath(*path.relative_to(base_dir).parts).as_posix()
                files.append(
                    LocalFile(
                        local_path=path,
                        relative_path=relative,
                        remote_path="",
                        size=stat.size,
                        mtime_ms=stat.mtime_ms,
                    )
                )
        return files

    async def _scan_date(self, date: str) -> list[LocalFile]:
        snapshot_dir = self.snapshots_dir / date
        files = await self._collect_files(snapshot_dir, snapshot_dir)
        for f in files:
            f.remote_path = self.build_remote_path(date, f.relative_path)
        return files

    def _notify(self, event: str, *args) -> None:
        """Deliver a progress event; reporter failures never reach the caller."""
        try:
            getattr(self.progress, event)(*args)
        except Exception as e:
            logger.warning("Progress reporter %s failed: %s", event, e)

    async def upload(self, options: UploadOptions | None = None) -> UploadResult:
        """
        Upload snapshot files for one date, a date range, or every date.

        Returns:
            UploadResult; every processed path is exactly one of uploaded,
            failed or skipped. Files never attempted because of an auth abort
            are not counted as processed.
        """
        options = options or UploadOptions()
        start = self._clock()

        logger.info(
            "Starting upload (date=%s, incremental=%s, dry_run=%s, concurrency=%d)",
            options.date or "all",
            options.incremental,
            options.dry_run,
            options.concurrency,
        )

        if not options.dry_run:
            try:
                await self._preflight()
            except PreflightError as e:
                logger.error("%s", e)
                return UploadResult(
                    success=False,
                    dates=[options.date] if options.date else [],
                    errors=[UploadError(file=self.bucket_name, error=str(e), timestamp=self._now())],
                    duration_ms=self._elapsed_ms(start),
                    auth_error=True if e.auth_error else None,
                )

        dates, date_error = await self._resolve_dates(options)
        if date_error is not None:
            return UploadResult(
                success=False,
                dates=dates,
                errors=[date_error],
                duration_ms=self._elapsed_ms(start),
            )

        manifest = await self.manifest_store.load()
        result = UploadResult(dates=dates)
        abort = asyncio.Event()

        for index, date in enumerate(dates, start=1):
            snapshot_dir = self.snapshots_dir / date
            try:
                files = await self._scan_date(date)
            except Exception as e:
                message = describe_error(e)
                logger.error("Failed to scan snapshot date %s: %s", date, message)
                result.errors.append(
                    UploadError(
                        str(snapshot_dir),
                        f"Failed to process snapshot date {date}: {message}",
                        self._now(),
                    )
                )
                continue

            self._notify("on_date_complete", index, len(dates), date, len(files))
            await self._upload_files(files, manifest, options, result, abort)

            if abort.is_set():
                logger.error("Authentication failure, not scheduling further uploads")
                break

        if not options.dry_run:
            if not await self.manifest_store.save(manifest):
                result.manifest_write_error = True
                result.errors.append(
                    UploadError(
                        str(self.manifest_store.path),
                        "Failed to save upload manifest after retry",
                        self._now(),
                    )
                )

        result.duration_ms = self._elapsed_ms(start)
        result.success = not result.auth_error and (
            (len(result.files_uploaded) > 0 and not result.files_failed)
            or (
                len(result.files_skipped) > 0
                and not result.files_uploaded
                and not result.files_failed
            )
        )

        logger.info(
            "Upload finished: success=%s processed=%d uploaded=%d failed=%d skipped=%d in %dms",
            result.success,
            len(result.files_processed),
            len(result.files_uploaded),
            len(result.files_failed),
            len(result.files_skipped),
            result.duration_ms,
        )
        self._notify(
            "on_complete",
            len(result.files_uploaded),
            len(result.files_skipped),
            len(result.files_failed),
            result.duration_ms,
        )
        return result

    def _record(
        self,
        result: UploadResult,
        options: UploadOptions,
        remote_path: str,
        status: FileStatus,
    ) -> None:
        result.files_processed.append(remote_path)
        {
            "uploaded": result.files_uploaded,
            "skipped": result.files_skipped,
            "failed": result.files_failed,
        }[status].append(remote_path)
        if options.verbose:
            self._notify("on_file_processed", remote_path, status)

    def _is_unchanged(self, manifest: UploadManifest, local_file: LocalFile) -> bool:
        entry = manifest.entries.get(local_file.remote_path)
        return (
            entry is not None
            and entry.size == local_file.size
            and entry.mtime_ms == local_file.mtime_ms
        )

    async def _upload_files(
        self,
        files: list[LocalFile],
        manifest: UploadManifest,
        options: UploadOptions,
        result: UploadResult,
        abort: asyncio.Event,
    ) -> None:
        candidates = []
        for local_file in files:
            if options.incremental and self._is_unchanged(manifest, local_file):
                logger.debug("Skipping unchanged file %s (size and mtime match)", local_file.remote_path)
                self._record(result, options, local_file.remote_path, "skipped")
            else:
                candidates.append(local_file)

        async def process(local_file: LocalFile) -> FileStatus:
            try:
                return await self._upload_one(local_file, manifest, options)
            except Exception as e:
                if classify_error(e) is ErrorKind.AUTH:
                    abort.set()
                raise

        settled = await run_with_concurrency(
            [lambda f=f: process(f) for f in candidates],
            options.concurrency,
            abort,
        )

        for outcome in settled:
            remote_path = candidates[outcome.index].remote_path
            if outcome.ok:
                self._record(result, options, remote_path, outcome.value)
                continue
            message = describe_error(outcome.error)
            if classify_error(outcome.error) is ErrorKind.AUTH:
                logger.error("GCS authentication failure uploading %s: %s", remote_path, message)
                result.auth_error = True
                message = f"GCS authentication failure: {message}"
            else:
                logger.error("Failed to upload %s: %s", remote_path, message)
            result.errors.append(UploadError(remote_path, message, self._now()))
            self._record(result, options, remote_path, "failed")

    async def _upload_one(
        self,
        local_file: LocalFile,
        manifest: UploadManifest,
        options: UploadOptions,
    ) -> FileStatus:
        entry = manifest.entries.get(local_file.remote_path) if options.incremental else None
        if options.dry_run and entry is None:
            logger.info("Would upload %s -> %s", local_file.local_path, local_file.remote_path)
            return "uploaded"

        content = await self.fs.read_bytes(local_file.local_path)
        checksum = self.hasher(content)

        if entry is not None and entry.checksum == checksum:
            logger.debug("Skipping unchanged file %s (checksum match)", local_file.remote_path)
            if not options.dry_run:
                # Content unchanged (e.g. copied with a new mtime); refresh the fast-path fields
                manifest.entries[local_file.remote_path] = ManifestEntry(
                    checksum=checksum,
                    size=local_file.size,
                    mtime_ms=local_file.mtime_ms,
                    uploaded_at=entry.uploaded_at,
                )
            return "skipped"

        if options.dry_run:
            logger.info("Would upload %s -> %s", local_file.local_path, local_file.remote_path)
            return "uploaded"

        uploaded_at = self._now()
        await self.bucket_client.upload(
            local_file.remote_path,
            content,
            content_type_for(local_file.local_path),
            {
                "checksum": checksum,
                "uploadedAt": uploaded_at,
                "localPath": local_file.relative_path,
            },
        )
        manifest.entries[local_file.remote_path] = ManifestEntry(
            checksum=checksum,
            size=local_file.size,
            mtime_ms=local_file.mtime_ms,
            uploaded_at=uploaded_at,
        )
        logger.info("Uploaded %s (%d bytes)", local_file.remote_path, local_file.size)
        return "uploaded"

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)
