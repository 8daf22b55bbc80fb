"""Pipeline for writing local snapshot directories into Firestore.

Local structure:
    {cache_dir}/snapshots/{YYYY-MM-DD}/
        metadata.json
        manifest.json
        all-districts-rankings.json   (optional)
        district_{id}.json

Firestore structure:
    snapshots/{YYYY-MM-DD}                    metadata, manifest, rankings
    snapshots/{YYYY-MM-DD}/districts/district_{id}
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any

from rich.console import Console
from tqdm import tqdm

from toastsync.errors import StorageOperationError, describe_error
from toastsync.firebase.batch_writer import BatchWriteEngine
from toastsync.pipeline._shared import SnapshotSyncResult
from toastsync.pipeline.filesystem import FileSystem, LocalFileSystem

logger = logging.getLogger(__name__)

SNAPSHOT_DIR_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DISTRICT_FILE_PATTERN = re.compile(r"^district_([A-Za-z0-9]+)\.json$")


async def _read_json(fs: FileSystem, path: Path) -> Any | None:
    """Parse a JSON file, or None if it does not exist."""
    try:
        raw = await fs.read_text(path)
    except FileNotFoundError:
        return None
    return json.loads(raw)


async def list_snapshot_ids(fs: FileSystem, snapshots_dir: Path) -> list[str]:
    """Snapshot directory names in the cache, oldest first."""
    if not await fs.exists(snapshots_dir):
        return []
    entries = await fs.list_dir(snapshots_dir)
    return sorted(e.name for e in entries if e.is_dir and SNAPSHOT_DIR_PATTERN.match(e.name))


async def load_local_snapshot(
    fs: FileSystem, snapshot_dir: Path
) -> tuple[dict[str, Any], list[dict[str, Any]], list[dict[str, Any]]]:
    """
    Read one snapshot directory.

    Returns:
        Tuple of (root_document, districts, read_failures)

    Raises:
        ValueError: If neither metadata.json nor manifest.json exist
    """
    metadata = await _read_json(fs, snapshot_dir / "metadata.json")
    manifest = await _read_json(fs, snapshot_dir / "manifest.json")
    rankings = await _read_json(fs, snapshot_dir / "all-districts-rankings.json")

    if metadata is None and manifest is None:
        raise ValueError(f"Missing both metadata.json and manifest.json in {snapshot_dir}")

    root_document: dict[str, Any] = {}
    if metadata is not None:
        root_document["metadata"] = metadata
    if manifest is not None:
        root_document["manifest"] = manifest
    if rankings is not None:
        root_document["rankings"] = rankings

    districts = []
    failures = []
    for entry in await fs.list_dir(snapshot_dir):
        match = DISTRICT_FILE_PATTERN.match(entry.name)
        if not entry.is_file or not match:
            continue
        district_id = match.group(1)
        try:
            data = await _read_json(fs, snapshot_dir / entry.name)
        except (OSError, json.JSONDecodeError) as e:
            failures.append({"id": f"{snapshot_dir.name}/district_{district_id}", "error": str(e)})
            continue
        if not isinstance(data, dict):
            failures.append(
                {"id": f"{snapshot_dir.name}/district_{district_id}", "error": "Not a JSON object"}
            )
            continue
        districts.append({**data, "districtId": district_id})

    return root_document, districts, failures


async def sync_snapshots_to_firestore(
    engine: BatchWriteEngine | None,
    cache_dir: Path,
    date: str | None = None,
    dry_run: bool = False,
    skip_existing: bool = False,
    fs: FileSystem | None = None,
    console: Console | None = None,
) -> SnapshotSyncResult:
    """
    Write local snapshots to Firestore through the batch writer.

    Args:
        engine: Batch writer bound to the target Firestore; only optional for dry runs
        cache_dir: Cache root holding ``snapshots/``
        date: Only sync this snapshot date
        dry_run: Read and validate only, write nothing
        skip_existing: Skip snapshots already fully written
        fs: Filesystem access (local disk by default)
        console: Rich console for output

    Returns:
        SnapshotSyncResult with written, partial, skipped and failed snapshots
    """
    if engine is None and not dry_run:
        raise ValueError("A batch write engine is required unless dry_run is set")
    fs = fs or LocalFileSystem()
    if console is None:
        console = Console()

    result = SnapshotSyncResult()
    snapshots_dir = cache_dir / "snapshots"

    snapshot_ids = await list_snapshot_ids(fs, snapshots_dir)
    if date is not None:
        if date not in snapshot_ids:
            result.failed.append({"id": date, "error": f"Snapshot directory not found: {snapshots_dir / date}"})
            return result
        snapshot_ids = [date]

    console.print(f"Found {len(snapshot_ids)} snapshot directories in {snapshots_dir}")
    if dry_run:
        console.print("[yellow]DRY RUN - no changes will be made[/yellow]\n")

    for snapshot_id in tqdm(snapshot_ids, desc="Writing snapshots"):
        if skip_existing and not dry_run and await engine.is_write_complete(snapshot_id):
            logger.info("Skipping snapshot %s (already fully written)", snapshot_id)
            result.snapshots_skipped.append(snapshot_id)
            continue

        try:
            root_document, districts, failures = await load_local_snapshot(
                fs, snapshots_dir / snapshot_id
            )
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error("Could not read snapshot %s: %s", snapshot_id, e)
            result.failed.append({"id": snapshot_id, "error": str(e)})
            continue
        result.failed.extend(failures)

        if dry_run:
            console.print(f"  [DRY RUN] {snapshot_id}: root document + {len(districts)} districts")
            result.snapshots_written.append(snapshot_id)
            result.districts_written += len(districts)
            continue

        try:
            write_result = await asyncio.wait_for(
                engine.write_snapshot(snapshot_id, root_document, districts),
                timeout=engine.config.total_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            message = f"Snapshot write exceeded total timeout of {engine.config.total_timeout_ms}ms"
            logger.error("%s: %s", snapshot_id, message)
            result.failed.append({"id": snapshot_id, "error": message})
            continue
        except StorageOperationError as e:
            result.failed.append({"id": snapshot_id, "error": describe_error(e)})
            continue

        result.districts_written += write_result.districts_written
        if write_result.complete:
            result.snapshots_written.append(snapshot_id)
        else:
            result.snapshots_partial.append(snapshot_id)
            for district_id in write_result.failed_districts:
                result.failed.append(
                    {"id": f"{snapshot_id}/district_{district_id}", "error": "District batch failed"}
                )

    return result
