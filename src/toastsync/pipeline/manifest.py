"""Persisted record of uploaded files, used for incremental uploads."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from toastsync.pipeline.filesystem import FileSystem

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = ".upload-manifest.json"
MANIFEST_SCHEMA_VERSION = "1.0.0"


@dataclass
class ManifestEntry:
    """Fingerprint of a file as it was when last uploaded."""

    checksum: str
    size: int
    mtime_ms: int
    uploaded_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "checksum": self.checksum,
            "size": self.size,
            "mtimeMs": self.mtime_ms,
            "uploadedAt": self.uploaded_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestEntry:
        checksum = data["checksum"]
        uploaded_at = data["uploadedAt"]
        if not isinstance(checksum, str) or not isinstance(uploaded_at, str):
            raise TypeError("checksum and uploadedAt must be strings")
        return cls(
            checksum=checksum,
            size=int(data["size"]),
            mtime_ms=int(data["mtimeMs"]),
            uploaded_at=uploaded_at,
        )


@dataclass
class UploadManifest:
    """Remote path -> fingerprint of every file uploaded so far."""

    schema_version: str = MANIFEST_SCHEMA_VERSION
    entries: dict[str, ManifestEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": MANIFEST_SCHEMA_VERSION,
            "entries": {path: entry.to_dict() for path, entry in self.entries.items()},
        }


class UploadManifestStore:
    """
    Loads and atomically saves the upload manifest in the cache directory.

    Loading never fails: anything unreadable gives an empty manifest, which
    just means every file is checked again. Saving writes a temp file and
    renames it over the real one, retrying once before reporting failure.
    """

    def __init__(self, cache_dir: Path, fs: FileSystem):
        self.path = cache_dir / MANIFEST_FILENAME
        self.temp_path = cache_dir / f"{MANIFEST_FILENAME}.tmp"
        self.fs = fs

    async def load(self) -> UploadManifest:
        try:
            raw = await self.fs.read_text(self.path)
        except FileNotFoundError:
            logger.debug("No upload manifest at %s, starting fresh", self.path)
            return UploadManifest()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read upload manifest %s: %s", self.path, e)
            return UploadManifest()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Upload manifest %s is not valid JSON, starting fresh: %s", self.path, e)
            return UploadManifest()

        if not isinstance(data, dict) or "schemaVersion" not in data or not isinstance(
            data.get("entries"), dict
        ):
            logger.warning("Upload manifest %s is missing required fields, starting fresh", self.path)
            return UploadManifest()

        if data["schemaVersion"] != MANIFEST_SCHEMA_VERSION:
            logger.info(
                "Upload manifest schema %s does not match %s, starting fresh",
                data["schemaVersion"],
                MANIFEST_SCHEMA_VERSION,
            )
            return UploadManifest()

        entries = {}
        for remote_path, raw_entry in data["entries"].items():
            try:
                entries[remote_path] = ManifestEntry.from_dict(raw_entry)
            except (KeyError, TypeError, ValueError):
                logger.debug("Dropping malformed manifest entry for %s", remote_path)

        return UploadManifest(entries=entries)

    async def save(self, manifest: UploadManifest) -> bool:
        """Write the manifest atomically. Returns False if both attempts fail."""
        content = json.dumps(manifest.to_dict(), indent=2)

        for attempt in (1, 2):
            try:
                await self.fs.write_text(self.temp_path, content)
                await self.fs.rename(self.temp_path, self.path)
                logger.debug("Saved upload manifest with %d entries", len(manifest.entries))
                return True
            except OSError as e:
                logger.warning("Upload manifest write attempt %d failed: %s", attempt, e)

        logger.error("Failed to save upload manifest to %s", self.path)
        return False
