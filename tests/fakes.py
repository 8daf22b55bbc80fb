"""In-memory stand-ins for the local disk, the bucket and Firestore."""

import asyncio
import json
from pathlib import Path
from typing import Any

from toastsync.pipeline.filesystem import DirEntry, FileStat


class CodedError(Exception):
    """An SDK-style error carrying a status code."""

    def __init__(self, message: str, code: int | str | None = None):
        super().__init__(message)
        self.code = code


class InMemoryFileSystem:
    """FileSystem holding files in a dict; directories are implied by paths."""

    def __init__(self):
        self.files: dict[Path, tuple[bytes, int]] = {}
        self.read_calls: list[Path] = []
        self.write_calls: list[Path] = []
        self.rename_calls: list[tuple[Path, Path]] = []
        self.failing_writes = 0
        self.unreadable: set[Path] = set()

    def add_file(self, path: Path | str, content: bytes | str, mtime_ms: int = 1_000):
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.files[Path(path)] = (content, mtime_ms)

    def add_json(self, path: Path | str, data: Any, mtime_ms: int = 1_000):
        self.add_file(path, json.dumps(data), mtime_ms)

    def _is_dir(self, path: Path) -> bool:
        return any(path in f.parents for f in self.files)

    async def list_dir(self, path: Path) -> list[DirEntry]:
        if path in self.unreadable:
            raise PermissionError(f"Permission denied: '{path}'")
        if not self._is_dir(path):
            raise FileNotFoundError(f"No such directory: '{path}'")
        names = set()
        for f in self.files:
            if path in f.parents:
                names.add(f.relative_to(path).parts[0])
        return [
            DirEntry(name=name, is_dir=self._is_dir(path / name), is_file=(path / name) in self.files)
            for name in sorted(names)
        ]

    async def stat(self, path: Path) -> FileStat:
        if path not in self.files:
            raise FileNotFoundError(f"No such file: '{path}'")
        content, mtime_ms = self.files[path]
        return FileStat(size=len(content), mtime_ms=mtime_ms)

    async def read_bytes(self, path: Path) -> bytes:
        self.read_calls.append(path)
        if path in self.unreadable:
            raise PermissionError(f"Permission denied: '{path}'")
        if path not in self.files:
            raise FileNotFoundError(f"No such file: '{path}'")
        return self.files[path][0]

    async def read_text(self, path: Path) -> str:
        return (await self.read_bytes(path)).decode("utf-8")

    async def write_text(self, path: Path, content: str) -> None:
        self.write_calls.append(path)
        if self.failing_writes > 0:
            self.failing_writes -= 1
            raise OSError(f"No space left on device: '{path}'")
        self.files[path] = (content.encode("utf-8"), 0)

    async def rename(self, src: Path, dst: Path) -> None:
        self.rename_calls.append((src, dst))
        self.files[dst] = self.files.pop(src)

    async def exists(self, path: Path) -> bool:
        return path in self.files or self._is_dir(path)


class FakeBucket:
    """Bucket client recording uploads, with per-path failures."""

    def __init__(self, delay: float = 0.0):
        self.uploads: list[dict[str, Any]] = []
        self.failures: dict[str, BaseException] = {}
        self.access_error: BaseException | None = None
        self.check_access_calls = 0
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def check_access(self) -> None:
        self.check_access_calls += 1
        if self.access_error is not None:
            raise self.access_error

    async def upload(
        self, remote_path: str, data: bytes, content_type: str, metadata: dict[str, str]
    ) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if remote_path in self.failures:
                raise self.failures[remote_path]
            self.uploads.append(
                {
                    "remote_path": remote_path,
                    "data": data,
                    "content_type": content_type,
                    "metadata": metadata,
                }
            )
        finally:
            self.in_flight -= 1

    @property
    def uploaded_paths(self) -> list[str]:
        return [u["remote_path"] for u in self.uploads]


class FakeWriteBatch:
    """Batch whose commit outcomes are scripted by the owning store."""

    def __init__(self, store: "FakeDocumentStore", number: int):
        self.store = store
        self.number = number
        self.writes: list[tuple[str, str, dict[str, Any]]] = []
        self.commit_attempts = 0

    def set(self, collection_path: str, document_id: str, payload: dict[str, Any]) -> None:
        self.writes.append((collection_path, document_id, payload))

    async def commit(self) -> None:
        self.commit_attempts += 1
        store = self.store
        store.events.append(("start", self.number))
        store.in_flight += 1
        store.max_in_flight = max(store.max_in_flight, store.in_flight)
        try:
            outcomes = store.outcomes.get(self.number, [])
            outcome = outcomes.pop(0) if outcomes else None
            await asyncio.sleep(store.commit_delay)
            if isinstance(outcome, (int, float)):
                await asyncio.sleep(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            store.committed.append(self.number)
            for collection_path, document_id, payload in self.writes:
                store.documents[(collection_path, document_id)] = payload
        finally:
            store.in_flight -= 1
            store.events.append(("end", self.number))


class FakeDocumentStore:
    """
    Document store whose batches are numbered in creation order.

    ``outcomes`` maps a batch number to the results of its successive commit
    attempts: an exception to raise, a number of seconds to hang, or None for
    success. Attempts past the end of the list succeed.
    """

    def __init__(self, commit_delay: float = 0.0):
        self.batches: list[FakeWriteBatch] = []
        self.outcomes: dict[int, list[Any]] = {}
        self.commit_delay = commit_delay
        self.committed: list[int] = []
        self.events: list[tuple[str, int]] = []
        self.documents: dict[tuple[str, str], dict[str, Any]] = {}
        self.updates: list[tuple[str, str, dict[str, Any]]] = []
        self.update_error: BaseException | None = None
        self.get_error: BaseException | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    def batch(self) -> FakeWriteBatch:
        batch = FakeWriteBatch(self, len(self.batches))
        self.batches.append(batch)
        return batch

    async def update(self, collection_path: str, document_id: str, fields: dict[str, Any]) -> None:
        self.updates.append((collection_path, document_id, fields))
        if self.update_error is not None:
            raise self.update_error

    async def get(self, collection_path: str, document_id: str) -> dict[str, Any] | None:
        if self.get_error is not None:
            raise self.get_error
        return self.documents.get((collection_path, document_id))


class RecordingProgress:
    """Progress reporter that keeps every event."""

    def __init__(self):
        self.events: list[tuple] = []

    def on_date_complete(self, index, total, date, file_count):
        self.events.append(("date", index, total, date, file_count))

    def on_file_processed(self, remote_path, status):
        self.events.append(("file", remote_path, status))

    def on_complete(self, uploaded, skipped, failed, duration_ms):
        self.events.append(("complete", uploaded, skipped, failed))
