"""Async filesystem access for the upload pipeline."""

from __future__ import annotations

import asyncio
import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class DirEntry:
    name: str
    is_dir: bool
    is_file: bool


@dataclass(frozen=True)
class FileStat:
    size: int
    mtime_ms: int


class FileSystem(Protocol):
    """Filesystem operations used by the manifest store and upload engine."""

    async def list_dir(self, path: Path) -> list[DirEntry]: ...

    async def stat(self, path: Path) -> FileStat: ...

    async def read_bytes(self, path: Path) -> bytes: ...

    async def read_text(self, path: Path) -> str: ...

    async def write_text(self, path: Path, content: str) -> None: ...

    async def rename(self, src: Path, dst: Path) -> None: ...

    async def exists(self, path: Path) -> bool: ...


def sha256_hex(data: bytes) -> str:
    """SHA-256 checksum of file content."""
    return hashlib.sha256(data).hexdigest()


def _list_dir(path: Path) -> list[DirEntry]:
    # Symlinks are neither dirs nor files here, so link cycles are never walked
    with os.scandir(path) as it:
        entries = [
            DirEntry(
                name=entry.name,
                is_dir=entry.is_dir(follow_symlinks=False),
                is_file=entry.is_file(follow_symlinks=False),
            )
            for entry in it
        ]
    return sorted(entries, key=lambda e: e.name)


def _stat(path: Path) -> FileStat:
    st = path.stat()
    return FileStat(size=st.st_size, mtime_ms=st.st_mtime_ns // 1_000_000)


class LocalFileSystem:
    """FileSystem backed by the local disk; blocking calls run in worker threads."""

    async def list_dir(self, path: Path) -> list[DirEntry]:
        return await asyncio.to_thread(_list_dir, path)

    async def stat(self, path: Path) -> FileStat:
        return await asyncio.to_thread(_stat, path)

    async def read_bytes(self, path: Path) -> bytes:
        return await asyncio.to_thread(path.read_bytes)

    async def read_text(self, path: Path) -> str:
        return await asyncio.to_thread(path.read_text, encoding="utf-8")

    async def write_text(self, path: Path, content: str) -> None:
        await asyncio.to_thread(path.write_text, content, encoding="utf-8")

    async def rename(self, src: Path, dst: Path) -> None:
        # Path.replace is an atomic rename on POSIX, overwriting dst
        await asyncio.to_thread(src.replace, dst)

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.exists)
