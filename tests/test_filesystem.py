"""Tests for toastsync.pipeline.filesystem."""

import os

import pytest

from toastsync.pipeline._shared import UploadOptions
from toastsync.pipeline.filesystem import LocalFileSystem, sha256_hex
from toastsync.pipeline.upload import UploadEngine


@pytest.fixture
def looped_cache(tmp_path):
    """A snapshot date whose districts/ holds a symlink back to the date directory."""
    date_dir = tmp_path / "snapshots" / "2024-01-01"
    (date_dir / "districts").mkdir(parents=True)
    (date_dir / "metadata.json").write_text('{"date": "2024-01-01"}')
    (date_dir / "districts" / "district_42.json").write_text("{}")
    os.symlink(date_dir, date_dir / "districts" / "loop")
    return tmp_path


class TestLocalFileSystem:
    """Tests for LocalFileSystem."""

    @pytest.mark.asyncio
    async def test_list_dir_sorted(self, looped_cache):
        """Entries come back sorted by name with their types."""
        entries = await LocalFileSystem().list_dir(looped_cache / "snapshots" / "2024-01-01")

        assert [(e.name, e.is_dir, e.is_file) for e in entries] == [
            ("districts", True, False),
            ("metadata.json", False, True),
        ]

    @pytest.mark.asyncio
    async def test_symlinks_are_not_followed(self, looped_cache):
        """A directory symlink is reported as neither a directory nor a file."""
        entries = await LocalFileSystem().list_dir(looped_cache / "snapshots" / "2024-01-01" / "districts")

        loop = next(e for e in entries if e.name == "loop")
        assert not loop.is_dir
        assert not loop.is_file

    @pytest.mark.asyncio
    async def test_symlink_cycle_does_not_recurse(self, looped_cache):
        """Scanning a date with a link cycle finds the real files only."""
        engine = UploadEngine(cache_dir=looped_cache, bucket_name="b", prefix="snapshots")

        result = await engine.upload(UploadOptions(dry_run=True))

        assert sorted(result.files_uploaded) == [
            "snapshots/2024-01-01/districts/district_42.json",
            "snapshots/2024-01-01/metadata.json",
        ]

    @pytest.mark.asyncio
    async def test_stat_and_read(self, tmp_path):
        """stat reports size and whole-millisecond mtime."""
        path = tmp_path / "a.json"
        path.write_bytes(b"hello")
        os.utime(path, ns=(1_700_000_000_123_456_789, 1_700_000_000_123_456_789))
        fs = LocalFileSystem()

        stat = await fs.stat(path)

        assert stat.size == 5
        assert stat.mtime_ms == 1_700_000_000_123
        assert await fs.read_bytes(path) == b"hello"


def test_sha256_hex():
    """Checksums are lowercase hex SHA-256."""
    assert sha256_hex(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
