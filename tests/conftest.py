"""Shared pytest fixtures for the pipeline tests."""

from pathlib import Path

import pytest

from fakes import FakeBucket, FakeDocumentStore, InMemoryFileSystem


@pytest.fixture
def fs():
    return InMemoryFileSystem()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def sleeps():
    """Delays requested by the batch writer, in seconds."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def cache_dir():
    return Path("/cache")


@pytest.fixture
def snapshot_cache(fs, cache_dir):
    """Two snapshot dates with a nested districts directory."""
    for date in ("2024-01-01", "2024-01-02"):
        base = cache_dir / "snapshots" / date
        fs.add_json(base / "metadata.json", {"date": date})
        fs.add_json(base / "districts" / "district_42.json", {"districtId": "42"})
        fs.add_file(base / "rankings.csv", "rank,district\n1,42\n")
    return fs
