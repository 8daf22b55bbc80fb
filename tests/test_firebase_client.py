"""Tests for the Firestore and Cloud Storage adapters in toastsync.firebase.client."""

from unittest.mock import MagicMock

import pytest

from toastsync.errors import StorageOperationError
from toastsync.firebase.client import FirestoreDocumentStore, GCSBucketClient


class TestGCSBucketClient:
    """Tests for GCSBucketClient."""

    @pytest.mark.asyncio
    async def test_bucket_created_lazily(self):
        """The bucket factory is not called until first use."""
        factory = MagicMock()
        client = GCSBucketClient(factory, "toast-stats-data")

        factory.assert_not_called()
        await client.check_access()
        await client.check_access()
        factory.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_bucket(self):
        """A bucket that does not exist raises a storage error."""
        bucket = MagicMock()
        bucket.exists.return_value = False
        client = GCSBucketClient(lambda: bucket, "nope")

        with pytest.raises(StorageOperationError, match="bucket does not exist: nope"):
            await client.check_access()

    @pytest.mark.asyncio
    async def test_factory_errors_surface_on_access(self):
        """Credential errors raised while building the bucket reach the caller."""

        def factory():
            raise RuntimeError("Could not load the default credentials")

        client = GCSBucketClient(factory, "toast-stats-data")

        with pytest.raises(RuntimeError, match="default credentials"):
            await client.check_access()

    @pytest.mark.asyncio
    async def test_upload(self):
        """Uploads set metadata on the blob and send the content."""
        bucket = MagicMock()
        blob = bucket.blob.return_value
        client = GCSBucketClient(lambda: bucket, "toast-stats-data")

        await client.upload("snapshots/2024-01-01/a.json", b"{}", "application/json", {"checksum": "x"})

        bucket.blob.assert_called_once_with("snapshots/2024-01-01/a.json")
        assert blob.metadata == {"checksum": "x"}
        blob.upload_from_string.assert_called_once_with(b"{}", content_type="application/json")


class TestFirestoreDocumentStore:
    """Tests for FirestoreDocumentStore."""

    @pytest.mark.asyncio
    async def test_batch_set_and_commit(self):
        """Batched writes target collection/document references."""
        client = MagicMock()
        store = FirestoreDocumentStore(client)

        batch = store.batch()
        batch.set("snapshots/2024-01-01/districts", "district_42", {"districtId": "42"})
        await batch.commit()

        client.collection.assert_called_with("snapshots/2024-01-01/districts")
        client.collection.return_value.document.assert_called_with("district_42")
        client.batch.return_value.set.assert_called_once()
        client.batch.return_value.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_missing_document(self):
        """A document that does not exist reads as None."""
        client = MagicMock()
        client.collection.return_value.document.return_value.get.return_value.exists = False
        store = FirestoreDocumentStore(client)

        assert await store.get("snapshots", "2024-01-01") is None

    @pytest.mark.asyncio
    async def test_get_and_update(self):
        """Existing documents are returned as dicts and updated in place."""
        client = MagicMock()
        ref = client.collection.return_value.document.return_value
        ref.get.return_value.exists = True
        ref.get.return_value.to_dict.return_value = {"metadata": {"writeComplete": True}}
        store = FirestoreDocumentStore(client)

        assert await store.get("snapshots", "2024-01-01") == {"metadata": {"writeComplete": True}}
        await store.update("snapshots", "2024-01-01", {"metadata.writeComplete": False})
        ref.update.assert_called_once_with({"metadata.writeComplete": False})
