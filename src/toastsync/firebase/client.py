"""Firebase client initialization and async adapters for Firestore and Cloud Storage."""

import asyncio
from typing import Any, Callable

import firebase_admin
from firebase_admin import credentials, firestore, storage

from toastsync.config import FirebaseConfig
from toastsync.errors import StorageOperationError

_app: firebase_admin.App | None = None


def init_firebase(config: FirebaseConfig) -> firebase_admin.App:
    """Initialize Firebase app with the given config."""
    global _app

    if _app is not None:
        return _app

    if config.credentials_path is None:
        cred = credentials.ApplicationDefault()
    else:
        if not config.credentials_path.exists():
            raise FileNotFoundError(f"Credentials file not found: {config.credentials_path}")
        cred = credentials.Certificate(str(config.credentials_path))

    options = {"projectId": config.project_id} if config.project_id else None
    _app = firebase_admin.initialize_app(cred, options)

    return _app


def get_client(config: FirebaseConfig) -> firestore.Client:
    """Get Firestore client, initializing Firebase if needed."""
    init_firebase(config)
    return firestore.client()


def get_storage_bucket(config: FirebaseConfig, bucket_name: str):
    """Get a Cloud Storage bucket handle."""
    init_firebase(config)
    return storage.bucket(bucket_name)


class FirestoreWriteBatch:
    """Atomic write batch; commit runs the blocking SDK call in a worker thread."""

    def __init__(self, client: firestore.Client):
        self._client = client
        self._batch = client.batch()

    def set(self, collection_path: str, document_id: str, payload: dict[str, Any]) -> None:
        doc_ref = self._client.collection(collection_path).document(document_id)
        self._batch.set(doc_ref, payload)

    async def commit(self) -> None:
        await asyncio.to_thread(self._batch.commit)


class FirestoreDocumentStore:
    """Document store backed by the firebase_admin Firestore client."""

    def __init__(self, client: firestore.Client):
        self._client = client

    def batch(self) -> FirestoreWriteBatch:
        return FirestoreWriteBatch(self._client)

    async def update(self, collection_path: str, document_id: str, fields: dict[str, Any]) -> None:
        doc_ref = self._client.collection(collection_path).document(document_id)
        await asyncio.to_thread(doc_ref.update, fields)

    async def get(self, collection_path: str, document_id: str) -> dict[str, Any] | None:
        doc_ref = self._client.collection(collection_path).document(document_id)
        snapshot = await asyncio.to_thread(doc_ref.get)
        if not snapshot.exists:
            return None
        return snapshot.to_dict()


class GCSBucketClient:
    """
    Bucket client backed by a google-cloud-storage bucket.

    The bucket handle is created on first use, so missing credentials surface
    from check_access rather than from construction.
    """

    def __init__(self, bucket_factory: Callable[[], Any], name: str):
        self._bucket_factory = bucket_factory
        self._bucket = None
        self.name = name

    async def _get_bucket(self):
        if self._bucket is None:
            self._bucket = await asyncio.to_thread(self._bucket_factory)
        return self._bucket

    async def check_access(self) -> None:
        """Check the bucket exists; raises if credentials or the bucket itself are bad."""
        bucket = await self._get_bucket()
        exists = await asyncio.to_thread(bucket.exists)
        if not exists:
            raise StorageOperationError(
                f"The specified bucket does not exist: {self.name}",
                operation="checkAccess",
                provider="gcs",
            )

    async def upload(
        self,
        remote_path: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        bucket = await self._get_bucket()
        blob = bucket.blob(remote_path)
        blob.metadata = metadata
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)


def create_document_store(config: FirebaseConfig) -> FirestoreDocumentStore:
    """Build the Firestore document store for the configured environment."""
    return FirestoreDocumentStore(get_client(config))


def create_bucket_client(config: FirebaseConfig, bucket_name: str) -> GCSBucketClient:
    """Build the Cloud Storage bucket client for the configured environment."""
    return GCSBucketClient(lambda: get_storage_bucket(config, bucket_name), bucket_name)
