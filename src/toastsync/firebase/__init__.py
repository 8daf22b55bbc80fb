"""Firebase client and snapshot batch writes."""

from toastsync.firebase.batch_writer import BatchWriteEngine, SnapshotWriteResult
from toastsync.firebase.client import create_bucket_client, create_document_store, get_client

__all__ = [
    "BatchWriteEngine",
    "SnapshotWriteResult",
    "create_bucket_client",
    "create_document_store",
    "get_client",
]
