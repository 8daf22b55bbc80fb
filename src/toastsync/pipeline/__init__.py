"""Pipelines for syncing local snapshots to Cloud Storage and Firestore."""

from .snapshot_sync import sync_snapshots_to_firestore
from .upload import UploadEngine

__all__ = ["UploadEngine", "sync_snapshots_to_firestore"]
