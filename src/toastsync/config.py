"""Configuration loading and validation."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_GCS_BUCKET = "toast-stats-data"
DEFAULT_GCS_PREFIX = "snapshots"
DEFAULT_CACHE_DIR = Path("./cache")


class FirebaseConfig(BaseModel):
    """Firebase configuration for a specific environment."""

    credentials_path: Path | None = None
    project_id: str | None = None
    collection: str = "snapshots"

    @field_validator("credentials_path", mode="before")
    @classmethod
    def expand_path(cls, v: str | None) -> Path | None:
        """Expand environment variables and ~ in path."""
        if v is None or v == "":
            return None
        expanded = os.path.expandvars(os.path.expanduser(str(v)))
        return Path(expanded)


class BatchWriteConfig(BaseModel):
    """Limits and retry policy for chunked Firestore batch writes."""

    model_config = ConfigDict(frozen=True)

    max_operations_per_batch: int = Field(default=50, ge=1)
    max_concurrent_batches: int = Field(default=3, ge=1)
    batch_timeout_ms: int = Field(default=30_000, gt=0)
    total_timeout_ms: int = Field(default=300_000, gt=0)
    max_retries: int = Field(default=3, ge=0)
    initial_backoff_ms: int = Field(default=1_000, ge=0)
    max_backoff_ms: int = Field(default=30_000, ge=0)
    jitter_factor: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "BatchWriteConfig":
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ValueError(
                f"max_backoff_ms ({self.max_backoff_ms}) must be >= "
                f"initial_backoff_ms ({self.initial_backoff_ms})"
            )
        return self


class GCSConfig(BaseModel):
    """Cloud Storage destination for snapshot uploads."""

    bucket: str = DEFAULT_GCS_BUCKET
    prefix: str = DEFAULT_GCS_PREFIX
    project_id: str | None = None

    @field_validator("prefix")
    @classmethod
    def strip_slashes(cls, v: str) -> str:
        return v.strip("/")


class UploadConfig(BaseModel):
    """Upload pipeline configuration."""

    cache_dir: Path = DEFAULT_CACHE_DIR
    concurrency: int = Field(default=10, ge=1)
    gcs: GCSConfig = GCSConfig()
    batch_write: BatchWriteConfig = BatchWriteConfig()


Env = Literal["prod", "dev"]


def load_firebase_config(config_path: Path, env: Env = "dev") -> FirebaseConfig:
    """Load Firebase config for the specified environment."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    if env not in data:
        raise ValueError(f"Environment '{env}' not found in config. Available: {list(data.keys())}")

    return FirebaseConfig(**(data[env] or {}))


def load_upload_config(config_path: Path | None = None) -> UploadConfig:
    """
    Load upload pipeline configuration.

    A missing file gives the defaults. Environment variables win over the file:
    GCS_BUCKET, GCS_PREFIX, GCP_PROJECT_ID and TOASTSYNC_CACHE_DIR.
    """
    data: dict = {}
    if config_path is not None and config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    gcs = dict(data.get("gcs") or {})
    for env_var, key in (
        ("GCS_BUCKET", "bucket"),
        ("GCS_PREFIX", "prefix"),
        ("GCP_PROJECT_ID", "project_id"),
    ):
        value = os.environ.get(env_var)
        if value:
            gcs[key] = value
    data["gcs"] = gcs

    cache_dir = os.environ.get("TOASTSYNC_CACHE_DIR")
    if cache_dir:
        data["cache_dir"] = cache_dir

    return UploadConfig(**data)
