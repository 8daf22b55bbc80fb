"""Timestamp formatting shared by Firestore payloads and upload records."""

from datetime import datetime, timezone


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
