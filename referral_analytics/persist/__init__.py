"""Snapshot cache persistence."""
from .snapshot_store import (
    MemorySnapshotStore,
    SnapshotStore,
    SqliteSnapshotStore,
    build_cache_key,
    file_meta,
)

__all__ = [
    "MemorySnapshotStore",
    "SnapshotStore",
    "SqliteSnapshotStore",
    "build_cache_key",
    "file_meta",
]
