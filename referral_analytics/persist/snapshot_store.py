"""Snapshot cache stores.

A build is keyed by the fingerprints (name, size, mtime) of its source
files, so an unchanged set of inputs reloads the serialized index instead of
re-streaming every file. Stores only need exact-key lookup.
"""
from __future__ import annotations
import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Union

from loguru import logger

from ..core.custom_types import FileMeta

PRAGMAS = [
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots(
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    created_at INTEGER NOT NULL
)
"""


def file_meta(path: Union[str, Path]) -> FileMeta:
    p = Path(path)
    st = p.stat()
    return FileMeta(name=p.name, size=st.st_size, last_modified=int(st.st_mtime * 1000))


def _meta_token(meta: Optional[FileMeta]) -> str:
    if meta is None:
        return "none"
    return f"{meta.name}:{meta.size}:{meta.last_modified}"


def build_cache_key(version: str, customers: FileMeta, tx_files: List[FileMeta],
                    referral_codes: Optional[FileMeta] = None, settings_digest: str = "") -> str:
    """Deterministic key: `version__customers__tx1|tx2__codes[__cfg:digest]`.

    `settings_digest` fingerprints the settings that shape the built index, so
    a config change never serves an index built under the old values.
    """
    tx_part = "|".join(_meta_token(m) for m in tx_files)
    key = f"{version}__{_meta_token(customers)}__{tx_part}__codes:{_meta_token(referral_codes)}"
    return f"{key}__cfg:{settings_digest}" if settings_digest else key


class SnapshotStore(Protocol):
    def get(self, key: str) -> Optional[dict]: ...

    def put(self, key: str, snapshot: dict) -> None: ...

    def clear(self) -> None: ...


class MemorySnapshotStore:
    """Process-local store for tests and one-off sessions."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[dict]:
        payload = self._items.get(key)
        return json.loads(payload) if payload is not None else None

    def put(self, key: str, snapshot: dict) -> None:
        # stored encoded so callers cannot mutate a cached snapshot in place
        self._items[key] = json.dumps(snapshot)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class SqliteSnapshotStore:
    """Single-table sqlite store (WAL mode), safe to share between threads."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.RLock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False, timeout=30)
        for p in PRAGMAS:
            try:
                self._conn.execute(p)
            except sqlite3.DatabaseError as e:  # pragma: no cover
                logger.warning(f"snapshot_store.pragma_failed pragma={p} err={e}")
        self._conn.execute(SCHEMA)
        self._conn.commit()
        logger.info(f"snapshot_store.open path={self.path}")

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            row = self._conn.execute("SELECT payload FROM snapshots WHERE key=?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def put(self, key: str, snapshot: dict) -> None:
        payload = json.dumps(snapshot)
        with self._tx() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO snapshots(key, payload, created_at) VALUES(?,?,?)",
                (key, payload, int(time.time() * 1000)),
            )
        logger.debug(f"snapshot_store.put key={key} bytes={len(payload)}")

    def clear(self) -> None:
        with self._tx() as cur:
            cur.execute("DELETE FROM snapshots")

    def keys(self) -> List[str]:
        with self._lock:
            return [r[0] for r in self._conn.execute("SELECT key FROM snapshots ORDER BY created_at").fetchall()]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
