"""
Hot key-value stores holding recent, mutable chain data.
"""

from __future__ import annotations

import contextlib
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Protocol, runtime_checkable

__all__ = ["KeyValueStore", "WriteBatch", "MemoryKV", "SQLiteKV", "KVError"]


class KVError(Exception):
    """Raised when the hot store encounters an unrecoverable issue."""


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: bytes) -> bytes | None: ...

    def has(self, key: bytes) -> bool: ...

    def put(self, key: bytes, value: bytes) -> None: ...

    def delete(self, key: bytes) -> None: ...

    def batch(self) -> "WriteBatch": ...

    def iterate(self, prefix: bytes = b"") -> Iterator[tuple[bytes, bytes]]: ...

    def close(self) -> None: ...


class WriteBatch:
    """Buffers puts and deletes until ``write`` applies them atomically."""

    def __init__(self, store: "MemoryKV | SQLiteKV"):
        self.store = store
        self.ops: list[tuple[bytes, bytes | None]] = []

    def put(self, key: bytes, value: bytes) -> None:
        self.ops.append((bytes(key), bytes(value)))

    def delete(self, key: bytes) -> None:
        self.ops.append((bytes(key), None))

    def __len__(self) -> int:
        return len(self.ops)

    def write(self) -> None:
        if self.ops:
            self.store._apply(self.ops)
        self.ops = []


class MemoryKV:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: dict[bytes, bytes] = {}
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise KVError("key-value store is closed")

    def get(self, key: bytes) -> bytes | None:
        with self._lock:
            self._ensure_open()
            return self._data.get(bytes(key))

    def has(self, key: bytes) -> bool:
        return self.get(key) is not None

    def put(self, key: bytes, value: bytes) -> None:
        self._apply([(bytes(key), bytes(value))])

    def delete(self, key: bytes) -> None:
        self._apply([(bytes(key), None)])

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _apply(self, ops: list[tuple[bytes, bytes | None]]) -> None:
        with self._lock:
            self._ensure_open()
            for key, value in ops:
                if value is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = value

    def iterate(self, prefix: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        with self._lock:
            self._ensure_open()
            rows = sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))
        yield from rows

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def close(self) -> None:
        self._closed = True


class SQLiteKV:
    """Single-table SQLite store of blob keys and values."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=FULL")
        self._closed = False
        with self._lock, self._conn:
            self._conn.execute("CREATE TABLE IF NOT EXISTS kv (key BLOB PRIMARY KEY, value BLOB NOT NULL)")

    def __del__(self):
        with contextlib.suppress(Exception):
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise KVError("key-value store is closed")

    def get(self, key: bytes) -> bytes | None:
        with self._lock:
            self._ensure_open()
            row = self._conn.execute("SELECT value FROM kv WHERE key=?", (bytes(key),)).fetchone()
        return bytes(row[0]) if row else None

    def has(self, key: bytes) -> bool:
        with self._lock:
            self._ensure_open()
            row = self._conn.execute("SELECT 1 FROM kv WHERE key=?", (bytes(key),)).fetchone()
        return row is not None

    def put(self, key: bytes, value: bytes) -> None:
        self._apply([(bytes(key), bytes(value))])

    def delete(self, key: bytes) -> None:
        self._apply([(bytes(key), None)])

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _apply(self, ops: list[tuple[bytes, bytes | None]]) -> None:
        with self._lock:
            self._ensure_open()
            try:
                with self._conn:
                    for key, value in ops:
                        if value is None:
                            self._conn.execute("DELETE FROM kv WHERE key=?", (key,))
                        else:
                            self._conn.execute(
                                "INSERT INTO kv(key, value) VALUES(?, ?) "
                                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                                (key, value),
                            )
            except sqlite3.DatabaseError as exc:
                raise KVError(f"write batch failed: {exc}") from exc

    def iterate(self, prefix: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        prefix = bytes(prefix)
        with self._lock:
            self._ensure_open()
            if prefix:
                upper = _prefix_upper_bound(prefix)
                if upper is None:
                    rows = self._conn.execute(
                        "SELECT key, value FROM kv WHERE key>=? ORDER BY key", (prefix,)
                    ).fetchall()
                else:
                    rows = self._conn.execute(
                        "SELECT key, value FROM kv WHERE key>=? AND key<? ORDER BY key", (prefix, upper)
                    ).fetchall()
            else:
                rows = self._conn.execute("SELECT key, value FROM kv ORDER BY key").fetchall()
        for key, value in rows:
            yield bytes(key), bytes(value)

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True


def _prefix_upper_bound(prefix: bytes) -> bytes | None:
    """Smallest key greater than every key starting with ``prefix``."""

    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])
