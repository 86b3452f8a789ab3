"""
Filesystem object backend: one directory per namespace, one file per key.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from pathlib import Path

from ..errors import FatalBackendError, NotFoundError, TransientBackendError
from .backend import LIST_PAGE_SIZE, CancelToken, check_token

__all__ = ["FilesystemBackend"]


class FilesystemBackend:
    """
    Stores every object as a regular file below ``root/<namespace>/``.

    Writes go to a temporary sibling which is fsynced and atomically renamed
    over the destination, so a reader never observes a torn object.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.log = logging.getLogger("ancientstore.backend.fs")
        self._lock = threading.RLock()

    def _namespace_dir(self, namespace: str) -> Path:
        if not namespace or "/" in namespace or namespace in (".", ".."):
            raise FatalBackendError(f"Invalid namespace {namespace!r}")
        return self.root / namespace

    def _path(self, namespace: str, key: str) -> Path:
        parts = key.split("/")
        if not key or any(part in ("", ".", "..") for part in parts):
            raise FatalBackendError(f"Invalid object key {key!r}")
        base = self._namespace_dir(namespace)
        if not base.is_dir():
            raise FatalBackendError(f"Namespace {namespace} does not exist")
        return base.joinpath(*parts)

    def _fsync(self, fh) -> None:
        fh.flush()
        os.fsync(fh.fileno())

    def ensure(self, namespace: str, *, token: CancelToken | None = None) -> None:
        check_token(token)
        path = self._namespace_dir(namespace)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FatalBackendError(f"Cannot create namespace {namespace}: {exc}") from exc
        self.log.debug("Namespace ready: %s", path)

    def put(self, namespace: str, key: str, data: bytes, *, token: CancelToken | None = None) -> None:
        check_token(token)
        path = self._path(namespace, key)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                with tmp_path.open("wb") as fh:
                    fh.write(bytes(data))
                    self._fsync(fh)
                os.replace(tmp_path, path)
        except OSError as exc:
            raise TransientBackendError(f"Write of {key} failed: {exc}") from exc

    def get(self, namespace: str, key: str, *, token: CancelToken | None = None) -> bytes:
        check_token(token)
        path = self._path(namespace, key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Object {key} not found") from exc
        except OSError as exc:
            raise TransientBackendError(f"Read of {key} failed: {exc}") from exc

    def delete(self, namespace: str, key: str, *, token: CancelToken | None = None) -> None:
        check_token(token)
        path = self._path(namespace, key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise TransientBackendError(f"Delete of {key} failed: {exc}") from exc

    def _all_keys(self, namespace: str, prefix: str) -> list[str]:
        base = self._namespace_dir(namespace)
        if not base.is_dir():
            raise FatalBackendError(f"Namespace {namespace} does not exist")
        keys = []
        for dirpath, _dirnames, filenames in os.walk(base):
            rel_dir = Path(dirpath).relative_to(base)
            for name in filenames:
                if name.endswith(".tmp"):
                    continue
                key = (rel_dir / name).as_posix() if rel_dir.parts else name
                if key.startswith(prefix):
                    keys.append(key)
        keys.sort()
        return keys

    def list(
        self,
        namespace: str,
        cursor: str = "",
        *,
        prefix: str = "",
        token: CancelToken | None = None,
    ) -> Iterator[str]:
        check_token(token)
        keys = [key for key in self._all_keys(namespace, prefix) if key > cursor]
        for offset in range(0, len(keys), LIST_PAGE_SIZE):
            check_token(token)
            yield from keys[offset : offset + LIST_PAGE_SIZE]

    def size(self, namespace: str, prefix: str, *, token: CancelToken | None = None) -> int:
        total = 0
        for key in self._all_keys(namespace, prefix):
            check_token(token)
            total += self._path(namespace, key).stat().st_size
        return total
