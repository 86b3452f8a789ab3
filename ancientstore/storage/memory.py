"""
In-process object backend used by tests and throwaway deployments.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator

from ..errors import FatalBackendError, NotFoundError
from .backend import LIST_PAGE_SIZE, CancelToken, check_token

__all__ = ["MemoryBackend"]


class MemoryBackend:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._namespaces: dict[str, dict[str, bytes]] = {}

    def _bucket(self, namespace: str) -> dict[str, bytes]:
        try:
            return self._namespaces[namespace]
        except KeyError as exc:
            raise FatalBackendError(f"Namespace {namespace} does not exist") from exc

    def ensure(self, namespace: str, *, token: CancelToken | None = None) -> None:
        check_token(token)
        with self._lock:
            self._namespaces.setdefault(namespace, {})

    def put(self, namespace: str, key: str, data: bytes, *, token: CancelToken | None = None) -> None:
        check_token(token)
        with self._lock:
            self._bucket(namespace)[key] = bytes(data)

    def get(self, namespace: str, key: str, *, token: CancelToken | None = None) -> bytes:
        check_token(token)
        with self._lock:
            try:
                return self._bucket(namespace)[key]
            except KeyError as exc:
                raise NotFoundError(f"Object {key} not found") from exc

    def delete(self, namespace: str, key: str, *, token: CancelToken | None = None) -> None:
        check_token(token)
        with self._lock:
            self._bucket(namespace).pop(key, None)

    def list(
        self,
        namespace: str,
        cursor: str = "",
        *,
        prefix: str = "",
        token: CancelToken | None = None,
    ) -> Iterator[str]:
        while True:
            check_token(token)
            with self._lock:
                page = sorted(k for k in self._bucket(namespace) if k > cursor and k.startswith(prefix))
            page = page[:LIST_PAGE_SIZE]
            if not page:
                return
            yield from page
            cursor = page[-1]

    def size(self, namespace: str, prefix: str, *, token: CancelToken | None = None) -> int:
        check_token(token)
        with self._lock:
            return sum(len(v) for k, v in self._bucket(namespace).items() if k.startswith(prefix))

    def keys(self, namespace: str) -> list[str]:
        with self._lock:
            return sorted(self._bucket(namespace))
