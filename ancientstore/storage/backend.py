"""
Object backend contract, cancellation tokens and the chunk key layout.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from ..errors import CancelledError, NotSupportedError
from ..kinds import Family

__all__ = [
    "INDEX_MARKER_KEY",
    "CancelToken",
    "ChunkLayout",
    "ObjectBackend",
]

INDEX_MARKER_KEY = "index-marker"
LIST_PAGE_SIZE = 1000


class CancelToken:
    """Cooperative cancellation flag with an optional absolute deadline."""

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        if self.cancelled:
            raise CancelledError("operation cancelled")


def check_token(token: CancelToken | None) -> None:
    if token is not None:
        token.check()


@runtime_checkable
class ObjectBackend(Protocol):
    """Opaque byte storage keyed by printable strings inside a namespace."""

    def ensure(self, namespace: str, *, token: CancelToken | None = None) -> None:
        """Create the namespace if missing; succeed if it already exists."""

    def put(self, namespace: str, key: str, data: bytes, *, token: CancelToken | None = None) -> None:
        """Overwrite ``key``; durable on return."""

    def get(self, namespace: str, key: str, *, token: CancelToken | None = None) -> bytes:
        """Return the object bytes or raise ``NotFoundError``."""

    def delete(self, namespace: str, key: str, *, token: CancelToken | None = None) -> None:
        """Remove ``key``; deleting a missing key succeeds."""

    def list(
        self,
        namespace: str,
        cursor: str = "",
        *,
        prefix: str = "",
        token: CancelToken | None = None,
    ) -> Iterator[str]:
        """Yield keys strictly greater than ``cursor`` in lexicographic order."""

    def size(self, namespace: str, prefix: str, *, token: CancelToken | None = None) -> int:
        """Return the total byte size of objects under ``prefix``."""


def unsupported_size(backend: object) -> int:
    raise NotSupportedError(f"{type(backend).__name__} cannot aggregate object sizes")


class ChunkLayout:
    """Maps item numbers to aligned chunk keys for both families."""

    def __init__(self, block_group_size: int, hash_group_size: int, encoding: str) -> None:
        self.group_sizes = {Family.BLOCKS: block_group_size, Family.HASHES: hash_group_size}
        self.encoding = encoding

    def group_size(self, family: Family) -> int:
        return self.group_sizes[family]

    def chunk_start(self, family: Family, number: int) -> int:
        size = self.group_sizes[family]
        return (number // size) * size

    def key(self, family: Family, start: int) -> str:
        return f"{family.value}/{start:09d}{self.encoding}"

    def key_for(self, family: Family, number: int) -> str:
        return self.key(family, self.chunk_start(family, number))

    def prefix(self, family: Family) -> str:
        return f"{family.value}/"

    def parse_start(self, family: Family, key: str) -> int | None:
        """Return the chunk start encoded in ``key`` or None for foreign keys."""

        prefix = self.prefix(family)
        if not key.startswith(prefix) or not key.endswith(self.encoding):
            return None
        digits = key[len(prefix) : len(key) - len(self.encoding)]
        if not digits.isdigit():
            return None
        return int(digits)
