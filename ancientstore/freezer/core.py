"""
Append-only freezer that groups frozen items into chunk objects.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
import time
from typing import Any, Protocol

from ..config import ENCODING_JSON_GZ, FreezerConfig
from ..errors import (
    FatalBackendError,
    FreezerClosedError,
    InvalidRecordError,
    NotFoundError,
    OutOfBoundsError,
    OutOfOrderError,
    ReadOnlyError,
)
from ..kinds import Family, Kind, parse_kind
from ..storage.backend import INDEX_MARKER_KEY, CancelToken, ChunkLayout, ObjectBackend
from .cache import ItemCache
from .codec import ChunkCodec
from .record import HASH_LENGTH, AncientRecord, decode_hex, encode_hex

__all__ = ["AncientStore", "Freezer", "FreezerState"]


class AncientStore(Protocol):
    """Operations shared by the in-process freezer and its remote client."""

    def ancients(self) -> int: ...

    def has_ancient(self, kind: str | Kind, number: int) -> bool: ...

    def ancient(self, kind: str | Kind, number: int) -> bytes: ...

    def ancient_size(self, kind: str | Kind) -> int: ...

    def append_ancient(
        self, number: int, hash: bytes, header: bytes, body: bytes, receipts: bytes, td: bytes
    ) -> None: ...

    def truncate_ancients(self, items: int) -> None: ...

    def sync(self) -> None: ...

    def close(self) -> None: ...


class FreezerState(enum.Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    SYNCING = "syncing"
    TRUNCATING = "truncating"
    CLOSED = "closed"


class Freezer:
    """
    Owns the frozen count, the index marker and the chunk caches.

    Append, sync, truncate and close are serialized by one mutex. Reads only
    take the caches' own locks, and the frozen count is a plain attribute
    written under the mutex and read without it.
    """

    def __init__(
        self,
        backend: ObjectBackend,
        namespace: str,
        *,
        block_group_size: int = 32 * 32,
        hash_group_size: int = 32 * 32 * 32,
        encoding: str = ENCODING_JSON_GZ,
        read_only: bool = False,
        read_cache_limit: int = 0,
        write_cache_limit: int = 0,
        token: CancelToken | None = None,
    ):
        self.backend = backend
        self.namespace = namespace
        self.read_only = read_only
        self.log = logging.getLogger("ancientstore.freezer")
        self.layout = ChunkLayout(block_group_size, hash_group_size, encoding)
        self.codec = ChunkCodec(encoding)
        self._lock = threading.RLock()
        self._closed_event = threading.Event()
        self._state = FreezerState.INITIALIZING
        self._frozen = 0
        self._wcache: dict[Family, ItemCache] = {}
        self._rcache: dict[Family, ItemCache] = {}
        for family in Family:
            size = self.layout.group_size(family)
            self._wcache[family] = ItemCache(write_cache_limit or 2 * size, evict=False)
            self._rcache[family] = ItemCache(max(read_cache_limit or 2 * size, size))
        self._stats = {"bytes_read": 0, "bytes_written": 0, "downloads": 0, "uploads": 0, "deletes": 0}
        self._open(token)

    @classmethod
    def from_config(cls, backend: ObjectBackend, config: FreezerConfig) -> "Freezer":
        return cls(
            backend,
            config.namespace,
            block_group_size=config.block_group_size,
            hash_group_size=config.hash_group_size,
            encoding=config.encoding,
            read_only=config.read_only,
            read_cache_limit=config.read_cache_limit,
            write_cache_limit=config.write_cache_limit,
        )

    # Lifecycle -----------------------------------------------------------------

    def _open(self, token: CancelToken | None) -> None:
        start = time.time()
        self.backend.ensure(self.namespace, token=token)
        frontier = self._read_marker(token)
        if frontier > 0:
            for family in Family:
                self._warm(family, frontier, token)
        self._frozen = frontier
        self._state = FreezerState.READY
        self.log.info(
            "Freezer opened namespace=%s frozen=%d elapsed=%.3fs",
            self.namespace,
            frontier,
            time.time() - start,
        )

    def _warm(self, family: Family, frontier: int, token: CancelToken | None) -> None:
        """Load the chunk holding ``frontier - 1`` into the write cache."""

        start = self.layout.chunk_start(family, frontier - 1)
        try:
            items = self._download(family, start, token)
        except NotFoundError as exc:
            raise FatalBackendError(
                f"{family.value} chunk #{start} is missing below index marker {frontier}"
            ) from exc
        count = start
        for number, item in items:
            # Anything at or above the frontier is residue from an earlier truncation.
            if number >= frontier:
                break
            self._wcache[family].put(number, item)
            count += 1
        if count < frontier:
            raise FatalBackendError(
                f"{family.value} chunk #{start} ends at #{count - 1} below index marker {frontier}"
            )
        self.log.info("Pulled write cache family=%s start=%d size=%d", family.value, start, count - start)

    def close(self) -> None:
        """Flush every pending chunk, partial ones included, and stop."""

        with self._lock:
            if self._state is FreezerState.CLOSED:
                return
            try:
                if not self.read_only:
                    self._flush(partial=True, token=None)
            finally:
                self._state = FreezerState.CLOSED
                self._closed_event.set()
                self.log.info("Freezer closed frozen=%d", self._frozen)

    @property
    def closed(self) -> bool:
        return self._closed_event.is_set()

    @property
    def state(self) -> FreezerState:
        return self._state

    def _ensure_open(self) -> None:
        if self._state is FreezerState.CLOSED:
            raise FreezerClosedError("freezer is closed")

    def _ensure_writable(self) -> None:
        self._ensure_open()
        if self.read_only:
            raise ReadOnlyError("freezer is read-only")

    # Reads ---------------------------------------------------------------------

    def ancients(self) -> int:
        self._ensure_open()
        return self._frozen

    @property
    def frozen(self) -> int:
        return self._frozen

    def has_ancient(self, kind: str | Kind, number: int) -> bool:
        kind = parse_kind(kind)
        self._ensure_open()
        if number < 0 or number >= self._frozen:
            return False
        try:
            self.ancient(kind, number)
        except OutOfBoundsError:
            return False
        return True

    def ancient(self, kind: str | Kind, number: int, *, token: CancelToken | None = None) -> bytes:
        kind = parse_kind(kind)
        self._ensure_open()
        if number < 0 or number >= self._frozen:
            raise OutOfBoundsError(f"out of bounds: #{number} ({kind.value})")
        family = kind.family
        item = self._find_cached(family, number)
        if item is None:
            try:
                downloaded = self._download(family, number, token)
            except NotFoundError as exc:
                if number >= self._frozen:
                    raise OutOfBoundsError(f"out of bounds: #{number} ({kind.value})") from exc
                raise
            frozen = self._frozen
            cache = self._rcache[family]
            for n, value in downloaded:
                if n < frozen:
                    cache.put(n, value)
                if n == number:
                    item = value
            if item is None or number >= frozen:
                raise OutOfBoundsError(f"out of bounds: #{number} ({kind.value})")
        return self._item_bytes(kind, item)

    def ancient_size(self, kind: str | Kind) -> int:
        kind = parse_kind(kind)
        self._ensure_open()
        return self.backend.size(self.namespace, self.layout.prefix(kind.family))

    def _find_cached(self, family: Family, number: int) -> Any | None:
        item = self._wcache[family].get(number)
        if item is None:
            item = self._rcache[family].get(number)
        return item

    def _item_bytes(self, kind: Kind, item: Any) -> bytes:
        if kind is Kind.HASHES:
            return item
        return item.bytes_for(kind)

    # Writes --------------------------------------------------------------------

    def append_ancient(
        self, number: int, hash: bytes, header: bytes, body: bytes, receipts: bytes, td: bytes
    ) -> None:
        with self._lock:
            self._ensure_writable()
            if number < 0:
                raise OutOfBoundsError(f"negative item number #{number}")
            if number != self._frozen:
                raise OutOfOrderError(f"the append operation is out-order: got #{number}, want #{self._frozen}")
            record = AncientRecord.from_blobs(number, hash, header, body, receipts, td)
            for family in Family:
                item = record if family is Family.BLOCKS else record.hash
                self._wcache[family].put(number, item)
                self._rcache[family].put(number, item)
            self._frozen = number + 1
            wcache = self._wcache[Family.BLOCKS]
            if wcache.over_capacity and len(wcache) % wcache.limit == 1:
                self.log.warning("Write cache over capacity size=%d; sync is overdue", len(wcache))

    def sync(self, *, token: CancelToken | None = None) -> None:
        """Upload every complete chunk in the write caches and rewrite the marker."""

        with self._lock:
            self._ensure_writable()
            self._flush(partial=False, token=token)

    def _flush(self, *, partial: bool, token: CancelToken | None) -> None:
        frozen = self._frozen
        pending = len(self._wcache[Family.BLOCKS])
        self.log.info("Syncing ancients frozen=%d blocks=%d", frozen, pending)
        start = time.time()
        self._state = FreezerState.SYNCING
        try:
            for family in Family:
                self._flush_family(family, partial, token)
            self._write_marker(frozen, token)
        finally:
            self._state = FreezerState.READY
        elapsed = max(time.time() - start, 1e-9)
        self.log.info(
            "Finished syncing ancients frozen=%d blocks=%d elapsed=%.3fs bps=%.2f",
            frozen,
            pending,
            elapsed,
            pending / elapsed,
        )

    def _flush_family(self, family: Family, partial: bool, token: CancelToken | None) -> int:
        cache = self._wcache[family]
        size = self.layout.group_size(family)
        backfilled = False
        while True:
            keys = cache.keys()
            if not keys:
                return 0
            first = keys[0]
            if first % size == 0:
                break
            if backfilled:
                raise FatalBackendError(f"cannot align {family.value} write cache at #{first}")
            self.log.warning("Found out-of-order %s cache n=%d", family.value, first)
            self._backfill(family, first, token)
            backfilled = True
        uploaded = 0
        for offset in range(0, len(keys), size):
            group = keys[offset : offset + size]
            group_start = group[0]
            if group_start % size != 0 or group[-1] - group_start != len(group) - 1:
                raise FatalBackendError(f"non-contiguous {family.value} write cache at #{group_start}")
            complete = len(group) == size
            if not complete and not partial:
                break
            self._upload(family, group_start, cache.items(group), token)
            if not complete:
                break
            cache.splice(len(group))
            uploaded += len(group)
        return uploaded

    def _backfill(self, family: Family, first: int, token: CancelToken | None) -> None:
        """Fill the write cache prefix below ``first`` from its chunk object."""

        cache = self._wcache[family]
        for number, item in self._download(family, first, token):
            if number >= first:
                break
            cache.setdefault(number, item)

    def truncate_ancients(self, items: int, *, token: CancelToken | None = None) -> None:
        """Discard every item with a number >= ``items``."""

        with self._lock:
            self._ensure_writable()
            if items < 0:
                raise OutOfBoundsError(f"negative truncate target {items}")
            frozen = self._frozen
            if frozen <= items:
                self.log.debug("Truncate is a no-op frozen=%d target=%d", frozen, items)
                return
            self.log.info("Truncating ancients frozen=%d target=%d delta=%d", frozen, items, frozen - items)
            start = time.time()
            self._state = FreezerState.TRUNCATING
            try:
                # The marker is the durability point; chunks above it are shadowed.
                self._write_marker(items, token)
                for family in Family:
                    self._rcache[family].truncate_from(items)
                self._frozen = items
                for family in Family:
                    self._truncate_family(family, items, token)
            finally:
                self._state = FreezerState.READY
            self.log.info("Finished truncating ancients elapsed=%.3fs", time.time() - start)

    def _truncate_family(self, family: Family, items: int, token: CancelToken | None) -> None:
        size = self.layout.group_size(family)
        chunk_start = self.layout.chunk_start(family, items)
        cache = self._wcache[family]
        cache.truncate_from(items)
        if items % size:
            if any(n not in cache for n in range(chunk_start, items)):
                for number, item in self._download(family, chunk_start, token):
                    if number >= items:
                        break
                    cache.setdefault(number, item)
            survivors = [n for n in cache.keys() if n >= chunk_start]
            if survivors != list(range(chunk_start, items)):
                raise FatalBackendError(f"cannot rebuild {family.value} chunk at #{chunk_start}")
            self._upload(family, chunk_start, cache.items(survivors), token)
            delete_from = chunk_start + size
        else:
            delete_from = items
        self._delete_chunks(family, delete_from, token)

    def _delete_chunks(self, family: Family, delete_from: int, token: CancelToken | None) -> None:
        prefix = self.layout.prefix(family)
        cursor = f"{prefix}{delete_from:09d}"
        with contextlib.closing(self.backend.list(self.namespace, cursor, prefix=prefix, token=token)) as keys:
            doomed = []
            for key in keys:
                start = self.layout.parse_start(family, key)
                if start is not None and start >= delete_from:
                    doomed.append(key)
        for key in doomed:
            self.backend.delete(self.namespace, key, token=token)
            self._stats["deletes"] += 1
        if doomed:
            self.log.info("Deleted %d dangling %s chunks from #%d", len(doomed), family.value, delete_from)

    # Object I/O ----------------------------------------------------------------

    def _read_marker(self, token: CancelToken | None) -> int:
        self.log.info("Retrieving ancients number")
        try:
            contents = self.backend.get(self.namespace, INDEX_MARKER_KEY, token=token)
        except NotFoundError:
            return 0
        text = contents.decode("ascii", "replace").strip()
        if not text.isdigit():
            raise FatalBackendError(f"corrupt index marker {text!r}")
        return int(text)

    def _write_marker(self, number: int, token: CancelToken | None) -> None:
        self.log.info("Setting index marker number=%d", number)
        self.backend.put(self.namespace, INDEX_MARKER_KEY, str(number).encode("ascii"), token=token)

    def _upload(self, family: Family, start: int, items: list[Any], token: CancelToken | None) -> None:
        if family is Family.BLOCKS:
            payload = self.codec.encode([record.to_json() for record in items])
        else:
            payload = self.codec.encode([encode_hex(value) for value in items])
        self.backend.put(self.namespace, self.layout.key(family, start), payload, token=token)
        self._stats["uploads"] += 1
        self._stats["bytes_written"] += len(payload)

    def _download(self, family: Family, number: int, token: CancelToken | None) -> list[tuple[int, Any]]:
        """Fetch and decode the chunk holding ``number`` as (item number, item) pairs."""

        start = self.layout.chunk_start(family, number)
        payload = self.backend.get(self.namespace, self.layout.key(family, start), token=token)
        self._stats["downloads"] += 1
        self._stats["bytes_read"] += len(payload)
        raw_items = self.codec.decode(payload)
        decoded: list[tuple[int, Any]] = []
        for offset, raw in enumerate(raw_items):
            expected = start + offset
            if family is Family.BLOCKS:
                record = AncientRecord.from_json(raw)
                if record.number != expected:
                    raise InvalidRecordError(f"chunk {start} holds #{record.number} at #{expected}")
                decoded.append((expected, record))
            else:
                value = decode_hex(raw)
                if len(value) != HASH_LENGTH:
                    raise InvalidRecordError(f"chunk {start} holds a malformed hash at #{expected}")
                decoded.append((expected, value))
        return decoded

    def stats(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "state": self._state.value,
            "frozen": self._frozen,
            "read_only": self.read_only,
            "encoding": self.layout.encoding,
            "pending_blocks": len(self._wcache[Family.BLOCKS]),
            "pending_hashes": len(self._wcache[Family.HASHES]),
            **self._stats,
        }
