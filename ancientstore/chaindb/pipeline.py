"""
Background promotion of immutable blocks from the hot store into the freezer.
"""

from __future__ import annotations

import logging
import threading
import time

from ..config import PipelineConfig
from ..errors import AncientError
from ..freezer import AncientStore
from ..rpc.client import RPCClientError
from . import schema
from .kv import KeyValueStore, KVError


class FreezingPipeline:
    """
    Moves canonical blocks older than ``threshold`` into the freezer.

    Each cycle appends up to ``batch_limit`` blocks, syncs the freezer and only
    then deletes the promoted blocks (and any side chains at the same heights)
    from the hot store. Genesis always stays in the hot store.
    """

    def __init__(self, kv: KeyValueStore, freezer: AncientStore, config: PipelineConfig | None = None):
        self.kv = kv
        self.freezer = freezer
        self.config = config or PipelineConfig()
        self.log = logging.getLogger("ancientstore.pipeline")
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="freezer-pipeline", daemon=True)
        self._thread.start()
        self.log.info(
            "Freezing pipeline started threshold=%d batch=%d", self.config.threshold, self.config.batch_limit
        )

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            self.log.info("Freezing pipeline stopped")

    def trigger(self) -> None:
        """Run the next cycle without waiting for the recheck interval."""

        self._wake.set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        delay = 0.0
        while not self._stop.is_set():
            if delay:
                self._wake.wait(delay)
                self._wake.clear()
                if self._stop.is_set():
                    return
            try:
                promoted = self.freeze_once()
            except (AncientError, RPCClientError, KVError) as exc:
                self.log.warning("Freezing cycle failed: %s", exc)
                promoted = 0
            except Exception:
                self.log.exception("Unexpected freezing failure")
                promoted = 0
            # Small batches mean we have caught up; wait for more blocks.
            delay = self.config.recheck_interval if promoted < self.config.batch_limit else 0.0

    def freeze_once(self) -> int:
        """Run one promotion cycle and return the number of promoted blocks."""

        head_hash = schema.read_head_block_hash(self.kv)
        if head_hash is None:
            self.log.debug("Current full block hash unavailable")
            return 0
        head = schema.read_header_number(self.kv, head_hash)
        threshold = self.config.threshold
        if head is None:
            self.log.warning("Current full block number unavailable hash=%s", head_hash.hex())
            return 0
        if head < threshold:
            self.log.debug("Current full block not old enough number=%d threshold=%d", head, threshold)
            return 0
        frozen = self.freezer.ancients()
        # Blocks up to and including head - threshold are immutable.
        if head - threshold < frozen:
            self.log.debug("Ancient blocks frozen already number=%d frozen=%d", head, frozen)
            return 0
        limit = min(head - threshold + 1, frozen + self.config.batch_limit)

        start = time.time()
        number = frozen
        promoted_hashes: list[bytes] = []
        while number < limit:
            if self._stop.is_set():
                break
            hash = schema.read_canonical_hash(self.kv, number)
            if hash is None:
                self.log.error("Canonical hash missing, can't freeze number=%d", number)
                break
            header = schema.read_header(self.kv, hash, number)
            body = schema.read_body(self.kv, hash, number)
            receipts = schema.read_receipts(self.kv, hash, number)
            td = schema.read_td(self.kv, hash, number)
            missing = [
                name
                for name, value in (("header", header), ("body", body), ("receipts", receipts), ("td", td))
                if value is None
            ]
            if missing:
                self.log.error("Block components missing, can't freeze number=%d missing=%s", number, missing)
                break
            try:
                self.freezer.append_ancient(number, hash, header, body, receipts, td)
            except (AncientError, RPCClientError) as exc:
                self.log.error("Freezer append failed number=%d error=%s", number, exc)
                break
            promoted_hashes.append(hash)
            number += 1

        if number == frozen:
            return 0
        self.freezer.sync()
        self._prune(frozen, promoted_hashes)
        elapsed = max(time.time() - start, 1e-9)
        count = number - frozen
        self.log.info(
            "Deep froze chain segment blocks=%d from=%d to=%d elapsed=%.3fs bps=%.2f",
            count,
            frozen,
            number - 1,
            elapsed,
            count / elapsed,
        )
        return count

    def _prune(self, first: int, hashes: list[bytes]) -> None:
        """Delete promoted canonical blocks and same-height side chains from the hot store."""

        batch = self.kv.batch()
        side_chains = 0
        for offset, canonical in enumerate(hashes):
            number = first + offset
            if number == 0:
                continue
            for hash in schema.read_all_hashes(self.kv, number):
                if hash == canonical:
                    # The number mapping stays so head pointers can still be resolved.
                    schema.delete_block_without_number(batch, hash, number)
                else:
                    schema.delete_block(batch, hash, number)
                    side_chains += 1
            schema.delete_canonical_hash(batch, number)
        batch.write()
        if side_chains:
            self.log.debug("Deleted frozen side chains count=%d", side_chains)
