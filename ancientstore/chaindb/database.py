"""
Unified chain database over a hot key-value store and a freezer.
"""

from __future__ import annotations

import logging

from ..config import PipelineConfig
from ..errors import GapError, GenesisMismatchError
from ..freezer import AncientStore
from ..kinds import Kind
from . import schema
from .kv import KeyValueStore
from .pipeline import FreezingPipeline


class ChainDatabase:
    """
    Writes go to the hot store; reads fall back to the freezer for frozen numbers.

    Opening validates that both stores describe the same chain and that the hot
    store continues where the freezer ends, repairing a recoverable gap by
    rolling the hot store back to the freezer.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        freezer: AncientStore,
        *,
        pipeline_config: PipelineConfig | None = None,
        read_only: bool = False,
        start_pipeline: bool = True,
    ):
        self.kv = kv
        self.freezer = freezer
        self.read_only = read_only
        self.log = logging.getLogger("ancientstore.chaindb")
        self.reconcile()
        self.pipeline = FreezingPipeline(kv, freezer, pipeline_config)
        if start_pipeline and not read_only:
            self.pipeline.start()

    # Startup reconciliation ------------------------------------------------------

    def reconcile(self) -> None:
        kv_genesis = schema.read_canonical_hash(self.kv, 0)
        frozen = self.freezer.ancients()
        if kv_genesis is None:
            # Fresh hot store; a non-empty freezer is validated against the genesis higher up.
            self.log.info("Hot store empty frozen=%d", frozen)
            return
        if frozen == 0:
            self._check_nothing_frozen(kv_genesis)
            return
        fz_genesis = self.freezer.ancient(Kind.HASHES, 0)
        if fz_genesis != kv_genesis:
            raise GenesisMismatchError(
                f"genesis mismatch: 0x{kv_genesis.hex()} (hot) != 0x{fz_genesis.hex()} (ancients)"
            )
        gap = self._gap(frozen)
        if gap is None:
            return
        if self.read_only:
            raise GapError(f"gap (chaindb=#{gap} frozen=#{frozen}) in the chain between ancients and hot store")
        self.truncate_kv_to_freezer(frozen)
        gap = self._gap(frozen)
        if gap is not None:
            raise GapError(f"gap (chaindb=#{gap} frozen=#{frozen}) persists after truncating the hot store")

    def _gap(self, frozen: int) -> int | None:
        """Return the hot head number when the hot store does not continue at ``frozen``."""

        if self.kv.has(schema.header_hash_key(frozen)):
            return None
        head = schema.read_header_number(self.kv, schema.read_head_header_hash(self.kv))
        if head is not None and head > frozen - 1:
            return head
        return None

    def _check_nothing_frozen(self, kv_genesis: bytes) -> None:
        head = schema.read_head_header_hash(self.kv)
        if head is None or head == kv_genesis:
            return
        if schema.read_canonical_hash(self.kv, 1) is None:
            raise GapError("ancient chain segments already extracted but the freezer is empty")

    def truncate_kv_to_freezer(self, frozen: int) -> None:
        """Delete hot block data at or above ``frozen`` and point the heads at the freezer top."""

        head_hash = schema.read_head_header_hash(self.kv)
        number = schema.read_header_number(self.kv, head_hash) or 0
        head_fast = schema.read_header_number(self.kv, schema.read_head_fast_block_hash(self.kv)) or 0
        head_full = schema.read_header_number(self.kv, schema.read_head_block_hash(self.kv)) or 0
        self.log.warning(
            "Persistent freezer/hot store gap: truncating hot store to freezer height ancients=%d head=%d fast=%d full=%d",
            frozen,
            number,
            head_fast,
            head_full,
        )
        batch = self.kv.batch()
        while number > frozen - 1 and number != 0:
            for hash in schema.read_all_hashes(self.kv, number):
                schema.delete_block(batch, hash, number)
            schema.delete_canonical_hash(batch, number)
            if number % 10000 == 0:
                self.log.warning("Removing hot block data number=%d", number)
                batch.write()
            number -= 1
        batch.write()

        top = frozen - 1
        top_hash = self.freezer.ancient(Kind.HASHES, top)
        self.log.warning("Writing hot head header number=%d hash=0x%s", top, top_hash.hex())
        batch = self.kv.batch()
        schema.write_head_header_hash(batch, top_hash)
        if schema.read_header_number(self.kv, top_hash) is None:
            schema.write_header_number(batch, top_hash, top)
        if head_fast:
            schema.write_head_fast_block_hash(batch, top_hash)
        if head_full:
            schema.write_head_block_hash(batch, top_hash)
        batch.write()

    # Reads -----------------------------------------------------------------------

    def ancients(self) -> int:
        return self.freezer.ancients()

    def has_ancient(self, kind: str | Kind, number: int) -> bool:
        return self.freezer.has_ancient(kind, number)

    def ancient(self, kind: str | Kind, number: int) -> bytes:
        return self.freezer.ancient(kind, number)

    def ancient_size(self, kind: str | Kind) -> int:
        return self.freezer.ancient_size(kind)

    def _frozen(self, number: int) -> bool:
        return number < self.freezer.ancients()

    def read_canonical_hash(self, number: int) -> bytes | None:
        hash = schema.read_canonical_hash(self.kv, number)
        if hash is None and self._frozen(number):
            hash = self.freezer.ancient(Kind.HASHES, number)
        return hash

    def _read_component(self, kind: Kind, number: int, reader) -> bytes | None:
        hash = schema.read_canonical_hash(self.kv, number)
        if hash is not None:
            value = reader(self.kv, hash, number)
            if value is not None:
                return value
        if self._frozen(number):
            return self.freezer.ancient(kind, number)
        return None

    def read_header(self, number: int) -> bytes | None:
        return self._read_component(Kind.HEADERS, number, schema.read_header)

    def read_body(self, number: int) -> bytes | None:
        return self._read_component(Kind.BODIES, number, schema.read_body)

    def read_receipts(self, number: int) -> bytes | None:
        return self._read_component(Kind.RECEIPTS, number, schema.read_receipts)

    def read_td(self, number: int) -> bytes | None:
        return self._read_component(Kind.DIFFS, number, schema.read_td)

    # Writes ----------------------------------------------------------------------

    def write_block(
        self, number: int, hash: bytes, header: bytes, body: bytes, receipts: bytes, td: bytes, *, canonical: bool = True
    ) -> None:
        batch = self.kv.batch()
        schema.write_block(batch, number, hash, header, body, receipts, td, canonical=canonical)
        batch.write()

    def set_head(self, hash: bytes) -> None:
        """Point the header, fast and full head markers at ``hash``."""

        batch = self.kv.batch()
        schema.write_head_header_hash(batch, hash)
        schema.write_head_fast_block_hash(batch, hash)
        schema.write_head_block_hash(batch, hash)
        batch.write()
        self.pipeline.trigger()

    def close(self) -> None:
        self.pipeline.stop()
        try:
            self.freezer.close()
        finally:
            self.kv.close()
        self.log.info("Chain database closed")
