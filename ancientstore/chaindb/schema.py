"""
Key layout and accessors for chain data kept in the hot key-value store.

Numbers are encoded as 8-byte big-endian integers so that iteration order
matches block order.
"""

from __future__ import annotations

from typing import Protocol

from .kv import KeyValueStore

HEADER_PREFIX = b"h"  # h + num + hash -> header
HEADER_TD_SUFFIX = b"t"  # h + num + hash + t -> total difficulty
HEADER_HASH_SUFFIX = b"n"  # h + num + n -> canonical hash
HEADER_NUMBER_PREFIX = b"H"  # H + hash -> num
BLOCK_BODY_PREFIX = b"b"  # b + num + hash -> body
BLOCK_RECEIPTS_PREFIX = b"r"  # r + num + hash -> receipts

HEAD_HEADER_KEY = b"LastHeader"
HEAD_BLOCK_KEY = b"LastBlock"
HEAD_FAST_BLOCK_KEY = b"LastFast"

HASH_LENGTH = 32


class Writer(Protocol):
    def put(self, key: bytes, value: bytes) -> None: ...

    def delete(self, key: bytes) -> None: ...


def encode_number(number: int) -> bytes:
    return number.to_bytes(8, "big")


def decode_number(data: bytes) -> int:
    return int.from_bytes(data, "big")


def header_key_prefix(number: int) -> bytes:
    return HEADER_PREFIX + encode_number(number)


def header_key(number: int, hash: bytes) -> bytes:
    return HEADER_PREFIX + encode_number(number) + hash


def header_td_key(number: int, hash: bytes) -> bytes:
    return header_key(number, hash) + HEADER_TD_SUFFIX


def header_hash_key(number: int) -> bytes:
    return HEADER_PREFIX + encode_number(number) + HEADER_HASH_SUFFIX


def header_number_key(hash: bytes) -> bytes:
    return HEADER_NUMBER_PREFIX + hash


def block_body_key(number: int, hash: bytes) -> bytes:
    return BLOCK_BODY_PREFIX + encode_number(number) + hash


def block_receipts_key(number: int, hash: bytes) -> bytes:
    return BLOCK_RECEIPTS_PREFIX + encode_number(number) + hash


# Canonical hashes -------------------------------------------------------------


def read_canonical_hash(db: KeyValueStore, number: int) -> bytes | None:
    return db.get(header_hash_key(number))


def write_canonical_hash(db: Writer, hash: bytes, number: int) -> None:
    db.put(header_hash_key(number), hash)


def delete_canonical_hash(db: Writer, number: int) -> None:
    db.delete(header_hash_key(number))


def read_all_hashes(db: KeyValueStore, number: int) -> list[bytes]:
    """Hashes of every stored header at ``number``, canonical or not."""

    prefix = header_key_prefix(number)
    hashes = []
    for key, _value in db.iterate(prefix):
        if len(key) == len(prefix) + HASH_LENGTH:
            hashes.append(key[len(prefix) :])
    return hashes


# Header numbers and head pointers ----------------------------------------------


def read_header_number(db: KeyValueStore, hash: bytes | None) -> int | None:
    if not hash:
        return None
    data = db.get(header_number_key(hash))
    if data is None or len(data) != 8:
        return None
    return decode_number(data)


def write_header_number(db: Writer, hash: bytes, number: int) -> None:
    db.put(header_number_key(hash), encode_number(number))


def delete_header_number(db: Writer, hash: bytes) -> None:
    db.delete(header_number_key(hash))


def read_head_header_hash(db: KeyValueStore) -> bytes | None:
    return db.get(HEAD_HEADER_KEY)


def write_head_header_hash(db: Writer, hash: bytes) -> None:
    db.put(HEAD_HEADER_KEY, hash)


def read_head_block_hash(db: KeyValueStore) -> bytes | None:
    return db.get(HEAD_BLOCK_KEY)


def write_head_block_hash(db: Writer, hash: bytes) -> None:
    db.put(HEAD_BLOCK_KEY, hash)


def read_head_fast_block_hash(db: KeyValueStore) -> bytes | None:
    return db.get(HEAD_FAST_BLOCK_KEY)


def write_head_fast_block_hash(db: Writer, hash: bytes) -> None:
    db.put(HEAD_FAST_BLOCK_KEY, hash)


# Block components ----------------------------------------------------------------


def read_header(db: KeyValueStore, hash: bytes, number: int) -> bytes | None:
    return db.get(header_key(number, hash))


def write_header(db: Writer, hash: bytes, number: int, header: bytes) -> None:
    db.put(header_key(number, hash), header)
    write_header_number(db, hash, number)


def read_body(db: KeyValueStore, hash: bytes, number: int) -> bytes | None:
    return db.get(block_body_key(number, hash))


def write_body(db: Writer, hash: bytes, number: int, body: bytes) -> None:
    db.put(block_body_key(number, hash), body)


def read_receipts(db: KeyValueStore, hash: bytes, number: int) -> bytes | None:
    return db.get(block_receipts_key(number, hash))


def write_receipts(db: Writer, hash: bytes, number: int, receipts: bytes) -> None:
    db.put(block_receipts_key(number, hash), receipts)


def read_td(db: KeyValueStore, hash: bytes, number: int) -> bytes | None:
    return db.get(header_td_key(number, hash))


def write_td(db: Writer, hash: bytes, number: int, td: bytes) -> None:
    db.put(header_td_key(number, hash), td)


def write_block(
    db: Writer,
    number: int,
    hash: bytes,
    header: bytes,
    body: bytes,
    receipts: bytes,
    td: bytes,
    *,
    canonical: bool = True,
) -> None:
    write_header(db, hash, number, header)
    write_body(db, hash, number, body)
    write_receipts(db, hash, number, receipts)
    write_td(db, hash, number, td)
    if canonical:
        write_canonical_hash(db, hash, number)


def delete_block(db: Writer, hash: bytes, number: int) -> None:
    """Remove every component of one block, its number mapping included."""

    delete_block_without_number(db, hash, number)
    delete_header_number(db, hash)


def delete_block_without_number(db: Writer, hash: bytes, number: int) -> None:
    db.delete(header_key(number, hash))
    db.delete(block_body_key(number, hash))
    db.delete(block_receipts_key(number, hash))
    db.delete(header_td_key(number, hash))
