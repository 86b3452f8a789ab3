"""
Typed record holding the five blobs frozen for one item number.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import InvalidRecordError
from ..kinds import Kind

HASH_LENGTH = 32


def encode_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def decode_hex(value: str) -> bytes:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise InvalidRecordError(f"expected 0x-prefixed hex string, got {value!r}")
    try:
        return bytes.fromhex(value[2:])
    except ValueError as exc:
        raise InvalidRecordError(f"invalid hex string {value!r}") from exc


def _as_bytes(name: str, value: Any) -> bytes:
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise InvalidRecordError(f"{name} must be bytes")
    return bytes(value)


@dataclass(frozen=True, slots=True)
class AncientRecord:
    number: int
    hash: bytes
    header: bytes
    body: bytes
    receipts: bytes
    difficulty: bytes

    @classmethod
    def from_blobs(
        cls, number: int, hash: bytes, header: bytes, body: bytes, receipts: bytes, difficulty: bytes
    ) -> "AncientRecord":
        hash_bytes = _as_bytes("hash", hash)
        if len(hash_bytes) != HASH_LENGTH:
            raise InvalidRecordError(f"hash must be {HASH_LENGTH} bytes, got {len(hash_bytes)}")
        return cls(
            number=number,
            hash=hash_bytes,
            header=_as_bytes("header", header),
            body=_as_bytes("body", body),
            receipts=_as_bytes("receipts", receipts),
            difficulty=_as_bytes("difficulty", difficulty),
        )

    def bytes_for(self, kind: Kind) -> bytes:
        if kind is Kind.HASHES:
            return self.hash
        if kind is Kind.HEADERS:
            return self.header
        if kind is Kind.BODIES:
            return self.body
        if kind is Kind.RECEIPTS:
            return self.receipts
        return self.difficulty

    def to_json(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "hash": encode_hex(self.hash),
            "header": encode_hex(self.header),
            "body": encode_hex(self.body),
            "receipts": encode_hex(self.receipts),
            "difficulty": encode_hex(self.difficulty),
        }

    @classmethod
    def from_json(cls, data: Any) -> "AncientRecord":
        if not isinstance(data, dict):
            raise InvalidRecordError("record must be a JSON object")
        try:
            return cls.from_blobs(
                int(data["number"]),
                decode_hex(data["hash"]),
                decode_hex(data["header"]),
                decode_hex(data["body"]),
                decode_hex(data["receipts"]),
                decode_hex(data["difficulty"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidRecordError(f"malformed record: {exc}") from exc
