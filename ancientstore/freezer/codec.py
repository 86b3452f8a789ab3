"""
Chunk payload codec: JSON, optionally wrapped in gzip at maximum compression.
"""

from __future__ import annotations

import gzip
import json
import zlib
from typing import Any

from ..config import ENCODING_JSON, ENCODING_JSON_GZ
from ..errors import InvalidRecordError


class ChunkCodec:
    """Encodes a homogeneous list of JSON-ready items as one object payload."""

    def __init__(self, encoding: str = ENCODING_JSON_GZ):
        if encoding not in (ENCODING_JSON, ENCODING_JSON_GZ):
            raise ValueError(f"unknown encoding: {encoding}")
        self.encoding = encoding

    def encode(self, items: list[Any]) -> bytes:
        payload = json.dumps(items, separators=(",", ":")).encode("utf-8")
        if self.encoding == ENCODING_JSON_GZ:
            # Fixed mtime keeps re-uploads of the same chunk byte-identical.
            payload = gzip.compress(payload, compresslevel=9, mtime=0)
        return payload

    def decode(self, payload: bytes) -> list[Any]:
        if self.encoding == ENCODING_JSON_GZ:
            try:
                payload = gzip.decompress(payload)
            except (OSError, EOFError, zlib.error) as exc:
                raise InvalidRecordError(f"corrupt gzip chunk: {exc}") from exc
        try:
            items = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidRecordError(f"corrupt JSON chunk: {exc}") from exc
        if not isinstance(items, list):
            raise InvalidRecordError("chunk payload must be a JSON array")
        return items
